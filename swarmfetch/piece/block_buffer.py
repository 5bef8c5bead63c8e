"""Block assembly buffer.

Accumulates the chunks of one block at their logical offsets and tracks
which chunks are still missing.
"""

from __future__ import annotations


class BlockBuffer:
    """Scoped buffer for one block download."""

    def __init__(self, length: int, chunk_length: int):
        """Initialize an empty buffer of ``length`` bytes."""
        if length < 0 or chunk_length <= 0:
            msg = f"Invalid buffer geometry: length={length}, chunk_length={chunk_length}"
            raise ValueError(msg)
        self.length = length
        self.chunk_length = chunk_length
        self.num_chunks = -(-length // chunk_length)
        self._data: bytearray | None = bytearray(length)
        self._received: list[bool] = [False] * self.num_chunks

    def __enter__(self) -> BlockBuffer:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False

    @property
    def released(self) -> bool:
        return self._data is None

    @property
    def missing(self) -> int:
        """Number of chunks not yet received."""
        return self._received.count(False)

    def is_complete(self) -> bool:
        return not self.released and self.missing == 0

    def chunk_length_at(self, chunk_index: int) -> int:
        offset = chunk_index * self.chunk_length
        return min(self.chunk_length, self.length - offset)

    def set(self, chunk_index: int, data: bytes) -> None:
        """Write a chunk at its logical position."""
        if self._data is None:
            msg = "Buffer has been released"
            raise RuntimeError(msg)
        if not 0 <= chunk_index < self.num_chunks:
            msg = f"Chunk index {chunk_index} out of range (0..{self.num_chunks - 1})"
            raise IndexError(msg)
        expected = self.chunk_length_at(chunk_index)
        if len(data) != expected:
            msg = f"Chunk {chunk_index} has {len(data)} bytes, expected {expected}"
            raise ValueError(msg)
        offset = chunk_index * self.chunk_length
        self._data[offset : offset + expected] = data
        self._received[chunk_index] = True

    def flush(self) -> bytes:
        """Return the assembled block and release the buffer."""
        if not self.is_complete():
            msg = f"Block is not complete ({self.missing} chunks missing)"
            raise ValueError(msg)
        assert self._data is not None
        data = bytes(self._data)
        self.release()
        return data

    def release(self) -> None:
        self._data = None
