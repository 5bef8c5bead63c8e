"""Metadata assembly (BEP 3 info dictionary → piece layout).

Turns the raw metadata delivered by the ut_metadata extension into a
:class:`PieceLayout`: the ordered block hashes, the block length and the
number of chunks each block is fetched in.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any

import bencodepy

from swarmfetch.models import DEFAULT_CHUNK_LENGTH
from swarmfetch.utils.exceptions import MalformedMetadata

logger = logging.getLogger(__name__)

BLOCK_HASH_LENGTH = 20  # SHA-1


@dataclass(frozen=True)
class FileEntry:
    """A file listed in the info dictionary."""

    path: str
    length: int


@dataclass(frozen=True)
class PieceLayout:
    """Block layout derived once from metadata. Immutable."""

    name: str
    block_hashes: tuple[bytes, ...]
    block_length: int
    chunk_length: int = DEFAULT_CHUNK_LENGTH
    files: tuple[FileEntry, ...] = field(default_factory=tuple)
    total_length: int | None = None

    @property
    def num_blocks(self) -> int:
        return len(self.block_hashes)

    @property
    def num_block_chunks(self) -> int:
        """Chunks per full block, truncating any remainder."""
        return self.block_length // self.chunk_length

    def block_size(self, block_index: int) -> int:
        """Length of one block; the last block may be shorter."""
        self._check_index(block_index)
        if self.total_length is None:
            return self.block_length
        remaining = self.total_length - block_index * self.block_length
        return max(0, min(self.block_length, remaining))

    def chunk_count(self, block_index: int) -> int:
        """Chunks needed to fetch every byte of a block, short final chunk included."""
        return math.ceil(self.block_size(block_index) / self.chunk_length)

    def chunk_bounds(self, block_index: int, chunk_index: int) -> tuple[int, int]:
        """Return ``(offset, length)`` of a chunk within its block."""
        offset = chunk_index * self.chunk_length
        size = self.block_size(block_index)
        if chunk_index < 0 or offset >= size:
            msg = f"Chunk {chunk_index} is outside block {block_index}"
            raise IndexError(msg)
        return offset, min(self.chunk_length, size - offset)

    def expected_hash(self, block_index: int) -> bytes:
        self._check_index(block_index)
        return self.block_hashes[block_index]

    def _check_index(self, block_index: int) -> None:
        if not 0 <= block_index < self.num_blocks:
            msg = f"Block index {block_index} out of range (0..{self.num_blocks - 1})"
            raise IndexError(msg)


@dataclass(frozen=True)
class AssembledMetadata:
    """Decoded info dictionary together with the layout built from it."""

    info: dict[bytes, Any]
    layout: PieceLayout


def split_hashes(pieces: bytes) -> tuple[bytes, ...]:
    """Split the concatenated ``pieces`` string into 20-byte hashes."""
    if len(pieces) % BLOCK_HASH_LENGTH != 0:
        msg = (
            f"pieces length {len(pieces)} is not a multiple of "
            f"{BLOCK_HASH_LENGTH}"
        )
        raise MalformedMetadata(msg, {"pieces_length": len(pieces)})
    return tuple(
        pieces[i : i + BLOCK_HASH_LENGTH]
        for i in range(0, len(pieces), BLOCK_HASH_LENGTH)
    )


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _read_files(info: dict[bytes, Any], name: str) -> tuple[FileEntry, ...]:
    if b"files" in info:
        files = []
        for entry in info[b"files"]:
            try:
                path_parts = entry[b"path"]
                length = int(entry[b"length"])
            except (KeyError, TypeError, ValueError) as e:
                msg = f"Invalid file entry: {e}"
                raise MalformedMetadata(msg) from e
            if length < 0:
                msg = f"File entry has a negative length: {length}"
                raise MalformedMetadata(msg)
            files.append(
                FileEntry(path="/".join(_text(p) for p in path_parts), length=length)
            )
        return tuple(files)
    if b"length" in info:
        try:
            length = int(info[b"length"])
        except (TypeError, ValueError) as e:
            msg = f"Invalid length: {info[b'length']!r}"
            raise MalformedMetadata(msg) from e
        if length < 0:
            msg = f"Negative length: {length}"
            raise MalformedMetadata(msg)
        return (FileEntry(path=name, length=length),)
    msg = "Info dictionary has neither 'files' nor 'length'"
    raise MalformedMetadata(msg)


def decode_info(raw_metadata: bytes) -> dict[bytes, Any]:
    """Decode raw metadata and return its info dictionary.

    Accepts a full torrent dictionary (``{"info": {...}}``) or a bare info
    dictionary as served by ut_metadata.
    """
    try:
        decoded = bencodepy.decode(raw_metadata)
    except (bencodepy.BencodeDecodeError, ValueError, TypeError) as e:
        msg = f"Could not decode metadata: {e}"
        raise MalformedMetadata(msg) from e

    if not isinstance(decoded, dict):
        msg = "Metadata is not a dictionary"
        raise MalformedMetadata(msg)

    info = decoded.get(b"info", decoded if b"pieces" in decoded else None)
    if not isinstance(info, dict):
        msg = "Metadata has no info dictionary"
        raise MalformedMetadata(msg)
    return info


def assemble(
    raw_metadata: bytes, chunk_length: int = DEFAULT_CHUNK_LENGTH
) -> AssembledMetadata:
    """Build the piece layout from raw metadata.

    Raises:
        MalformedMetadata: undecodable bytes, missing keys, a non-positive
            piece length, a negative file length, or a ``pieces`` string that
            is empty, not a whole number of hashes, or not one hash per block
            of the total length.

    """
    info = decode_info(raw_metadata)

    for key in (b"name", b"piece length", b"pieces"):
        if key not in info:
            msg = f"Info dictionary is missing '{key.decode()}'"
            raise MalformedMetadata(msg)

    name = _text(info[b"name"])
    try:
        block_length = int(info[b"piece length"])
    except (TypeError, ValueError) as e:
        msg = f"Invalid piece length: {info[b'piece length']!r}"
        raise MalformedMetadata(msg) from e
    if block_length <= 0:
        msg = f"Piece length must be positive, got {block_length}"
        raise MalformedMetadata(msg)

    pieces = info[b"pieces"]
    if not isinstance(pieces, bytes):
        msg = "pieces must be a byte string"
        raise MalformedMetadata(msg)

    files = _read_files(info, name)
    total_length = sum(f.length for f in files)
    block_hashes = split_hashes(pieces)
    if not block_hashes:
        msg = "Info dictionary lists no pieces"
        raise MalformedMetadata(msg)

    expected_blocks = -(-total_length // block_length)
    if len(block_hashes) != expected_blocks:
        msg = (
            f"{len(block_hashes)} piece hashes for {total_length} bytes, "
            f"expected {expected_blocks}"
        )
        raise MalformedMetadata(
            msg,
            {"hashes": len(block_hashes), "total_length": total_length},
        )

    layout = PieceLayout(
        name=name,
        block_hashes=block_hashes,
        block_length=block_length,
        chunk_length=chunk_length,
        files=files,
        total_length=total_length,
    )
    report_layout(layout)
    return AssembledMetadata(info=info, layout=layout)


def report_layout(layout: PieceLayout) -> None:
    """Log the torrent name, files and block/chunk counts."""
    logger.info("Torrent: %s", layout.name)
    for number, entry in enumerate(layout.files, start=1):
        logger.info("  #%d: %s { size: %d bytes }", number, entry.path, entry.length)
    logger.info("  Total blocks   : %d", layout.num_blocks)
    logger.info("  Block length   : %d bytes", layout.block_length)
    logger.info("  Chunks per block: %d", layout.num_block_chunks)
    if logger.isEnabledFor(logging.DEBUG):
        for index, digest in enumerate(layout.block_hashes):
            logger.debug("  Hash block #%d: %s", index, digest.hex())
