"""Sequential chunk scheduling for one block against one peer.

Exactly one chunk request is outstanding at a time: chunk ``n + 1`` is
requested only after chunk ``n`` arrived. Requests are gated on the peer's
choke flag as last observed from the wire; a choke pauses the block and
:meth:`ChunkScheduler.resume` continues it from the stored chunk index.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from swarmfetch.piece.block_buffer import BlockBuffer
from swarmfetch.utils.events import EventPriority, EventType, make_event
from swarmfetch.utils.exceptions import (
    ChunkRequestFailed,
    ChunkTimeout,
    FlowControlViolation,
)

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from swarmfetch.core.metadata import PieceLayout
    from swarmfetch.peer.link import PeerLink
    from swarmfetch.utils.events import EventBus

logger = logging.getLogger(__name__)


@dataclass
class ChunkRequestState:
    """Progress of the block currently being downloaded."""

    block_index: int
    num_chunks: int
    buffer: BlockBuffer
    chunk_index: int = 0

    @property
    def complete(self) -> bool:
        return self.chunk_index >= self.num_chunks


class ChunkScheduler:
    """Pulls the chunks of a block, one at a time, from the active peer."""

    def __init__(
        self,
        layout: PieceLayout,
        link: PeerLink,
        *,
        chunk_timeout: float = 30.0,
        event_bus: EventBus | None = None,
    ):
        self.layout = layout
        self.link = link
        self.chunk_timeout = chunk_timeout
        self.event_bus = event_bus
        self.state: ChunkRequestState | None = None
        self.requests_in_flight = 0
        self.requests_sent = 0
        self.last_violation: FlowControlViolation | None = None

    def _emit(self, event_type: EventType, priority: EventPriority = EventPriority.NORMAL, **data) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(
                make_event(event_type, source="chunk_scheduler", priority=priority, **data)
            )

    def begin_block(self, block_index: int) -> ChunkRequestState:
        """Allocate the buffer for a block and reset the chunk counter."""
        self.abort()
        size = self.layout.block_size(block_index)
        self.state = ChunkRequestState(
            block_index=block_index,
            num_chunks=self.layout.chunk_count(block_index),
            buffer=BlockBuffer(size, self.layout.chunk_length),
        )
        logger.debug(
            "Block #%d: %d bytes in %d chunks",
            block_index,
            size,
            self.state.num_chunks,
        )
        return self.state

    def abort(self) -> None:
        """Drop the in-progress block, releasing its buffer."""
        if self.state is not None:
            self.state.buffer.release()
            self.state = None

    async def request_chunk(
        self, block_index: int, chunk_index: int, offset: int, length: int
    ) -> bytes | None:
        """Request one chunk and wait for it.

        Returns None without sending anything when the peer is choking us.

        Raises:
            ChunkTimeout: no response within ``chunk_timeout``.
            ChunkRequestFailed: the wire reported an error or returned no data.

        """
        if self.link.peer_choking:
            self.last_violation = FlowControlViolation(
                f"{self.link} is choking us, not requesting block #{block_index} "
                f"chunk #{chunk_index}",
                {"block_index": block_index, "chunk_index": chunk_index},
            )
            logger.warning("Flow-control violation: %s", self.last_violation.message)
            self._emit(
                EventType.FLOW_CONTROL_VIOLATION,
                EventPriority.HIGH,
                block_index=block_index,
                chunk_index=chunk_index,
            )
            return None

        logger.debug(
            "Now requesting block #%d at %d for %d bytes", block_index, offset, length
        )
        self._emit(
            EventType.CHUNK_REQUESTED,
            EventPriority.LOW,
            block_index=block_index,
            chunk_index=chunk_index,
            offset=offset,
            length=length,
        )

        self.requests_in_flight += 1
        self.requests_sent += 1
        try:
            data = await asyncio.wait_for(
                self.link.connection.send_request(block_index, offset, length),
                timeout=self.chunk_timeout,
            )
        except asyncio.TimeoutError as e:
            msg = f"No response for block #{block_index} chunk #{chunk_index}"
            raise ChunkTimeout(
                msg, {"block_index": block_index, "chunk_index": chunk_index}
            ) from e
        except ChunkRequestFailed:
            raise
        except Exception as e:
            msg = f"Request for block #{block_index} chunk #{chunk_index} failed: {e}"
            raise ChunkRequestFailed(
                msg, {"block_index": block_index, "chunk_index": chunk_index}
            ) from e
        finally:
            self.requests_in_flight -= 1

        if data is None:
            msg = f"Peer returned no data for block #{block_index} chunk #{chunk_index}"
            raise ChunkRequestFailed(
                msg, {"block_index": block_index, "chunk_index": chunk_index}
            )
        return data

    async def download_block(self, block_index: int) -> bytes | None:
        """Fetch every chunk of a block in order and return the assembled bytes.

        Returns None when the peer chokes us before the block is complete;
        progress is kept and a later call for the same block resumes it.
        Any failure releases the buffer and propagates.
        """
        state = self.state
        if state is None or state.block_index != block_index:
            state = self.begin_block(block_index)

        try:
            while state.chunk_index < state.num_chunks:
                offset, length = self.layout.chunk_bounds(block_index, state.chunk_index)
                data = await self.request_chunk(
                    block_index, state.chunk_index, offset, length
                )
                if data is None:
                    return None

                try:
                    state.buffer.set(state.chunk_index, bytes(data))
                except ValueError as e:
                    msg = f"Peer sent an invalid chunk for block #{block_index}: {e}"
                    raise ChunkRequestFailed(
                        msg,
                        {"block_index": block_index, "chunk_index": state.chunk_index},
                    ) from e

                logger.debug(
                    "Received chunk #%d having %d bytes (%d missing)",
                    state.chunk_index,
                    len(data),
                    state.buffer.missing,
                )
                self._emit(
                    EventType.CHUNK_RECEIVED,
                    EventPriority.LOW,
                    block_index=block_index,
                    chunk_index=state.chunk_index,
                    size=len(data),
                )
                state.chunk_index += 1
        except BaseException:
            self.abort()
            raise

        block = state.buffer.flush()
        self.state = None
        logger.info("Block #%d complete length [ %d ]", block_index, len(block))
        return block

    async def resume(self) -> bytes | None:
        """Continue a block paused by a choke from its stored chunk index."""
        if self.state is None:
            return None
        logger.info(
            "Resuming block #%d at chunk #%d",
            self.state.block_index,
            self.state.chunk_index,
        )
        return await self.download_block(self.state.block_index)
