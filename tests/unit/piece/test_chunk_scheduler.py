"""Tests for sequential chunk scheduling against a single peer."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.piece]

from swarmfetch.core.metadata import PieceLayout
from swarmfetch.peer.link import PeerLink
from swarmfetch.piece.scheduler import ChunkScheduler
from swarmfetch.utils.events import EventBus, EventType
from swarmfetch.utils.exceptions import ChunkRequestFailed, ChunkTimeout


class ScriptedConnection:
    """Answers chunk requests from a payload table and records concurrency."""

    def __init__(self, payloads, on_request=None):
        self.payloads = payloads
        self.on_request = on_request
        self.requests = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def send_request(self, block_index, offset, length):
        self.requests.append((block_index, offset, length))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.on_request is not None:
                self.on_request(len(self.requests))
            return self.payloads[(block_index, offset)]
        finally:
            self.in_flight -= 1


def _layout(block_length=65536, chunk_length=16384, total_length=None):
    return PieceLayout(
        name="test",
        block_hashes=(b"\x00" * 20,),
        block_length=block_length,
        chunk_length=chunk_length,
        total_length=total_length,
    )


def _payloads(layout, block_index=0):
    return {
        (block_index, offset): bytes([chunk]) * length
        for chunk in range(layout.chunk_count(block_index))
        for offset, length in [layout.chunk_bounds(block_index, chunk)]
    }


def _unchoked_link(connection):
    return PeerLink(connection=connection, peer_id=b"p" * 20, peer_choking=False)


class TestDownloadBlock:
    @pytest.mark.asyncio
    async def test_sequential_and_concatenated(self):
        layout = _layout()
        payloads = _payloads(layout)
        conn = ScriptedConnection(payloads)
        scheduler = ChunkScheduler(layout, _unchoked_link(conn))

        block = await scheduler.download_block(0)

        assert conn.max_in_flight == 1
        assert [r[1] for r in conn.requests] == [0, 16384, 32768, 49152]
        assert block == b"".join(payloads[(0, o)] for o in (0, 16384, 32768, 49152))
        assert scheduler.requests_sent == 4
        assert scheduler.requests_in_flight == 0
        assert scheduler.state is None

    @pytest.mark.asyncio
    async def test_short_final_chunk(self):
        layout = _layout(block_length=20000, total_length=20000)
        conn = ScriptedConnection(_payloads(layout))
        scheduler = ChunkScheduler(layout, _unchoked_link(conn))

        block = await scheduler.download_block(0)

        assert conn.requests == [(0, 0, 16384), (0, 16384, 3616)]
        assert len(block) == 20000

    @pytest.mark.asyncio
    async def test_events_emitted(self):
        layout = _layout(block_length=32768)
        bus = EventBus()
        scheduler = ChunkScheduler(
            layout, _unchoked_link(ScriptedConnection(_payloads(layout))), event_bus=bus
        )
        await scheduler.download_block(0)
        assert len(bus.get_replay_events(EventType.CHUNK_REQUESTED.value)) == 2
        assert len(bus.get_replay_events(EventType.CHUNK_RECEIVED.value)) == 2


class TestFlowControl:
    @pytest.mark.asyncio
    async def test_choked_request_not_sent(self):
        layout = _layout()
        conn = ScriptedConnection(_payloads(layout))
        link = PeerLink(connection=conn, peer_choking=True)
        bus = EventBus()
        scheduler = ChunkScheduler(layout, link, event_bus=bus)
        state = scheduler.begin_block(0)

        assert await scheduler.request_chunk(0, 0, 0, 16384) is None
        assert await scheduler.download_block(0) is None

        assert conn.requests == []
        assert state.chunk_index == 0
        assert scheduler.state is state
        assert bus.get_replay_events(EventType.FLOW_CONTROL_VIOLATION.value)

    @pytest.mark.asyncio
    async def test_choke_mid_block_then_resume(self):
        layout = _layout()
        link = None

        def choke_after_second(count):
            if count == 2:
                link.peer_choking = True

        conn = ScriptedConnection(_payloads(layout), on_request=choke_after_second)
        link = _unchoked_link(conn)
        scheduler = ChunkScheduler(layout, link)

        assert await scheduler.download_block(0) is None
        assert scheduler.state.chunk_index == 2
        assert len(conn.requests) == 2

        link.peer_choking = False
        block = await scheduler.resume()

        assert [r[1] for r in conn.requests] == [0, 16384, 32768, 49152]
        assert len(block) == 65536
        assert block[32768] == 2

    @pytest.mark.asyncio
    async def test_resume_without_block(self):
        scheduler = ChunkScheduler(_layout(), _unchoked_link(MagicMock()))
        assert await scheduler.resume() is None


class TestFailures:
    @pytest.mark.asyncio
    async def test_timeout(self):
        class SilentConnection:
            async def send_request(self, *_args):
                await asyncio.sleep(10)

        scheduler = ChunkScheduler(
            _layout(), _unchoked_link(SilentConnection()), chunk_timeout=0.01
        )
        with pytest.raises(ChunkTimeout):
            await scheduler.download_block(0)
        assert scheduler.state is None
        assert scheduler.requests_in_flight == 0

    @pytest.mark.asyncio
    async def test_wire_error(self):
        class BrokenConnection:
            async def send_request(self, *_args):
                raise ConnectionResetError("peer went away")

        scheduler = ChunkScheduler(_layout(), _unchoked_link(BrokenConnection()))
        with pytest.raises(ChunkRequestFailed, match="peer went away"):
            await scheduler.download_block(0)
        assert scheduler.state is None

    @pytest.mark.asyncio
    async def test_wrong_chunk_length(self):
        layout = _layout(block_length=16384)
        conn = ScriptedConnection({(0, 0): b"short"})
        scheduler = ChunkScheduler(layout, _unchoked_link(conn))
        with pytest.raises(ChunkRequestFailed, match="invalid chunk"):
            await scheduler.download_block(0)

    @pytest.mark.asyncio
    async def test_begin_block_releases_previous_buffer(self):
        scheduler = ChunkScheduler(_layout(), _unchoked_link(MagicMock()))
        first = scheduler.begin_block(0)
        scheduler.begin_block(0)
        assert first.buffer.released


@pytest.mark.asyncio
async def test_violation_recorded():
    scheduler = ChunkScheduler(_layout(), PeerLink(connection=MagicMock()))
    await scheduler.request_chunk(0, 3, 49152, 16384)
    assert scheduler.last_violation.details == {"block_index": 0, "chunk_index": 3}


@pytest.mark.asyncio
async def test_empty_response_fails_instead_of_pausing():
    layout = _layout(block_length=16384)
    conn = ScriptedConnection({(0, 0): None})
    link = _unchoked_link(conn)
    scheduler = ChunkScheduler(layout, link)

    with pytest.raises(ChunkRequestFailed, match="no data"):
        await scheduler.download_block(0)
    assert not link.peer_choking
    assert scheduler.state is None
    assert scheduler.last_violation is None
