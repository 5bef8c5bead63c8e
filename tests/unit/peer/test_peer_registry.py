"""Tests for the handshaken-peer registry and per-connection link state."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.peer]

from swarmfetch.peer.link import PeerLink
from swarmfetch.peer.registry import PeerRegistry
from swarmfetch.utils.events import EventBus, EventType


class TestPeerRegistry:
    def test_add_peer(self):
        bus = EventBus()
        registry = PeerRegistry(bus)

        assert registry.add_peer(b"a" * 20, {"dht": True})
        record = registry.get(b"a" * 20)
        assert record.extensions == {"dht": True}
        assert record.date_added == record.last_update
        assert len(registry) == 1
        assert b"a" * 20 in registry

        events = bus.get_replay_events(EventType.PEER_ADDED.value)
        assert events[0].data["total_peers"] == 1

    def test_add_is_idempotent(self):
        registry = PeerRegistry()
        assert registry.add_peer(b"a" * 20, {"dht": True})
        assert not registry.add_peer(b"a" * 20, {"dht": False})
        assert len(registry) == 1
        assert registry.get(b"a" * 20).extensions == {"dht": True}

    def test_distinct_peers(self):
        registry = PeerRegistry()
        registry.add_peer(b"a" * 20)
        registry.add_peer(b"b" * 20)
        assert {r.peer_id for r in registry} == {b"a" * 20, b"b" * 20}

    def test_touch(self, monkeypatch):
        registry = PeerRegistry()
        registry.add_peer(b"a" * 20)
        record = registry.get(b"a" * 20)
        monkeypatch.setattr("swarmfetch.peer.registry.time.time", lambda: record.date_added + 5)
        registry.touch(b"a" * 20)
        registry.touch(b"unknown")
        assert record.last_update == record.date_added + 5

    def test_get_unknown(self):
        assert PeerRegistry().get(b"x") is None


class TestPeerLink:
    def test_defaults(self):
        link = PeerLink(connection=MagicMock())
        assert link.peer_choking
        assert not link.peer_interested
        assert not link.handshaken
        assert "?" in str(link)

    def test_peer_has(self):
        link = PeerLink(connection=MagicMock(), bitfield=b"\x80")
        assert link.peer_has(0)
        assert not link.peer_has(1)
        link.have.add(1)
        assert link.peer_has(1)

    def test_links_compare_by_identity(self):
        conn = MagicMock()
        assert PeerLink(connection=conn) != PeerLink(connection=conn)
