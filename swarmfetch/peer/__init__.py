"""Peer bookkeeping: handshaken peer registry and per-connection state."""

from __future__ import annotations

from swarmfetch.peer.link import PeerLink
from swarmfetch.peer.registry import PeerRecord, PeerRegistry

__all__ = ["PeerLink", "PeerRecord", "PeerRegistry"]
