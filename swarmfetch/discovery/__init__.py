"""Peer discovery: aggregation of DHT results."""

from __future__ import annotations

from swarmfetch.discovery.aggregator import DiscoveredPeerRecord, DiscoveredPeers

__all__ = ["DiscoveredPeerRecord", "DiscoveredPeers"]
