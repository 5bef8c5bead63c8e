"""Download session: state machine, typed events and collaborator protocols."""

from __future__ import annotations

from swarmfetch.session.events import (
    Bitfield,
    Choke,
    DHTErrorEvent,
    DHTReady,
    DiscoveryEvent,
    Handshake,
    Have,
    Interested,
    KeepAlive,
    Metadata,
    MetadataWarningEvent,
    PeerFound,
    Port,
    Request,
    Unchoke,
    Uninterested,
    WireEvent,
)
from swarmfetch.session.session import (
    SessionState,
    TorrentSession,
    generate_peer_id,
    normalize_info_hash,
)
from swarmfetch.session.types import (
    DHTClientProtocol,
    PeerListenerProtocol,
    WireConnection,
)

__all__ = [
    "Bitfield",
    "Choke",
    "DHTClientProtocol",
    "DHTErrorEvent",
    "DHTReady",
    "DiscoveryEvent",
    "Handshake",
    "Have",
    "Interested",
    "KeepAlive",
    "Metadata",
    "MetadataWarningEvent",
    "PeerFound",
    "PeerListenerProtocol",
    "Port",
    "Request",
    "SessionState",
    "TorrentSession",
    "Unchoke",
    "Uninterested",
    "WireConnection",
    "WireEvent",
    "generate_peer_id",
    "normalize_info_hash",
]
