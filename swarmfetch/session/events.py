"""Typed events delivered to the session by its collaborators.

Wire and extension events arrive per connection; DHT events arrive from the
discovery client. Each maps to one handler in
:class:`~swarmfetch.session.session.TorrentSession`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Union

# Wire protocol


@dataclass(frozen=True)
class Handshake:
    info_hash: bytes
    peer_id: bytes
    extensions: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Bitfield:
    bits: bytes


@dataclass(frozen=True)
class Have:
    block_index: int


@dataclass(frozen=True)
class Request:
    """The peer asks us for data; ``respond(data)`` answers it."""

    block_index: int
    offset: int
    length: int
    respond: Callable[[bytes | None], None]


@dataclass(frozen=True)
class Interested:
    pass


@dataclass(frozen=True)
class Uninterested:
    pass


@dataclass(frozen=True)
class Port:
    dht_port: int


@dataclass(frozen=True)
class KeepAlive:
    pass


@dataclass(frozen=True)
class Choke:
    pass


@dataclass(frozen=True)
class Unchoke:
    pass


# Metadata extension (ut_metadata)


@dataclass(frozen=True)
class Metadata:
    raw: bytes


@dataclass(frozen=True)
class MetadataWarningEvent:
    reason: str


# DHT


@dataclass(frozen=True)
class DHTReady:
    pass


@dataclass(frozen=True)
class PeerFound:
    host: str
    port: int
    info_hash: bytes
    from_node: tuple[str, int] | None = None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class DHTErrorEvent:
    error: BaseException


WireEvent = Union[
    Handshake,
    Bitfield,
    Have,
    Request,
    Interested,
    Uninterested,
    Port,
    KeepAlive,
    Choke,
    Unchoke,
    Metadata,
    MetadataWarningEvent,
]

DiscoveryEvent = Union[DHTReady, PeerFound, DHTErrorEvent]
