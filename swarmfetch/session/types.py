from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable

from swarmfetch.session.events import DiscoveryEvent, WireEvent


@runtime_checkable
class WireConnection(Protocol):
    """One peer connection speaking the wire protocol (with ut_metadata)."""

    def add_listener(self, handler: Callable[[WireEvent], None]) -> None: ...

    def send_handshake(
        self, info_hash: bytes, peer_id: bytes, extensions: dict[str, Any]
    ) -> None: ...

    def send_have(self, block_index: int) -> None: ...

    async def send_request(
        self, block_index: int, offset: int, length: int
    ) -> bytes: ...

    def fetch_metadata(self) -> None: ...


@runtime_checkable
class DHTClientProtocol(Protocol):
    """DHT client used by the session for peer discovery."""

    def add_listener(self, handler: Callable[[DiscoveryEvent], None]) -> None: ...

    async def listen(self, port: int) -> None: ...

    async def lookup(self, info_hash: bytes) -> int:
        """Query the DHT for peers of ``info_hash``; returns the node count."""
        ...


@runtime_checkable
class PeerListenerProtocol(Protocol):
    """Inbound TCP listener handing accepted connections to the session."""

    async def start(
        self, port: int, on_connection: Callable[[WireConnection], None]
    ) -> None: ...

    async def close(self) -> None: ...
