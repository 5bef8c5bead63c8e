"""Per-connection peer state as observed from the wire event stream."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from swarmfetch.utils.bitfield import has_bit

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from swarmfetch.session.types import WireConnection


@dataclass(eq=False)
class PeerLink:
    """One connected peer and the flow-control state last seen from it."""

    connection: WireConnection
    peer_id: bytes | None = None
    extensions: dict[str, Any] = field(default_factory=dict)
    peer_choking: bool = True  # Peer is choking us
    peer_interested: bool = False  # Peer is interested in us
    bitfield: bytes = b""
    have: set[int] = field(default_factory=set)
    dht_port: int | None = None
    last_activity: float = field(default_factory=time.time)

    def __str__(self) -> str:
        """Return string representation of the link."""
        peer = self.peer_id.hex() if self.peer_id else "?"
        return f"PeerLink({peer}, choking={self.peer_choking})"

    @property
    def handshaken(self) -> bool:
        return self.peer_id is not None

    def touch(self) -> None:
        self.last_activity = time.time()

    def peer_has(self, block_index: int) -> bool:
        """Whether the peer advertised the block via bitfield or have."""
        return block_index in self.have or has_bit(self.bitfield, block_index)
