"""Registry of peers that completed a handshake with this session."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterator

from swarmfetch.utils.events import EventType, make_event

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from swarmfetch.utils.events import EventBus

logger = logging.getLogger(__name__)


@dataclass
class PeerRecord:
    """A handshaken peer and its negotiated extensions."""

    peer_id: bytes
    extensions: dict[str, Any] = field(default_factory=dict)
    date_added: float = field(default_factory=time.time)
    last_update: float = 0.0

    def __post_init__(self) -> None:
        if not self.last_update:
            self.last_update = self.date_added


class PeerRegistry:
    """Append-only map of peer id → PeerRecord.

    Records are never removed for the lifetime of a session.
    """

    def __init__(self, event_bus: EventBus | None = None):
        self._peers: dict[bytes, PeerRecord] = {}
        self._event_bus = event_bus

    def __len__(self) -> int:
        return len(self._peers)

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._peers

    def __iter__(self) -> Iterator[PeerRecord]:
        return iter(self._peers.values())

    def get(self, peer_id: bytes) -> PeerRecord | None:
        return self._peers.get(peer_id)

    def add_peer(self, peer_id: bytes, extensions: dict[str, Any] | None = None) -> bool:
        """Record a peer after a successful handshake.

        Returns False without changing anything when the peer is already known.
        """
        if peer_id in self._peers:
            return False

        self._peers[peer_id] = PeerRecord(peer_id=peer_id, extensions=dict(extensions or {}))
        total = len(self._peers)
        logger.info("Added new peer [ %s ] of %d", peer_id.hex(), total)
        if self._event_bus is not None:
            self._event_bus.emit(
                make_event(
                    EventType.PEER_ADDED,
                    source="peer_registry",
                    peer_id=peer_id.hex(),
                    total_peers=total,
                )
            )
        return True

    def touch(self, peer_id: bytes) -> None:
        """Refresh the last-update timestamp of a known peer."""
        record = self._peers.get(peer_id)
        if record is not None:
            record.last_update = time.time()
