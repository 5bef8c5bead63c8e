"""Aggregation and ranking of peers reported by the DHT.

The same peer address is usually returned by several DHT nodes; every
sighting bumps the address's reference count, and addresses seen by more
nodes rank higher.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from swarmfetch.models import DiscoverySummary, RankedPeer

logger = logging.getLogger(__name__)


@dataclass
class DiscoveredPeerRecord:
    """A peer address and how many DHT nodes reported it."""

    address: str
    node_refs: int = 1
    first_seen: int = 0


class DiscoveredPeers:
    """Deduplicated set of DHT peer addresses.

    Lookups are a linear scan, which is fine for the few hundred addresses
    one lookup yields but will not scale to whole-swarm crawls.
    """

    def __init__(self) -> None:
        self._records: list[DiscoveredPeerRecord] = []
        self.total_sightings = 0

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> tuple[DiscoveredPeerRecord, ...]:
        """Records in first-seen order."""
        return tuple(self._records)

    def record_sighting(self, address: str) -> DiscoveredPeerRecord:
        """Count one report of ``address`` (exact ``host:port`` match)."""
        self.total_sightings += 1
        for record in self._records:
            if record.address == address:
                record.node_refs += 1
                return record

        record = DiscoveredPeerRecord(address=address, first_seen=len(self._records))
        self._records.append(record)
        return record

    def rank_top(self, n: int | None = None) -> list[DiscoveredPeerRecord]:
        """Records by descending reference count, ties in first-seen order.

        Returns a new list; the underlying records keep their order.
        """
        ranked = sorted(self._records, key=lambda r: r.node_refs, reverse=True)
        return ranked if n is None else ranked[: max(0, n)]

    def top_k(self, k: int) -> tuple[list[DiscoveredPeerRecord], int]:
        """The ``k`` best records and the size of the remaining bucket."""
        top = self.rank_top(k)
        return top, len(self._records) - len(top)

    def summary(self, top: int = 3, nodes_found: int = 0) -> DiscoverySummary:
        top_records, others = self.top_k(top)
        return DiscoverySummary(
            top_peers=[
                RankedPeer(address=r.address, node_refs=r.node_refs) for r in top_records
            ],
            total_peers=len(self._records),
            other_peers=others,
            nodes_found=nodes_found,
        )

    def log_ranking(self, limit: int) -> None:
        """Write the ``limit`` best-ranked peers to the log."""
        total = len(self._records)
        for index, record in enumerate(self.rank_top(limit), start=1):
            logger.info(
                "Peer #%d of %d: %s has %d node references",
                index,
                total,
                record.address,
                record.node_refs,
            )
