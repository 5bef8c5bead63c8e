"""swarmfetch - fetch a single torrent by info hash over the DHT.

Discovers peers through the mainline DHT, obtains the info dictionary from
a connected peer and downloads every block sequentially, verifying each
against its SHA-1 digest.
"""

from __future__ import annotations

__version__ = "0.1.0"

from swarmfetch.config import get_config, init_config  # noqa: E402
from swarmfetch.core.metadata import PieceLayout, assemble  # noqa: E402
from swarmfetch.models import Config, DiscoverySummary  # noqa: E402
from swarmfetch.session import SessionState, TorrentSession  # noqa: E402
from swarmfetch.utils.exceptions import SwarmFetchError  # noqa: E402

__all__ = [
    "Config",
    "DiscoverySummary",
    "PieceLayout",
    "SessionState",
    "SwarmFetchError",
    "TorrentSession",
    "__version__",
    "assemble",
    "get_config",
    "init_config",
]
