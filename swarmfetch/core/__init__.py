"""Core torrent metadata handling."""

from __future__ import annotations

from swarmfetch.core.metadata import (
    BLOCK_HASH_LENGTH,
    AssembledMetadata,
    FileEntry,
    PieceLayout,
    assemble,
)

__all__ = [
    "BLOCK_HASH_LENGTH",
    "AssembledMetadata",
    "FileEntry",
    "PieceLayout",
    "assemble",
]
