"""Chunk scheduling, block assembly and verification."""

from __future__ import annotations

from swarmfetch.piece.block_buffer import BlockBuffer
from swarmfetch.piece.scheduler import ChunkRequestState, ChunkScheduler
from swarmfetch.piece.verifier import block_digest, verify, verify_or_raise

__all__ = [
    "BlockBuffer",
    "ChunkRequestState",
    "ChunkScheduler",
    "block_digest",
    "verify",
    "verify_or_raise",
]
