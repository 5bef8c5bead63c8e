"""Block hash verification."""

from __future__ import annotations

import hashlib
import logging

from swarmfetch.utils.exceptions import BlockVerificationFailed

logger = logging.getLogger(__name__)

# Hash in 64KB slices so large blocks are not copied
_HASH_SLICE = 64 * 1024


def block_digest(block: bytes | bytearray | memoryview) -> bytes:
    """Return the SHA-1 digest of a block."""
    hasher = hashlib.sha1()  # nosec B324 - SHA-1 required by BitTorrent protocol (BEP 3)
    view = memoryview(block)
    for i in range(0, len(view), _HASH_SLICE):
        hasher.update(view[i : i + _HASH_SLICE])
    return hasher.digest()


def verify(block: bytes | bytearray | memoryview, expected_hash: bytes) -> bool:
    """Return True when the block's digest equals ``expected_hash`` byte for byte."""
    return block_digest(block) == bytes(expected_hash)


def verify_or_raise(
    block: bytes | bytearray | memoryview, expected_hash: bytes, block_index: int
) -> None:
    """Verify a block, raising BlockVerificationFailed on mismatch."""
    actual = block_digest(block)
    logger.debug("Block #%d SHA-1 hash [ %s ]", block_index, actual.hex())
    if actual != bytes(expected_hash):
        msg = f"Block #{block_index} failed hash verification"
        raise BlockVerificationFailed(
            msg,
            {
                "block_index": block_index,
                "expected": bytes(expected_hash).hex(),
                "actual": actual.hex(),
            },
        )
