"""Exception hierarchy for swarmfetch.

Every error raised by the download coordinator derives from
:class:`SwarmFetchError`, which carries an optional ``details`` mapping for
structured logging.
"""

from __future__ import annotations

from typing import Any


class SwarmFetchError(Exception):
    """Base exception for all swarmfetch errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize swarmfetch error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class NetworkError(SwarmFetchError):
    """Network-related errors."""


class DiscoveryError(NetworkError):
    """DHT lookup or transport failure."""


class ProtocolError(SwarmFetchError):
    """Wire protocol errors."""


class HandshakeError(ProtocolError):
    """Handshake protocol errors."""


class MetadataWarning(ProtocolError):
    """Peer will probably not supply metadata (non-fatal)."""


class ChunkRequestFailed(ProtocolError):
    """A chunk request failed mid-download."""


class FlowControlViolation(ProtocolError):
    """A request was attempted while the peer was choking us."""


class ValidationError(SwarmFetchError):
    """Data validation errors."""


class ConfigurationError(ValidationError):
    """Configuration validation errors."""


class MalformedMetadata(ValidationError):
    """Metadata could not be decoded or failed validation."""


class BlockVerificationFailed(ValidationError):
    """An assembled block did not match its expected hash."""


class TimeoutError(SwarmFetchError):  # noqa: A001
    """Timeout errors."""


class MetadataTimeout(TimeoutError):
    """Metadata did not arrive within the configured timeout."""


class ChunkTimeout(TimeoutError, ChunkRequestFailed):
    """A chunk response did not arrive within the configured timeout."""


class SessionError(SwarmFetchError):
    """Session lifecycle errors."""


class InvalidStateTransition(SessionError):
    """A session state change not allowed by the transition table."""
