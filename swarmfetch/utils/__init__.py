"""Shared utilities and infrastructure.

This module contains common utilities used throughout the application.
"""

from __future__ import annotations

from swarmfetch.utils.events import Event, EventBus, EventHandler, EventType
from swarmfetch.utils.exceptions import (
    BlockVerificationFailed,
    ChunkRequestFailed,
    ChunkTimeout,
    ConfigurationError,
    DiscoveryError,
    MalformedMetadata,
    MetadataTimeout,
    MetadataWarning,
    SwarmFetchError,
)
from swarmfetch.utils.logging_config import get_logger, setup_logging

__all__ = [
    # Exceptions
    "BlockVerificationFailed",
    "ChunkRequestFailed",
    "ChunkTimeout",
    "ConfigurationError",
    "DiscoveryError",
    # Events
    "Event",
    "EventBus",
    "EventHandler",
    "EventType",
    "MalformedMetadata",
    "MetadataTimeout",
    "MetadataWarning",
    "SwarmFetchError",
    # Logging
    "get_logger",
    "setup_logging",
]
