"""Pydantic models for swarmfetch.

Provides validated configuration models and the discovery summary handed
back to callers.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

# Chunk size used on the wire (BEP 3 recommends 16 KiB requests)
DEFAULT_CHUNK_LENGTH = 16384


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class NetworkConfig(BaseModel):
    """Peer wire configuration."""

    listen_port: int = Field(
        default=6881,
        ge=1,
        le=65535,
        description="TCP port for inbound peer connections",
    )
    chunk_length: int = Field(
        default=DEFAULT_CHUNK_LENGTH,
        ge=1024,
        le=131072,
        description="Length of a single chunk request in bytes",
    )
    chunk_timeout: float = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="Seconds to wait for a chunk response",
    )
    metadata_timeout: float | None = Field(
        default=None,
        gt=0.0,
        description="Seconds to wait for metadata once requested (None waits forever)",
    )
    client_prefix: str = Field(
        default="SF",
        min_length=2,
        max_length=2,
        description="Two-letter client code used in generated peer ids",
    )

    @field_validator("client_prefix")
    @classmethod
    def validate_client_prefix(cls, v: str) -> str:
        """Ensure the client prefix is printable ASCII."""
        if not v.isascii() or not v.isalnum():
            msg = "client_prefix must be two ASCII letters or digits"
            raise ValueError(msg)
        return v


class DiscoveryConfig(BaseModel):
    """DHT discovery configuration."""

    dht_port: int = Field(
        default=6882,
        ge=1,
        le=65535,
        description="UDP port the DHT client listens on",
    )
    lookup_timeout: float = Field(
        default=60.0,
        gt=0.0,
        le=3600.0,
        description="Upper bound in seconds for the initial DHT lookup",
    )
    top_peers: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Number of ranked peers returned in the discovery summary",
    )
    max_listed_peers: int = Field(
        default=50,
        ge=0,
        le=10000,
        description="Number of ranked peers written to the log after a lookup",
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(None, description="Log file path")
    structured_logging: bool = Field(
        default=False,
        description="Emit JSON log lines instead of rich console output",
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Include correlation IDs",
    )
    event_bus_max_queue_size: int = Field(
        default=10000,
        ge=100,
        le=1000000,
        description="Maximum size of event queue",
    )
    event_replay_size: int = Field(
        default=1000,
        ge=0,
        le=100000,
        description="Number of recent events kept for replay",
    )


class Config(BaseModel):
    """Main configuration model."""

    network: NetworkConfig = Field(
        default_factory=NetworkConfig,
        description="Network configuration",
    )
    discovery: DiscoveryConfig = Field(
        default_factory=DiscoveryConfig,
        description="Discovery configuration",
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )

    @model_validator(mode="after")
    def validate_config(self):
        """Validate port conflicts between the listener and the DHT."""
        if self.network.listen_port == self.discovery.dht_port:
            msg = "DHT port cannot be the same as TCP listen port"
            raise ValueError(msg)
        return self


class RankedPeer(BaseModel):
    """A discovered peer address with its DHT reference count."""

    address: str = Field(..., description="host:port of the peer")
    node_refs: int = Field(..., ge=1, description="Times the DHT reported it")


class DiscoverySummary(BaseModel):
    """Result of the bounded DHT lookup."""

    top_peers: list[RankedPeer] = Field(default_factory=list)
    total_peers: int = Field(default=0, ge=0)
    other_peers: int = Field(
        default=0,
        ge=0,
        description="Peers outside the top bucket",
    )
    nodes_found: int = Field(default=0, ge=0, description="DHT nodes contacted")
