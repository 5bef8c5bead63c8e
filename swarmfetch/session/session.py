"""Single-torrent download session.

The session is an explicit state machine driven by typed events from three
collaborators: the DHT client, the inbound listener and the per-connection
wire protocol. It exposes three one-shot futures to the caller:

* ``discovery_summary`` resolves once the bounded DHT lookup completes,
* ``metadata_ready`` resolves with the decoded info dictionary,
* ``completed`` resolves with the number of verified blocks.

Only one connection is used as the data source at any time.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from swarmfetch import __version__
from swarmfetch.config.config import get_config
from swarmfetch.core.metadata import assemble
from swarmfetch.discovery.aggregator import DiscoveredPeers
from swarmfetch.peer.link import PeerLink
from swarmfetch.peer.registry import PeerRegistry
from swarmfetch.piece.scheduler import ChunkScheduler
from swarmfetch.piece.verifier import verify_or_raise
from swarmfetch.session.events import (
    Bitfield,
    Choke,
    DHTErrorEvent,
    DHTReady,
    Handshake,
    Have,
    Interested,
    KeepAlive,
    Metadata,
    MetadataWarningEvent,
    PeerFound,
    Port,
    Request,
    Unchoke,
    Uninterested,
)
from swarmfetch.utils.bitfield import count_bits, parse_bitfield
from swarmfetch.utils.events import EventBus, EventPriority, EventType, make_event
from swarmfetch.utils.exceptions import (
    BlockVerificationFailed,
    ChunkRequestFailed,
    DiscoveryError,
    HandshakeError,
    InvalidStateTransition,
    MalformedMetadata,
    MetadataTimeout,
    MetadataWarning,
    NetworkError,
    SessionError,
    SwarmFetchError,
)
from swarmfetch.utils.logging_config import LoggingContext, log_exception
from swarmfetch.utils.tasks import BackgroundTaskGroup

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from swarmfetch.core.metadata import PieceLayout
    from swarmfetch.models import Config, DiscoverySummary
    from swarmfetch.session.events import DiscoveryEvent, WireEvent
    from swarmfetch.session.types import (
        DHTClientProtocol,
        PeerListenerProtocol,
        WireConnection,
    )

logger = logging.getLogger(__name__)

INFO_HASH_LENGTH = 20
_PEER_ID_ALPHABET = string.ascii_letters + string.digits


class SessionState(str, Enum):
    """Download session states."""

    INIT = "init"
    DISCOVERY_PENDING = "discovery_pending"
    AWAITING_METADATA = "awaiting_metadata"
    METADATA_READY = "metadata_ready"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    COMPLETE = "complete"
    FAILED = "failed"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.INIT: frozenset({SessionState.DISCOVERY_PENDING, SessionState.FAILED}),
    SessionState.DISCOVERY_PENDING: frozenset(
        {
            SessionState.AWAITING_METADATA,
            SessionState.METADATA_READY,
            SessionState.FAILED,
        }
    ),
    SessionState.AWAITING_METADATA: frozenset(
        {SessionState.METADATA_READY, SessionState.FAILED}
    ),
    SessionState.METADATA_READY: frozenset({SessionState.DOWNLOADING, SessionState.FAILED}),
    SessionState.DOWNLOADING: frozenset({SessionState.VERIFYING, SessionState.FAILED}),
    SessionState.VERIFYING: frozenset(
        {SessionState.DOWNLOADING, SessionState.COMPLETE, SessionState.FAILED}
    ),
    SessionState.COMPLETE: frozenset(),
    # Caller re-initiation after a chunk or verification failure
    SessionState.FAILED: frozenset({SessionState.METADATA_READY}),
}


def generate_peer_id(client_prefix: str = "SF") -> bytes:
    """Generate an Azureus-style peer id, e.g. ``-SF0100-xxxxxxxxxxxx``."""
    version = "".join(part.zfill(2) for part in __version__.split(".")[:2])
    prefix = f"-{client_prefix}{version}-".encode()
    suffix = "".join(secrets.choice(_PEER_ID_ALPHABET) for _ in range(20 - len(prefix)))
    return prefix + suffix.encode()


def normalize_info_hash(info_hash: bytes | str) -> bytes:
    """Accept a raw 20-byte info hash or its 40-character hex form."""
    if isinstance(info_hash, str):
        try:
            info_hash = bytes.fromhex(info_hash)
        except ValueError as e:
            msg = f"Info hash is not valid hex: {info_hash!r}"
            raise ValueError(msg) from e
    if len(info_hash) != INFO_HASH_LENGTH:
        msg = f"Info hash must be {INFO_HASH_LENGTH} bytes, got {len(info_hash)}"
        raise ValueError(msg)
    return bytes(info_hash)


class TorrentSession:
    """Coordinates discovery, metadata and the block download of one torrent.

    Must be constructed inside a running event loop; all handlers run on
    that loop and never block.
    """

    def __init__(
        self,
        info_hash: bytes | str,
        dht: DHTClientProtocol,
        *,
        listener: PeerListenerProtocol | None = None,
        config: Config | None = None,
        event_bus: EventBus | None = None,
        block_sink: Callable[[int, bytes], None] | None = None,
    ):
        self.config = config or get_config()
        self.info_hash = normalize_info_hash(info_hash)
        self.peer_id = generate_peer_id(self.config.network.client_prefix)
        self.dht = dht
        self.listener = listener
        self.block_sink = block_sink

        self._owns_event_bus = event_bus is None
        self.event_bus = event_bus or EventBus(
            max_queue_size=self.config.observability.event_bus_max_queue_size,
            max_replay_events=self.config.observability.event_replay_size,
        )

        self.state = SessionState.INIT
        self.peers = PeerRegistry(self.event_bus)
        self.discovered = DiscoveredPeers()
        self.links: list[PeerLink] = []

        self.have_metadata = False
        self.layout: PieceLayout | None = None
        self.info: dict[bytes, Any] | None = None

        self.active_source: PeerLink | None = None
        self.scheduler: ChunkScheduler | None = None
        self.next_block = 0
        self.verified_blocks: set[int] = set()
        self.last_error: SwarmFetchError | None = None
        self.warnings: list[MetadataWarning] = []

        loop = asyncio.get_running_loop()
        self.discovery_summary: asyncio.Future[DiscoverySummary] = loop.create_future()
        self.metadata_ready: asyncio.Future[dict[bytes, Any]] = loop.create_future()
        self.completed: asyncio.Future[int] = loop.create_future()

        self._tasks = BackgroundTaskGroup()
        self._lookup_task: asyncio.Task | None = None
        self._metadata_timer: asyncio.Task | None = None
        self._download_task: asyncio.Task | None = None

        self._wire_handlers: dict[type, Callable[[PeerLink, Any], None]] = {
            Handshake: self._on_handshake,
            Bitfield: self._on_bitfield,
            Have: self._on_have,
            Request: self._on_request,
            Interested: self._on_interested,
            Uninterested: self._on_uninterested,
            Port: self._on_port,
            KeepAlive: self._on_keep_alive,
            Choke: self._on_choke,
            Unchoke: self._on_unchoke,
            Metadata: self._on_metadata,
            MetadataWarningEvent: self._on_metadata_warning,
        }

    # ------------------------------------------------------------------
    # State machine helpers
    # ------------------------------------------------------------------

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            msg = f"Cannot move from {self.state.value} to {new_state.value}"
            raise InvalidStateTransition(
                msg, {"from": self.state.value, "to": new_state.value}
            )
        old_state, self.state = self.state, new_state
        logger.info("state transition: %s -> %s", old_state.value, new_state.value)
        self._emit(
            EventType.SESSION_STATE_CHANGED,
            old_state=old_state.value,
            new_state=new_state.value,
        )

    def _emit(
        self,
        event_type: EventType,
        priority: EventPriority = EventPriority.NORMAL,
        **data: Any,
    ) -> None:
        self.event_bus.emit(
            make_event(
                event_type,
                source=f"session:{self.info_hash.hex()}",
                priority=priority,
                **data,
            )
        )

    @staticmethod
    def _resolve(future: asyncio.Future, value: Any) -> None:
        if not future.done():
            future.set_result(value)

    @staticmethod
    def _reject(future: asyncio.Future, error: BaseException) -> None:
        if not future.done():
            future.set_exception(error)

    def _fail(self, error: SwarmFetchError) -> None:
        self.last_error = error
        self._reject(self.completed, error)
        if self.state not in (SessionState.FAILED, SessionState.COMPLETE):
            self._transition(SessionState.FAILED)
            self._emit(
                EventType.DOWNLOAD_FAILED,
                EventPriority.HIGH,
                error=error.message,
                error_type=type(error).__name__,
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> asyncio.Future[DiscoverySummary]:
        """Start the DHT and the inbound listener.

        Returns the discovery-summary future.
        """
        if self.state is not SessionState.INIT:
            msg = f"Session already started (state={self.state.value})"
            raise SessionError(msg)

        logger.info(
            "Starting session for [ %s ] as peer [ %s ]",
            self.info_hash.hex(),
            self.peer_id.decode(errors="replace"),
        )
        if self._owns_event_bus:
            await self.event_bus.start()

        self._transition(SessionState.DISCOVERY_PENDING)
        self.dht.add_listener(self.handle_discovery_event)
        try:
            await asyncio.gather(self._start_dht(), self._start_listener())
        except NetworkError as e:
            log_exception(logger, e, "Session start failed")
            self._reject(self.discovery_summary, e)
            self._reject(self.metadata_ready, e)
            self._fail(e)
            raise
        return self.discovery_summary

    async def _start_dht(self) -> None:
        port = self.config.discovery.dht_port
        try:
            await self.dht.listen(port)
        except Exception as e:
            self._fail_discovery(DiscoveryError(f"DHT failed to listen on port {port}: {e}"))
            return
        logger.info("DHT listening on port [ %d ]", port)

    async def _start_listener(self) -> None:
        if self.listener is None:
            return
        port = self.config.network.listen_port
        try:
            await self.listener.start(port, self.accept_connection)
        except Exception as e:
            msg = f"Failed to listen for peers on port {port}: {e}"
            raise NetworkError(msg, {"port": port}) from e
        logger.info("Listening for peers on port [ %d ]", port)

    async def close(self) -> None:
        """Cancel background work, stop the listener and cancel pending futures."""
        await self._tasks.cancel_and_wait()
        if self.scheduler is not None:
            self.scheduler.abort()
        if self.listener is not None:
            await self.listener.close()
        for future in (self.discovery_summary, self.metadata_ready, self.completed):
            if not future.done():
                future.cancel()
        if self._owns_event_bus:
            await self.event_bus.stop()
        logger.info("Session for [ %s ] closed", self.info_hash.hex())

    def reset_download(self) -> asyncio.Future[int]:
        """Re-initiate the download after a chunk or verification failure.

        Returns the fresh ``completed`` future.
        """
        if self.state is not SessionState.FAILED or self.layout is None:
            msg = "Only a failed session with metadata can be reset"
            raise SessionError(msg, {"state": self.state.value})

        self.completed = asyncio.get_running_loop().create_future()
        self.last_error = None
        self.active_source = None
        self.scheduler = None
        self._transition(SessionState.METADATA_READY)
        self._start_from_unchoked_link()
        return self.completed

    def get_status(self) -> dict[str, Any]:
        """Snapshot of the session for reporting."""
        return {
            "info_hash": self.info_hash.hex(),
            "state": self.state.value,
            "peers": len(self.peers),
            "connections": len(self.links),
            "discovered_peers": len(self.discovered),
            "blocks": self.layout.num_blocks if self.layout else None,
            "verified_blocks": len(self.verified_blocks),
            "next_block": self.next_block,
            "active_source": str(self.active_source) if self.active_source else None,
            "last_error": str(self.last_error) if self.last_error else None,
        }

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def handle_discovery_event(self, event: DiscoveryEvent) -> None:
        """Entry point for events from the DHT client."""
        if isinstance(event, DHTReady):
            self._on_dht_ready()
        elif isinstance(event, PeerFound):
            self._on_peer_found(event)
        elif isinstance(event, DHTErrorEvent):
            self._on_dht_error(event)
        else:
            logger.debug("Ignoring unknown discovery event %r", event)

    def _on_dht_ready(self) -> None:
        if self._lookup_task is not None or self.discovery_summary.done():
            return
        logger.info("DHT is ready, requesting peers for [ %s ]", self.info_hash.hex())
        self._lookup_task = self._tasks.create(self._run_lookup(), name="dht-lookup")

    def _on_peer_found(self, event: PeerFound) -> None:
        if event.info_hash != self.info_hash:
            logger.debug("Ignoring DHT peer %s for another info hash", event.address)
            return
        record = self.discovered.record_sighting(event.address)
        logger.debug(
            "Found DHT peer [ %s ] from [ %s ] (%d refs)",
            event.address,
            "%s:%d" % event.from_node if event.from_node else "?",
            record.node_refs,
        )
        self._emit(
            EventType.DHT_PEER_FOUND,
            EventPriority.LOW,
            address=event.address,
            node_refs=record.node_refs,
        )

    def _on_dht_error(self, event: DHTErrorEvent) -> None:
        logger.error("DHT fatal error: %s", event.error)
        if self._lookup_task is not None and not self._lookup_task.done():
            self._lookup_task.cancel()
        self._fail_discovery(DiscoveryError(f"DHT error: {event.error}"))

    def _fail_discovery(self, error: DiscoveryError) -> None:
        log_exception(logger, error, "Discovery stopped")
        self._emit(EventType.DHT_ERROR, EventPriority.HIGH, error=error.message)
        self._reject(self.discovery_summary, error)

    async def _run_lookup(self) -> None:
        cfg = self.config.discovery
        try:
            nodes_found = await asyncio.wait_for(
                self.dht.lookup(self.info_hash), timeout=cfg.lookup_timeout
            )
        except asyncio.TimeoutError:
            self._fail_discovery(
                DiscoveryError(
                    f"DHT lookup timed out after {cfg.lookup_timeout}s",
                    {"peers_so_far": len(self.discovered)},
                )
            )
            return
        except Exception as e:
            self._fail_discovery(DiscoveryError(f"DHT lookup error: {e}"))
            return

        logger.info("DHT found [ %d ] nodes", nodes_found)
        self.discovered.log_ranking(cfg.max_listed_peers)
        summary = self.discovered.summary(cfg.top_peers, nodes_found=nodes_found)
        self._emit(
            EventType.DHT_QUERY_COMPLETE,
            nodes_found=nodes_found,
            total_peers=summary.total_peers,
        )
        self._resolve(self.discovery_summary, summary)

    # ------------------------------------------------------------------
    # Wire protocol
    # ------------------------------------------------------------------

    def accept_connection(self, connection: WireConnection) -> PeerLink:
        """Adopt a new peer connection and subscribe to its events."""
        if self.state is SessionState.INIT:
            msg = "Session must be started before accepting connections"
            raise SessionError(msg)

        link = PeerLink(connection=connection)
        self.links.append(link)
        connection.add_listener(lambda event: self.handle_wire_event(link, event))
        logger.info("New incoming peer connection (%d open)", len(self.links))
        return link

    def handle_wire_event(self, link: PeerLink, event: WireEvent) -> None:
        """Entry point for events from one peer connection."""
        link.touch()
        if link.peer_id is not None:
            self.peers.touch(link.peer_id)

        handler = self._wire_handlers.get(type(event))
        if handler is None:
            logger.debug("Ignoring unknown wire event %r from %s", event, link)
            return
        handler(link, event)

    def _on_handshake(self, link: PeerLink, event: Handshake) -> None:
        if event.info_hash != self.info_hash:
            error = HandshakeError(
                f"Refusing handshake from {event.peer_id.hex()}",
                {"info_hash": event.info_hash.hex()},
            )
            log_exception(logger, error, "Handshake rejected")
            self._emit(
                EventType.HANDSHAKE_REJECTED,
                peer_id=event.peer_id.hex(),
                info_hash=event.info_hash.hex(),
            )
            return

        logger.info("Handshake from %s", event.peer_id.hex())
        link.peer_id = event.peer_id
        link.extensions = dict(event.extensions)
        self.peers.add_peer(event.peer_id, event.extensions)
        link.connection.send_handshake(self.info_hash, self.peer_id, {"dht": True})

        if not self.have_metadata:
            self._request_metadata(link)

    def _request_metadata(self, link: PeerLink) -> None:
        if self.state is SessionState.DISCOVERY_PENDING:
            self._transition(SessionState.AWAITING_METADATA)
            timeout = self.config.network.metadata_timeout
            if timeout is not None:
                self._metadata_timer = self._tasks.create(
                    self._expire_metadata(timeout), name="metadata-timeout"
                )
        if self.state is not SessionState.AWAITING_METADATA:
            return
        link.connection.fetch_metadata()
        self._emit(EventType.METADATA_REQUESTED, peer_id=(link.peer_id or b"").hex())

    async def _expire_metadata(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        if self.have_metadata:
            return
        error = MetadataTimeout(
            f"No metadata received within {timeout}s",
            {"peers": len(self.peers)},
        )
        log_exception(logger, error, "Metadata fetch abandoned")
        self._reject(self.metadata_ready, error)
        self._fail(error)

    def _on_metadata(self, link: PeerLink, event: Metadata) -> None:
        if self.have_metadata or self.state is SessionState.FAILED:
            logger.debug("Ignoring metadata from %s, already handled", link)
            return
        # Set before decoding so a second delivery is never acted upon
        self.have_metadata = True
        if self._metadata_timer is not None:
            self._metadata_timer.cancel()

        try:
            with LoggingContext("metadata assembly", logger):
                assembled = assemble(event.raw, self.config.network.chunk_length)
        except MalformedMetadata as e:
            log_exception(logger, e, "Invalid metadata")
            self._emit(EventType.METADATA_ERROR, EventPriority.HIGH, error=e.message)
            self._reject(self.metadata_ready, e)
            self._fail(e)
            return

        self.layout = assembled.layout
        self.info = assembled.info
        self._transition(SessionState.METADATA_READY)
        self._emit(
            EventType.METADATA_READY,
            name=self.layout.name,
            blocks=self.layout.num_blocks,
            block_length=self.layout.block_length,
        )
        self._resolve(self.metadata_ready, assembled.info)
        self._start_from_unchoked_link()

    def _on_metadata_warning(self, link: PeerLink, event: MetadataWarningEvent) -> None:
        warning = MetadataWarning(
            event.reason, {"peer_id": (link.peer_id or b"").hex()}
        )
        self.warnings.append(warning)
        logger.warning("Metadata warning from %s: %s", link, event.reason)
        self._emit(EventType.METADATA_WARNING, reason=event.reason)

    def _on_bitfield(self, link: PeerLink, event: Bitfield) -> None:
        link.bitfield = bytes(event.bits)
        if self.layout is not None:
            available = parse_bitfield(link.bitfield, self.layout.num_blocks)
            logger.debug(
                "%s has %d of %d blocks", link, len(available), self.layout.num_blocks
            )
        else:
            logger.debug("%s advertises %d blocks", link, count_bits(link.bitfield))

    def _on_have(self, link: PeerLink, event: Have) -> None:
        link.have.add(event.block_index)
        if event.block_index == self.next_block:
            logger.debug("%s now has block #%d that we need", link, event.block_index)

    def _on_request(self, link: PeerLink, event: Request) -> None:
        logger.warning(
            "%s requested block #%d; seeding is not supported",
            link,
            event.block_index,
        )
        event.respond(None)

    def _on_interested(self, link: PeerLink, _event: Interested) -> None:
        link.peer_interested = True
        logger.debug("%s is now interested", link)

    def _on_uninterested(self, link: PeerLink, _event: Uninterested) -> None:
        link.peer_interested = False
        logger.debug("%s is no longer interested", link)

    def _on_port(self, link: PeerLink, event: Port) -> None:
        link.dht_port = event.dht_port

    def _on_keep_alive(self, link: PeerLink, _event: KeepAlive) -> None:
        logger.debug("Keep-alive from %s", link)

    def _on_choke(self, link: PeerLink, _event: Choke) -> None:
        link.peer_choking = True
        logger.info("Now being choked by %s", link)

    def _on_unchoke(self, link: PeerLink, _event: Unchoke) -> None:
        link.peer_choking = False

        if self.active_source is not None and self.active_source is not link:
            logger.debug(
                "Unchoked by %s, but %s is already our data source",
                link,
                self.active_source,
            )
            return

        if self.active_source is link:
            if self.state is SessionState.DOWNLOADING and self._download_task is None:
                logger.info("%s unchoked us again, resuming block #%d", link, self.next_block)
                self._spawn_download()
            return

        if self.state is SessionState.METADATA_READY:
            self._start_download(link)
        else:
            logger.debug("Unchoked by %s in state %s", link, self.state.value)

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def _start_from_unchoked_link(self) -> None:
        candidate = next(
            (link for link in self.links if link.handshaken and not link.peer_choking),
            None,
        )
        if candidate is not None:
            self._start_download(candidate)

    def _start_download(self, link: PeerLink) -> None:
        assert self.layout is not None
        self.active_source = link
        self.scheduler = ChunkScheduler(
            self.layout,
            link,
            chunk_timeout=self.config.network.chunk_timeout,
            event_bus=self.event_bus,
        )
        if link.peer_has(self.next_block):
            logger.info("%s has block #%d that we need", link, self.next_block)
        else:
            logger.info("%s does not advertise block #%d", link, self.next_block)
        self._transition(SessionState.DOWNLOADING)
        self._spawn_download()

    def _spawn_download(self) -> None:
        self._download_task = self._tasks.create(
            self._download_blocks(), name=f"download-{self.info_hash.hex()[:8]}"
        )

    async def _download_blocks(self) -> None:
        assert self.layout is not None and self.scheduler is not None
        layout = self.layout
        try:
            while self.next_block < layout.num_blocks:
                index = self.next_block
                if self.scheduler.state is not None:
                    block = await self.scheduler.resume()
                else:
                    block = await self.scheduler.download_block(index)
                if block is None:
                    logger.info("Block #%d paused, waiting for unchoke", index)
                    return

                self._transition(SessionState.VERIFYING)
                verify_or_raise(block, layout.expected_hash(index), index)
                self._on_block_verified(index, block)
                self.next_block += 1
                if self.next_block < layout.num_blocks:
                    self._transition(SessionState.DOWNLOADING)

            self._transition(SessionState.COMPLETE)
            logger.info(
                "Download of %s complete: %d blocks verified",
                layout.name,
                len(self.verified_blocks),
            )
            self._emit(
                EventType.DOWNLOAD_COMPLETE,
                name=layout.name,
                blocks=len(self.verified_blocks),
            )
            self._resolve(self.completed, len(self.verified_blocks))
        except ChunkRequestFailed as e:
            log_exception(logger, e, "Chunk request failed")
            self._emit(EventType.CHUNK_REQUEST_FAILED, EventPriority.HIGH, error=e.message)
            self.active_source = None
            self._fail(e)
        except BlockVerificationFailed as e:
            log_exception(logger, e, "Block discarded")
            self._emit(
                EventType.BLOCK_VERIFICATION_FAILED,
                EventPriority.HIGH,
                block_index=self.next_block,
            )
            self.active_source = None
            self._fail(e)
        except Exception as e:
            error = SessionError(
                f"Download stopped at block #{self.next_block}: {e}",
                {"block_index": self.next_block, "error_type": type(e).__name__},
            )
            log_exception(logger, error, "Download aborted")
            self.active_source = None
            self._fail(error)
        finally:
            self._download_task = None

    def _on_block_verified(self, index: int, block: bytes) -> None:
        self.verified_blocks.add(index)
        logger.info("Block #%d verification [ True ]", index)
        for link in self.links:
            if link.handshaken:
                link.connection.send_have(index)
        if self.block_sink is not None:
            self.block_sink(index, block)
        self._emit(EventType.BLOCK_VERIFIED, block_index=index, size=len(block))
