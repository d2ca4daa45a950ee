"""The sync session: one control loop per process.

The loop waits on two things only: the next transport event and the
periodic redial tick. Every handler runs to completion before the next
event is taken, so commit store and peer registry writes never interleave.
"""

import asyncio
import logging
import uuid

from ..config import Config
from ..repo.commit_store import CommitStore, StoreError
from ..repo.peer_registry import PeerRegistry, RegistryError
from ..transport.base import (
    ConnectionClosed,
    ConnectionEstablished,
    ListeningOn,
    MessageReceived,
    PeerDiscovered,
    PeerExpired,
    Transport,
    TransportError,
    TransportEvent,
)
from ..transport.mqtt import MqttTransport
from ..transport.tcp import TcpTransport
from .engine import SyncEngine
from .messages import SyncMessage, encode

logger = logging.getLogger(__name__)


class SyncSession:
    """Drives the sync engine and peer registry off transport events."""

    def __init__(
        self,
        store: CommitStore,
        registry: PeerRegistry,
        transport: Transport,
        engine: SyncEngine,
        topic: str = "git2p",
        redial_interval_seconds: float = 30.0,
        settle_delay_seconds: float = 1.0,
    ):
        """Initialize the session.

        Args:
            store: Local commit store.
            registry: Known peer addresses.
            transport: Pub/sub transport to listen and broadcast on.
            engine: Protocol engine bound to the same store.
            topic: Broadcast topic for sync messages.
            redial_interval_seconds: How often every known peer is redialed.
            settle_delay_seconds: Pause after a new connection before asking
                for commits, so the remote side has subscribed.
        """
        self.store = store
        self.registry = registry
        self.transport = transport
        self.engine = engine
        self.topic = topic
        self.redial_interval = redial_interval_seconds
        self.settle_delay = settle_delay_seconds
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, addr: str | None = None) -> None:
        """Start the transport and make first contact.

        Args:
            addr: Optional peer address to dial and remember.

        Raises:
            TransportError: If the transport cannot start listening.
        """
        await self.transport.start()
        self.transport.subscribe(self.topic)

        if addr:
            try:
                await self.transport.dial(addr)
                logger.info(f"Dialed peer at {addr}")
            except TransportError as e:
                logger.warning(f"Failed to dial {addr}: {e}")
            else:
                self._remember(addr)

        logger.info("Waiting for peers to connect for automatic synchronization...")
        await self.redial_known_peers()

    async def run(self) -> None:
        """Process events and redial ticks until stopped or cancelled."""
        loop = asyncio.get_running_loop()
        self._running = True
        next_tick = loop.time() + self.redial_interval

        while self._running:
            now = loop.time()
            if now >= next_tick:
                next_tick = now + self.redial_interval
                logger.info("Periodically trying to connect to known peers...")
                await self.redial_known_peers()
                continue

            event = await self.transport.next_event(timeout=next_tick - now)
            if event is not None:
                await self.dispatch(event)

    async def stop(self) -> None:
        self._running = False
        await self.transport.stop()
        logger.info("Sync session stopped")

    async def redial_known_peers(self) -> None:
        try:
            known_peers = self.registry.load()
        except RegistryError as e:
            logger.error(f"Error reading known peers: {e}")
            return

        for address in known_peers:
            try:
                await self.transport.dial(address)
            except TransportError as e:
                logger.info(f"Failed to dial known peer {address}: {e}")

    async def dispatch(self, event: TransportEvent) -> None:
        """Handle one event; failures are logged and never end the loop."""
        try:
            await self._dispatch(event)
        except (StoreError, RegistryError, TransportError, OSError) as e:
            logger.error(f"Error handling {type(event).__name__}: {e}")
        except Exception as e:
            logger.error(f"Unexpected error handling {type(event).__name__}: {e}", exc_info=True)

    async def _dispatch(self, event: TransportEvent) -> None:
        if isinstance(event, MessageReceived):
            await self._on_message(event)
        elif isinstance(event, ConnectionEstablished):
            await self._on_connection_established(event)
        elif isinstance(event, PeerDiscovered):
            await self._on_peer_discovered(event)
        elif isinstance(event, PeerExpired):
            self._on_peer_expired(event)
        elif isinstance(event, ListeningOn):
            logger.info(f"Listening on {event.address}")
        elif isinstance(event, ConnectionClosed):
            logger.info(f"Connection closed with: {event.peer_id}")
        else:
            raise TypeError(f"Unhandled transport event: {event!r}")

    async def _on_message(self, event: MessageReceived) -> None:
        if event.topic != self.topic:
            logger.debug(f"Ignoring message on topic {event.topic}")
            return
        for reply in self.engine.handle_payload(event.data, event.source):
            await self.publish(reply)

    async def _on_connection_established(self, event: ConnectionEstablished) -> None:
        logger.info(f"Connection established with: {event.peer_id}")
        if event.address:
            self._remember(event.address)
        await asyncio.sleep(self.settle_delay)
        await self.publish(self.engine.ask_for_commits())

    async def _on_peer_discovered(self, event: PeerDiscovered) -> None:
        self.transport.add_to_view(event.peer_id)
        self._remember(event.address)
        try:
            await self.transport.dial(event.address)
        except TransportError as e:
            logger.info(f"Failed to dial discovered peer {event.address}: {e}")
        await self.publish(self.engine.ask_for_commits())

    def _on_peer_expired(self, event: PeerExpired) -> None:
        if not self.transport.is_discovered(event.peer_id):
            self.transport.remove_from_view(event.peer_id)

    def _remember(self, address: str) -> None:
        try:
            self.registry.remember(address)
        except RegistryError as e:
            logger.warning(f"Could not save peer address: {e}")

    async def publish(self, message: SyncMessage) -> None:
        await self.transport.publish(self.topic, encode(message))


def build_transport(config: Config, peer_id: str) -> Transport:
    """Create the transport selected by ``config.transport.kind``."""
    kind = config.transport.kind
    if kind == "tcp":
        return TcpTransport(
            peer_id,
            listen_host=config.transport.listen_host,
            listen_port=config.transport.listen_port,
            connect_timeout=config.transport.connect_timeout_seconds,
            max_frame_bytes=config.transport.max_frame_bytes,
            node_name=config.node.name,
            discovery=config.discovery,
        )
    if kind == "mqtt":
        return MqttTransport(peer_id, config.mqtt)
    raise ValueError(f"Unknown transport: {kind!r}")


def build_session(config: Config, peer_id: str | None = None) -> SyncSession:
    """Wire store, registry, transport and engine from configuration.

    Raises:
        StoreError: If the repository does not exist.
    """
    root = config.repo.root
    if not root.is_dir():
        raise StoreError("Repository not initialized! Run 'git2p init' first.")

    peer_id = peer_id or uuid.uuid4().hex
    logger.info(f"Local peer id: {peer_id}")

    store = CommitStore(root)
    return SyncSession(
        store=store,
        registry=PeerRegistry(config.repo.known_peers_path),
        transport=build_transport(config, peer_id),
        engine=SyncEngine(store, peer_id),
        topic=config.sync.topic,
        redial_interval_seconds=config.sync.redial_interval_seconds,
        settle_delay_seconds=config.sync.settle_delay_seconds,
    )


async def run_session(config: Config, addr: str | None = None) -> None:
    """Run a sync session until interrupted.

    Args:
        config: Loaded configuration.
        addr: Optional peer address to dial first.
    """
    session = build_session(config)
    await session.start(addr)
    try:
        await session.run()
    finally:
        await session.stop()
