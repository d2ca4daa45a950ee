"""Serverless TCP transport with flood-style topic broadcast.

Every peer listens on a TCP port and keeps at most one connection per
remote peer id. Frames are length-prefixed (4-byte big-endian) and consist
of a JSON header line followed by the raw payload. Published messages carry
a unique id; each peer delivers a message once and forwards it to the rest
of its broadcast view, so messages reach peers that are not directly
connected to the publisher.
"""

import asyncio
import json
import logging
import struct
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any

from ..config import DiscoveryConfig
from ..repo.peer_registry import format_address, normalize_address, parse_address
from .base import (
    ConnectionClosed,
    ConnectionEstablished,
    ListeningOn,
    MessageReceived,
    Transport,
    TransportError,
)
from .discovery import ZeroconfDiscovery

logger = logging.getLogger(__name__)

SEEN_CACHE_SIZE = 10_000


class FrameError(TransportError):
    """Raised when a peer sends an invalid frame."""

    pass


@dataclass
class PeerConnection:
    """An authenticated-by-hello connection to one peer."""

    peer_id: str
    address: str | None  # Dialable address of the peer
    initiator_id: str  # Peer id of the side that opened the connection
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    receive_task: asyncio.Task | None = None


class TcpTransport(Transport):
    """Peer-to-peer transport over plain TCP connections."""

    def __init__(
        self,
        local_peer_id: str,
        listen_host: str = "0.0.0.0",
        listen_port: int = 0,
        connect_timeout: float = 10.0,
        max_frame_bytes: int = 64 * 1024 * 1024,
        node_name: str = "git2p-node",
        discovery: DiscoveryConfig | None = None,
    ):
        """Initialize the transport.

        Args:
            local_peer_id: This node's identity, sent in the hello frame.
            listen_host: Interface to listen on.
            listen_port: Port to listen on; 0 picks a free port.
            connect_timeout: Seconds to wait for an outbound connection.
            max_frame_bytes: Largest frame accepted from a peer.
            node_name: Name used when announcing via mDNS.
            discovery: mDNS settings; None or disabled turns discovery off.
        """
        super().__init__(local_peer_id)
        self.listen_host = listen_host
        self.listen_port = listen_port
        self.connect_timeout = connect_timeout
        self.max_frame_bytes = max_frame_bytes
        self.node_name = node_name
        self._discovery_config = discovery

        self.server: asyncio.Server | None = None
        self.discovery: ZeroconfDiscovery | None = None
        self.peers: dict[str, PeerConnection] = {}
        self._view: set[str] = set()
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._background_tasks: set[asyncio.Task] = set()
        self._running = False

    # Lifecycle

    async def start(self) -> None:
        try:
            self.server = await asyncio.start_server(
                self._handle_incoming_connection,
                self.listen_host,
                self.listen_port,
            )
        except OSError as e:
            raise TransportError(f"Failed to listen on {self.listen_host}:{self.listen_port}: {e}") from e

        self._running = True
        for sock in self.server.sockets:
            host, port = sock.getsockname()[:2]
            self.listen_port = port
            address = format_address(host, port)
            logger.info(f"Listening on {address}")
            self.emit(ListeningOn(address=address))

        if self._discovery_config and self._discovery_config.enabled:
            self.discovery = ZeroconfDiscovery(
                peer_id=self.local_peer_id,
                node_name=self.node_name,
                port=self.listen_port,
                on_event=self.emit,
                service_type=self._discovery_config.service_type,
                announce=self._discovery_config.announce,
                browse=self._discovery_config.browse,
            )
            try:
                await self.discovery.start()
            except Exception as e:
                # Discovery is optional: explicit dials still work without it
                logger.error(f"Failed to start mDNS discovery: {e}")
                self.discovery = None

    async def stop(self) -> None:
        self._running = False

        if self.discovery:
            try:
                await self.discovery.stop()
            except Exception as e:
                logger.error(f"Error stopping discovery: {e}")
            self.discovery = None

        for peer_id in list(self.peers):
            await self.disconnect_peer(peer_id)

        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

        if self.server:
            self.server.close()
            await self.server.wait_closed()
            self.server = None
            logger.info("TCP transport stopped")

    # Broadcast view

    def add_to_view(self, peer_id: str) -> None:
        self._view.add(peer_id)

    def remove_from_view(self, peer_id: str) -> None:
        self._view.discard(peer_id)

    def in_view(self, peer_id: str) -> bool:
        return peer_id in self._view

    def is_discovered(self, peer_id: str) -> bool:
        return bool(self.discovery and self.discovery.is_discovered(peer_id))

    # Connections

    def is_connected(self, peer_id: str) -> bool:
        return peer_id in self.peers

    def _connected_address(self, address: str) -> str | None:
        for peer in self.peers.values():
            if peer.address == address:
                return peer.peer_id
        return None

    async def dial(self, address: str) -> None:
        try:
            address = normalize_address(address)
            host, port = parse_address(address)
        except ValueError as e:
            raise TransportError(str(e)) from e

        if peer_id := self._connected_address(address):
            logger.debug(f"Already connected to {peer_id} at {address}")
            return

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise TransportError(f"Failed to dial {address}: {e}") from e

        try:
            hello = await self._handshake(reader, writer)
        except (OSError, asyncio.IncompleteReadError, FrameError) as e:
            await self._close_writer(writer)
            raise TransportError(f"Handshake with {address} failed: {e}") from e

        self._register(
            PeerConnection(
                peer_id=hello["peer_id"],
                address=address,
                initiator_id=self.local_peer_id,
                reader=reader,
                writer=writer,
            )
        )

    async def _handle_incoming_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        peername = writer.get_extra_info("peername")
        logger.debug(f"Incoming connection from {peername}")

        try:
            hello = await self._handshake(reader, writer)
        except (OSError, asyncio.IncompleteReadError, FrameError) as e:
            logger.warning(f"Handshake with {peername} failed: {e}")
            await self._close_writer(writer)
            return

        address = None
        listen_port = hello.get("listen_port")
        if peername and isinstance(listen_port, int) and 0 < listen_port < 65536:
            address = format_address(peername[0], listen_port)

        self._register(
            PeerConnection(
                peer_id=hello["peer_id"],
                address=address,
                initiator_id=hello["peer_id"],
                reader=reader,
                writer=writer,
            )
        )

    async def _handshake(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> dict[str, Any]:
        """Exchange hello frames; both sides send first, then read."""
        await self._write_frame(
            writer,
            {"type": "hello", "peer_id": self.local_peer_id, "listen_port": self.listen_port},
        )
        header, _ = await self._read_frame(reader)
        peer_id = header.get("peer_id")
        if header.get("type") != "hello" or not isinstance(peer_id, str) or not peer_id:
            raise FrameError("Expected hello frame")
        if peer_id == self.local_peer_id:
            raise FrameError("Connected to self")
        return header

    def _register(self, conn: PeerConnection) -> None:
        """Keep one connection per peer.

        When both sides dial each other at once, both keep the connection
        opened by the peer with the smaller id.
        """
        existing = self.peers.get(conn.peer_id)
        if existing is not None:
            preferred = min(self.local_peer_id, conn.peer_id)
            if existing.initiator_id == preferred or conn.initiator_id != preferred:
                logger.debug(f"Dropping duplicate connection to {conn.peer_id}")
                self._spawn(self._close_writer(conn.writer))
                return
            if conn.address is None:
                conn.address = existing.address
            self.peers[conn.peer_id] = conn
            self._spawn(self._close_connection(existing))
            conn.receive_task = asyncio.create_task(self._receive_loop(conn))
            return

        self.peers[conn.peer_id] = conn
        self._view.add(conn.peer_id)
        conn.receive_task = asyncio.create_task(self._receive_loop(conn))
        logger.info(f"Connection established with: {conn.peer_id}")
        self.emit(ConnectionEstablished(peer_id=conn.peer_id, address=conn.address))

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _close_connection(self, conn: PeerConnection) -> None:
        if conn.receive_task and not conn.receive_task.done():
            conn.receive_task.cancel()
        await self._close_writer(conn.writer)

    async def _close_writer(self, writer: asyncio.StreamWriter) -> None:
        try:
            writer.close()
            await writer.wait_closed()
        except OSError:
            pass

    async def disconnect_peer(self, peer_id: str) -> None:
        conn = self.peers.pop(peer_id, None)
        if conn is None:
            return
        await self._close_connection(conn)
        logger.info(f"Disconnected from peer {peer_id}")

    # Framing

    async def _write_frame(
        self,
        writer: asyncio.StreamWriter,
        header: dict[str, Any],
        payload: bytes = b"",
    ) -> None:
        body = json.dumps(header).encode("utf-8") + b"\n" + payload
        writer.write(struct.pack("!I", len(body)) + body)
        await writer.drain()

    async def _read_frame(
        self, reader: asyncio.StreamReader
    ) -> tuple[dict[str, Any], bytes]:
        length_bytes = await reader.readexactly(4)
        length = struct.unpack("!I", length_bytes)[0]
        if length > self.max_frame_bytes:
            raise FrameError(f"Frame too large: {length} bytes")

        body = await reader.readexactly(length)
        header_bytes, sep, payload = body.partition(b"\n")
        if not sep:
            raise FrameError("Frame has no header terminator")
        try:
            header = json.loads(header_bytes.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise FrameError(f"Invalid frame header: {e}") from e
        if not isinstance(header, dict):
            raise FrameError("Frame header must be an object")
        return header, payload

    async def _receive_loop(self, conn: PeerConnection) -> None:
        try:
            while self._running:
                header, payload = await self._read_frame(conn.reader)
                if header.get("type") == "publish":
                    await self._handle_publish(conn.peer_id, header, payload)
                else:
                    logger.debug(f"Ignoring {header.get('type')!r} frame from {conn.peer_id}")
        except asyncio.IncompleteReadError:
            logger.debug(f"Peer {conn.peer_id} closed connection")
        except (OSError, FrameError) as e:
            logger.warning(f"Connection error with peer {conn.peer_id}: {e}")
        finally:
            if self.peers.get(conn.peer_id) is conn:
                del self.peers[conn.peer_id]
                await self._close_writer(conn.writer)
                logger.info(f"Connection closed with: {conn.peer_id}")
                self.emit(ConnectionClosed(peer_id=conn.peer_id))

    # Broadcast

    def _mark_seen(self, message_id: str) -> bool:
        """Record a message id. Returns False if it was already seen."""
        if message_id in self._seen:
            return False
        self._seen[message_id] = None
        while len(self._seen) > SEEN_CACHE_SIZE:
            self._seen.popitem(last=False)
        return True

    async def _handle_publish(
        self, from_peer: str, header: dict[str, Any], payload: bytes
    ) -> None:
        message_id = header.get("id")
        topic = header.get("topic")
        source = header.get("source")
        if not all(isinstance(v, str) for v in (message_id, topic, source)):
            raise FrameError("Publish frame is missing id, topic or source")

        if source == self.local_peer_id or not self._mark_seen(message_id):
            return

        if self.is_subscribed(topic):
            self.emit(MessageReceived(source=source, topic=topic, data=payload))

        await self._send_to_view(header, payload, exclude={from_peer, source})

    async def _send_to_view(
        self, header: dict[str, Any], payload: bytes, exclude: set[str]
    ) -> int:
        sent = 0
        for peer_id, conn in list(self.peers.items()):
            if peer_id in exclude or peer_id not in self._view:
                continue
            try:
                await self._write_frame(conn.writer, header, payload)
                sent += 1
            except OSError as e:
                logger.warning(f"Failed to send to peer {peer_id}: {e}")
        return sent

    async def publish(self, topic: str, data: bytes) -> None:
        if not self._running:
            raise TransportError("Cannot publish: transport not started")

        message_id = uuid.uuid4().hex
        self._mark_seen(message_id)
        header = {
            "type": "publish",
            "id": message_id,
            "topic": topic,
            "source": self.local_peer_id,
        }
        sent = await self._send_to_view(header, data, exclude=set())
        logger.debug(f"Published {len(data)} bytes on {topic} to {sent} peers")
