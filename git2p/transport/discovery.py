"""mDNS/Zeroconf discovery of git2p peers on the local network."""

import asyncio
import logging
import socket
from typing import Callable

from zeroconf import ServiceInfo, ServiceStateChange, Zeroconf
from zeroconf import ServiceBrowser as ZeroconfServiceBrowser
from zeroconf.asyncio import AsyncServiceInfo, AsyncZeroconf

from ..repo.peer_registry import format_address
from .base import PeerDiscovered, PeerExpired, TransportEvent

logger = logging.getLogger(__name__)

EventCallback = Callable[[TransportEvent], None]


class ZeroconfDiscovery:
    """Announces this peer and browses for others via mDNS.

    Discovered peers are reported as `PeerDiscovered` / `PeerExpired`
    events. A peer may be reachable through several announcements; it only
    stops being discovered once all of them are gone.
    """

    def __init__(
        self,
        peer_id: str,
        node_name: str,
        port: int,
        on_event: EventCallback,
        service_type: str = "_git2p._tcp",
        announce: bool = True,
        browse: bool = True,
    ):
        """Initialize discovery.

        Args:
            peer_id: This node's transport identity, published in TXT records.
            node_name: Human-readable node name used in the service name.
            port: TCP port the transport listens on.
            on_event: Called on the event loop with each discovery event.
            service_type: mDNS service type.
            announce: Whether to announce this node.
            browse: Whether to browse for other nodes.
        """
        self.peer_id = peer_id
        self.node_name = node_name
        self.port = port
        self.service_type = service_type
        self.announce = announce
        self.browse = browse
        self._on_event = on_event

        self._async_zeroconf: AsyncZeroconf | None = None
        self._service_info: ServiceInfo | None = None
        self._zeroconf: Zeroconf | None = None
        self._browser: ZeroconfServiceBrowser | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

        # service name -> (peer_id, address)
        self._services: dict[str, tuple[str, str]] = {}
        # peer_id -> addresses currently announced
        self._peers: dict[str, set[str]] = {}

    @property
    def type_name(self) -> str:
        return f"{self.service_type}.local."

    @property
    def service_name(self) -> str:
        return f"{self.node_name}-{self.peer_id[:8]}.{self.type_name}"

    def _on_service_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        """Handle service state changes (add/remove/update)."""
        if not self._loop:
            return

        if state_change in (ServiceStateChange.Added, ServiceStateChange.Updated):
            asyncio.run_coroutine_threadsafe(
                self._add_service(zeroconf, service_type, name), self._loop
            )
        elif state_change is ServiceStateChange.Removed:
            self._loop.call_soon_threadsafe(self.service_removed, name)

    async def _add_service(
        self, zeroconf: Zeroconf, service_type: str, name: str
    ) -> None:
        info = AsyncServiceInfo(service_type, name)
        await info.async_request(zeroconf, 3000)  # 3 second timeout

        addresses = info.parsed_addresses()
        if not addresses or not info.port:
            return

        properties = info.properties or {}
        peer_id = (properties.get(b"peer_id") or b"").decode("utf-8")
        if not peer_id:
            return

        self.service_added(name, peer_id, format_address(addresses[0], info.port))

    def service_added(self, name: str, peer_id: str, address: str) -> None:
        """Record an announcement and report the peer."""
        if peer_id == self.peer_id:
            return

        previous = self._services.get(name)
        if previous == (peer_id, address):
            return
        if previous is not None:
            self._forget(name)

        self._services[name] = (peer_id, address)
        self._peers.setdefault(peer_id, set()).add(address)
        logger.info(f"Discovered peer {peer_id} at {address}")
        self._on_event(PeerDiscovered(peer_id=peer_id, address=address))

    def service_removed(self, name: str) -> None:
        """Drop an announcement and report it expired."""
        if name not in self._services:
            return
        peer_id, address = self._forget(name)
        logger.info(f"Peer expired: {peer_id} at {address}")
        self._on_event(PeerExpired(peer_id=peer_id, address=address))

    def _forget(self, name: str) -> tuple[str, str]:
        peer_id, address = self._services.pop(name)
        remaining = {
            addr for other, (pid, addr) in self._services.items() if pid == peer_id
        }
        if remaining:
            self._peers[peer_id] = remaining
        else:
            self._peers.pop(peer_id, None)
        return peer_id, address

    def is_discovered(self, peer_id: str) -> bool:
        return bool(self._peers.get(peer_id))

    def discovered_peers(self) -> dict[str, set[str]]:
        return {peer_id: set(addrs) for peer_id, addrs in self._peers.items()}

    async def start(self) -> None:
        """Start announcing and browsing."""
        self._loop = asyncio.get_running_loop()

        if self.announce:
            hostname = socket.gethostname()
            local_ip = socket.gethostbyname(hostname)

            self._service_info = ServiceInfo(
                self.type_name,
                self.service_name,
                addresses=[socket.inet_aton(local_ip)],
                port=self.port,
                properties={b"peer_id": self.peer_id.encode("utf-8")},
                server=f"{hostname}.local.",
            )
            self._async_zeroconf = AsyncZeroconf()
            await self._async_zeroconf.async_register_service(self._service_info)
            logger.info(f"Announcing {self.service_name} at {local_ip}:{self.port}")

        if self.browse:
            self._zeroconf = Zeroconf()
            self._browser = ZeroconfServiceBrowser(
                self._zeroconf,
                self.type_name,
                handlers=[self._on_service_state_change],
            )
            logger.info(f"Browsing for {self.service_type} services")

    async def stop(self) -> None:
        """Stop announcing and browsing."""
        if self._async_zeroconf and self._service_info:
            await self._async_zeroconf.async_unregister_service(self._service_info)
            await self._async_zeroconf.async_close()
            self._async_zeroconf = None
        if self._browser:
            self._browser.cancel()
            self._browser = None
        if self._zeroconf:
            self._zeroconf.close()
            self._zeroconf = None
        logger.info("Discovery stopped")
