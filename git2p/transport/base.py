"""Transport abstraction consumed by the sync session."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Union

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when listening, dialing or publishing fails."""

    pass


@dataclass(frozen=True)
class ListeningOn:
    address: str


@dataclass(frozen=True)
class ConnectionEstablished:
    peer_id: str
    address: str | None = None  # Dialable address, if the transport has one


@dataclass(frozen=True)
class ConnectionClosed:
    peer_id: str


@dataclass(frozen=True)
class PeerDiscovered:
    peer_id: str
    address: str


@dataclass(frozen=True)
class PeerExpired:
    peer_id: str
    address: str


@dataclass(frozen=True)
class MessageReceived:
    source: str
    topic: str
    data: bytes


TransportEvent = Union[
    ListeningOn,
    ConnectionEstablished,
    ConnectionClosed,
    PeerDiscovered,
    PeerExpired,
    MessageReceived,
]


class Transport(ABC):
    """Topic broadcast plus discovery and connection lifecycle events.

    Events are queued by the implementation and drained by the session
    through `next_event`.
    """

    def __init__(self, local_peer_id: str):
        self.local_peer_id = local_peer_id
        self._events: asyncio.Queue[TransportEvent] = asyncio.Queue()
        self._topics: set[str] = set()

    def emit(self, event: TransportEvent) -> None:
        """Queue an event for the session. Must run on the event loop."""
        self._events.put_nowait(event)

    async def next_event(self, timeout: float | None = None) -> TransportEvent | None:
        """Get the next transport event.

        Args:
            timeout: Optional timeout in seconds.

        Returns:
            The event, or None if the timeout elapsed first.
        """
        try:
            if timeout is None:
                return await self._events.get()
            return await asyncio.wait_for(self._events.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def subscribe(self, topic: str) -> None:
        self._topics.add(topic)

    def is_subscribed(self, topic: str) -> bool:
        return topic in self._topics

    def add_to_view(self, peer_id: str) -> None:
        """Include a peer in the broadcast fan-out."""

    def remove_from_view(self, peer_id: str) -> None:
        """Exclude a peer from the broadcast fan-out."""

    def is_discovered(self, peer_id: str) -> bool:
        """Whether any discovery mechanism still reports the peer reachable."""
        return False

    @abstractmethod
    async def start(self) -> None:
        """Start listening.

        Raises:
            TransportError: If the transport cannot start.
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        pass

    @abstractmethod
    async def dial(self, address: str) -> None:
        """Connect to a peer. Dialing a connected peer is a no-op.

        Raises:
            TransportError: If the connection attempt fails.
        """
        pass

    @abstractmethod
    async def publish(self, topic: str, data: bytes) -> None:
        """Broadcast to every subscriber of a topic, without acknowledgment.

        Raises:
            TransportError: If the message cannot be handed to the network.
        """
        pass
