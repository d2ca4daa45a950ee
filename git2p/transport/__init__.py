"""Transports that carry sync messages between peers."""

from .base import (
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
from .discovery import ZeroconfDiscovery
from .mqtt import MqttTransport
from .tcp import TcpTransport

__all__ = [
    "ConnectionClosed",
    "ConnectionEstablished",
    "ListeningOn",
    "MessageReceived",
    "PeerDiscovered",
    "PeerExpired",
    "Transport",
    "TransportError",
    "TransportEvent",
    "ZeroconfDiscovery",
    "MqttTransport",
    "TcpTransport",
]
