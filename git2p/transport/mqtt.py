"""MQTT broker as the pub/sub substrate.

Useful where a broker already exists on the network. Each published
payload is prefixed with a one-line JSON header naming the sender, since
MQTT itself does not identify publishers. Peers announce themselves on a
presence topic; the first announcement seen from a peer is reported as an
established connection.
"""

import asyncio
import json
import logging
from typing import Any

import paho.mqtt.client as mqtt

from ..config import MQTTConfig
from .base import (
    ConnectionClosed,
    ConnectionEstablished,
    MessageReceived,
    Transport,
    TransportError,
)

logger = logging.getLogger(__name__)

PRESENCE_TOPIC = "presence"


def pack(header: dict[str, Any], payload: bytes = b"") -> bytes:
    return json.dumps(header).encode("utf-8") + b"\n" + payload


def unpack(raw: bytes) -> tuple[dict[str, Any], bytes] | None:
    header_bytes, sep, payload = raw.partition(b"\n")
    if not sep:
        return None
    try:
        header = json.loads(header_bytes.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(header, dict) or not isinstance(header.get("source"), str):
        return None
    return header, payload


class MqttTransport(Transport):
    """Transport that relays every topic through an MQTT broker."""

    def __init__(self, local_peer_id: str, config: MQTTConfig):
        super().__init__(local_peer_id)
        self.config = config

        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self._client.on_connect = self._handle_connect
        self._client.on_message = self._handle_message
        self._client.on_disconnect = self._handle_disconnect
        self._client.will_set(
            self._full_topic(PRESENCE_TOPIC),
            pack({"source": local_peer_id, "status": "offline"}),
        )

        self._connected = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._online_peers: set[str] = set()

    def _full_topic(self, topic: str) -> str:
        return f"{self.config.topic_prefix}/{topic}"

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _announce(self, status: str = "online") -> None:
        self._client.publish(
            self._full_topic(PRESENCE_TOPIC),
            pack({"source": self.local_peer_id, "status": status}),
        )

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle connection to broker."""
        if reason_code == 0:
            self._connected = True
            logger.info(
                f"Connected to MQTT broker at {self.config.broker}:{self.config.port}"
            )
            client.subscribe(self._full_topic("#"))
            self._announce()
        else:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: Any,
        msg: mqtt.MQTTMessage,
    ) -> None:
        """Hand an incoming message over to the event loop thread."""
        if self._loop:
            self._loop.call_soon_threadsafe(
                self.handle_raw, msg.topic, bytes(msg.payload)
            )

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle disconnection from broker."""
        self._connected = False
        logger.warning(f"Disconnected from MQTT broker: {reason_code}")

    def handle_raw(self, full_topic: str, raw: bytes) -> None:
        """Turn a broker message into transport events. Runs on the loop."""
        prefix = f"{self.config.topic_prefix}/"
        if not full_topic.startswith(prefix):
            return
        topic = full_topic[len(prefix):]

        unpacked = unpack(raw)
        if unpacked is None:
            logger.debug(f"Ignoring message without sender header on {full_topic}")
            return
        header, payload = unpacked
        source = header["source"]

        if topic == PRESENCE_TOPIC:
            self._handle_presence(source, header.get("status", "online"))
        elif self.is_subscribed(topic):
            self.emit(MessageReceived(source=source, topic=topic, data=payload))

    def _handle_presence(self, source: str, status: str) -> None:
        if source == self.local_peer_id:
            return

        if status == "offline":
            if source in self._online_peers:
                self._online_peers.discard(source)
                logger.info(f"Peer went offline: {source}")
                self.emit(ConnectionClosed(peer_id=source))
            return

        if source in self._online_peers:
            return

        self._online_peers.add(source)
        logger.info(f"Connection established with: {source}")
        self.emit(ConnectionEstablished(peer_id=source, address=None))
        # Let the newcomer learn about us too
        self._announce()

    async def start(self) -> None:
        """Connect to the MQTT broker.

        Raises:
            TransportError: If the broker cannot be reached.
        """
        self._loop = asyncio.get_running_loop()

        if self.config.username and self.config.password:
            self._client.username_pw_set(self.config.username, self.config.password)

        try:
            self._client.connect(self.config.broker, self.config.port, keepalive=60)
            self._client.loop_start()
        except OSError as e:
            raise TransportError(f"Failed to connect to MQTT broker: {e}") from e

        # Wait for connection
        for _ in range(50):  # 5 second timeout
            if self._connected:
                return
            await asyncio.sleep(0.1)

        self._client.loop_stop()
        raise TransportError("Timeout waiting for MQTT connection")

    async def stop(self) -> None:
        """Disconnect from the MQTT broker."""
        if self._connected:
            self._announce("offline")
        self._client.loop_stop()
        self._client.disconnect()
        self._connected = False

    async def dial(self, address: str) -> None:
        logger.debug(f"MQTT transport does not dial peers directly, skipping {address}")

    async def publish(self, topic: str, data: bytes) -> None:
        if not self._connected:
            raise TransportError("Cannot publish: not connected to broker")

        result = self._client.publish(
            self._full_topic(topic), pack({"source": self.local_peer_id}, data)
        )
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"MQTT publish failed with code {result.rc}")
