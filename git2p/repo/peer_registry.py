"""Durable list of known peer addresses."""

import json
import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_MULTIADDR_RE = re.compile(r"^/(ip4|ip6|dns|dns4|dns6)/([^/]+)/tcp/(\d+)/?$")


class RegistryError(Exception):
    """Raised when the registry file or an address is malformed."""

    pass


def parse_address(text: str) -> tuple[str, int]:
    """Parse ``host:port``, ``[v6]:port`` or ``/ip4/<host>/tcp/<port>``.

    Raises:
        ValueError: If the text is not a dialable address.
    """
    if not isinstance(text, str):
        raise ValueError(f"Address must be a string, got {type(text).__name__}")

    text = text.strip()
    if match := _MULTIADDR_RE.match(text):
        host, port_str = match.group(2), match.group(3)
    elif text.startswith("["):
        host, sep, rest = text[1:].partition("]")
        if not sep or not rest.startswith(":"):
            raise ValueError(f"Malformed address: {text!r}")
        port_str = rest[1:]
    else:
        host, sep, port_str = text.rpartition(":")
        if not sep or ":" in host:
            raise ValueError(f"Malformed address: {text!r}")

    if not host or not port_str.isdigit():
        raise ValueError(f"Malformed address: {text!r}")

    port = int(port_str)
    if not 0 < port < 65536:
        raise ValueError(f"Port out of range in address: {text!r}")
    return host, port


def format_address(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def normalize_address(text: str) -> str:
    host, port = parse_address(text)
    return format_address(host, port)


class PeerRegistry:
    """Ordered, deduplicated set of peer addresses persisted as a JSON array.

    Every `remember` is a read-modify-write of the whole file. Callers must
    serialize access; the sync session does so by running on one event loop.
    """

    def __init__(self, path: str | Path):
        """Initialize the registry.

        Args:
            path: Location of ``known_peers.json``.
        """
        self.path = Path(path).expanduser()

    def load(self) -> list[str]:
        """Read the persisted addresses, creating an empty registry if absent.

        Returns:
            Known addresses in insertion order.

        Raises:
            RegistryError: If the file cannot be read or is not a JSON array
                of strings.
        """
        if not self.path.exists():
            self._write([])
            return []

        try:
            content = self.path.read_text()
        except OSError as e:
            raise RegistryError(f"Failed to read {self.path}: {e}") from e

        if not content.strip():
            return []

        try:
            entries = json.loads(content)
        except json.JSONDecodeError as e:
            raise RegistryError(f"Malformed known peers file {self.path}: {e}") from e

        if not isinstance(entries, list) or not all(
            isinstance(entry, str) for entry in entries
        ):
            raise RegistryError(
                f"Known peers file {self.path} must be a JSON array of strings"
            )

        addresses: list[str] = []
        for entry in entries:
            try:
                address = normalize_address(entry)
            except ValueError:
                logger.warning(f"Ignoring malformed peer address: {entry!r}")
                continue
            if address not in addresses:
                addresses.append(address)
        return addresses

    def remember(self, address: str) -> bool:
        """Add an address if it is not already known and persist the set.

        Returns:
            True if the address was added.

        Raises:
            RegistryError: If the address is malformed or the file cannot
                be written.
        """
        try:
            address = normalize_address(address)
        except ValueError as e:
            raise RegistryError(str(e)) from e

        addresses = self.load()
        if address in addresses:
            return False

        addresses.append(address)
        self._write(addresses)
        logger.info(f"Remembered peer address {address}")
        return True

    def _write(self, addresses: list[str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(addresses, indent=2))
        except OSError as e:
            raise RegistryError(f"Failed to write {self.path}: {e}") from e
