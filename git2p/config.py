"""Configuration loading for git2p."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class NodeConfig:
    name: str = "git2p-node"


@dataclass
class RepoConfig:
    path: str = ".git2p"
    work_dir: str = "."

    @property
    def root(self) -> Path:
        return Path(self.path).expanduser()

    @property
    def known_peers_path(self) -> Path:
        return self.root / "known_peers.json"


@dataclass
class TransportConfig:
    kind: str = "tcp"  # "tcp" or "mqtt"
    listen_host: str = "0.0.0.0"
    listen_port: int = 0  # 0 picks an ephemeral port
    connect_timeout_seconds: float = 10.0
    max_frame_bytes: int = 64 * 1024 * 1024


@dataclass
class MQTTConfig:
    broker: str = "localhost"
    port: int = 1883
    username: str | None = None
    password: str | None = None
    topic_prefix: str = "git2p"


@dataclass
class DiscoveryConfig:
    """Configuration for mDNS/Zeroconf peer discovery."""

    enabled: bool = True
    service_type: str = "_git2p._tcp"
    announce: bool = True  # Announce this node
    browse: bool = True  # Browse for other nodes


@dataclass
class SyncConfig:
    """Configuration for the commit synchronization session."""

    topic: str = "git2p"
    redial_interval_seconds: float = 30.0
    settle_delay_seconds: float = 1.0


@dataclass
class WatchConfig:
    poll_interval_seconds: float = 1.0


@dataclass
class Config:
    node: NodeConfig = field(default_factory=NodeConfig)
    repo: RepoConfig = field(default_factory=RepoConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with GIT2P_ prefix."""
    return os.environ.get(f"GIT2P_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if name := _get_env("NODE_NAME"):
        config.node.name = name

    # Repository overrides
    if repo_path := _get_env("REPO_PATH"):
        config.repo.path = repo_path
    if work_dir := _get_env("WORK_DIR"):
        config.repo.work_dir = work_dir

    # Transport overrides
    if kind := _get_env("TRANSPORT"):
        config.transport.kind = kind
    if listen_host := _get_env("LISTEN_HOST"):
        config.transport.listen_host = listen_host
    if listen_port := _get_env("LISTEN_PORT"):
        config.transport.listen_port = int(listen_port)

    # MQTT overrides
    if broker := _get_env("MQTT_BROKER"):
        config.mqtt.broker = broker
    if port := _get_env("MQTT_PORT"):
        config.mqtt.port = int(port)
    if username := _get_env("MQTT_USERNAME"):
        config.mqtt.username = username
    if password := _get_env("MQTT_PASSWORD"):
        config.mqtt.password = password

    # Discovery overrides
    if discovery_enabled := _get_env("DISCOVERY_ENABLED"):
        config.discovery.enabled = _is_true(discovery_enabled)

    # Sync overrides
    if topic := _get_env("SYNC_TOPIC"):
        config.sync.topic = topic
    if redial := _get_env("REDIAL_INTERVAL"):
        config.sync.redial_interval_seconds = float(redial)

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "node" in data:
                config.node = NodeConfig(
                    name=data["node"].get("name", config.node.name)
                )

            if "repo" in data:
                repo_data = data["repo"]
                config.repo = RepoConfig(
                    path=repo_data.get("path", config.repo.path),
                    work_dir=repo_data.get("work_dir", config.repo.work_dir),
                )

            if "transport" in data:
                transport_data = data["transport"]
                config.transport = TransportConfig(
                    kind=transport_data.get("kind", config.transport.kind),
                    listen_host=transport_data.get(
                        "listen_host", config.transport.listen_host
                    ),
                    listen_port=transport_data.get(
                        "listen_port", config.transport.listen_port
                    ),
                    connect_timeout_seconds=transport_data.get(
                        "connect_timeout_seconds",
                        config.transport.connect_timeout_seconds,
                    ),
                    max_frame_bytes=transport_data.get(
                        "max_frame_bytes", config.transport.max_frame_bytes
                    ),
                )

            if "mqtt" in data:
                mqtt_data = data["mqtt"]
                config.mqtt = MQTTConfig(
                    broker=mqtt_data.get("broker", config.mqtt.broker),
                    port=mqtt_data.get("port", config.mqtt.port),
                    username=mqtt_data.get("username"),
                    password=mqtt_data.get("password"),
                    topic_prefix=mqtt_data.get(
                        "topic_prefix", config.mqtt.topic_prefix
                    ),
                )

            if "discovery" in data:
                disc_data = data["discovery"]
                config.discovery = DiscoveryConfig(
                    enabled=disc_data.get("enabled", config.discovery.enabled),
                    service_type=disc_data.get(
                        "service_type", config.discovery.service_type
                    ),
                    announce=disc_data.get("announce", config.discovery.announce),
                    browse=disc_data.get("browse", config.discovery.browse),
                )

            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    topic=sync_data.get("topic", config.sync.topic),
                    redial_interval_seconds=sync_data.get(
                        "redial_interval_seconds",
                        config.sync.redial_interval_seconds,
                    ),
                    settle_delay_seconds=sync_data.get(
                        "settle_delay_seconds", config.sync.settle_delay_seconds
                    ),
                )

            if "watch" in data:
                config.watch = WatchConfig(
                    poll_interval_seconds=data["watch"].get(
                        "poll_interval_seconds", config.watch.poll_interval_seconds
                    )
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    return config
