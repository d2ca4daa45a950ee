"""Tests for configuration loading."""

from pathlib import Path

from git2p.config import load_config


class TestConfig:
    """Tests for configuration loading."""

    def test_default_config(self):
        """Test default configuration values."""
        config = load_config()

        assert config.node.name == "git2p-node"
        assert config.repo.root == Path(".git2p")
        assert config.repo.known_peers_path == Path(".git2p") / "known_peers.json"
        assert config.transport.kind == "tcp"
        assert config.transport.listen_port == 0
        assert config.mqtt.broker == "localhost"
        assert config.mqtt.port == 1883
        assert config.discovery.enabled is True
        assert config.sync.topic == "git2p"
        assert config.sync.redial_interval_seconds == 30.0

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")

        assert config.node.name == "git2p-node"

    def test_yaml_sections(self, tmp_path):
        """Test loading values from a YAML file."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "node:\n"
            "  name: laptop\n"
            "repo:\n"
            "  path: /tmp/repo\n"
            "transport:\n"
            "  kind: mqtt\n"
            "  listen_port: 4001\n"
            "mqtt:\n"
            "  broker: broker.local\n"
            "  topic_prefix: team\n"
            "discovery:\n"
            "  enabled: false\n"
            "sync:\n"
            "  redial_interval_seconds: 5\n"
            "  settle_delay_seconds: 0\n"
            "watch:\n"
            "  poll_interval_seconds: 0.5\n"
        )

        config = load_config(path)

        assert config.node.name == "laptop"
        assert config.repo.root == Path("/tmp/repo")
        assert config.repo.work_dir == "."
        assert config.transport.kind == "mqtt"
        assert config.transport.listen_port == 4001
        assert config.transport.listen_host == "0.0.0.0"
        assert config.mqtt.broker == "broker.local"
        assert config.mqtt.topic_prefix == "team"
        assert config.mqtt.port == 1883
        assert config.discovery.enabled is False
        assert config.discovery.service_type == "_git2p._tcp"
        assert config.sync.redial_interval_seconds == 5
        assert config.sync.settle_delay_seconds == 0
        assert config.sync.topic == "git2p"
        assert config.watch.poll_interval_seconds == 0.5

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(path).transport.kind == "tcp"

    def test_env_override(self, monkeypatch, tmp_path):
        """Test environment variable overrides."""
        path = tmp_path / "config.yaml"
        path.write_text("node:\n  name: from-file\n")
        monkeypatch.setenv("GIT2P_NODE_NAME", "env-node")
        monkeypatch.setenv("GIT2P_REPO_PATH", "/srv/git2p")
        monkeypatch.setenv("GIT2P_TRANSPORT", "mqtt")
        monkeypatch.setenv("GIT2P_LISTEN_PORT", "4100")
        monkeypatch.setenv("GIT2P_MQTT_BROKER", "mqtt.local")
        monkeypatch.setenv("GIT2P_MQTT_PORT", "8883")
        monkeypatch.setenv("GIT2P_DISCOVERY_ENABLED", "no")
        monkeypatch.setenv("GIT2P_REDIAL_INTERVAL", "2.5")

        config = load_config(path)

        assert config.node.name == "env-node"
        assert config.repo.path == "/srv/git2p"
        assert config.transport.kind == "mqtt"
        assert config.transport.listen_port == 4100
        assert config.mqtt.broker == "mqtt.local"
        assert config.mqtt.port == 8883
        assert config.discovery.enabled is False
        assert config.sync.redial_interval_seconds == 2.5
