"""Tests for the known peers registry."""

import json

import pytest

from git2p.repo import PeerRegistry, RegistryError, parse_address
from git2p.repo.peer_registry import format_address, normalize_address


@pytest.fixture
def registry(tmp_path):
    return PeerRegistry(tmp_path / "known_peers.json")


class TestAddresses:
    """Tests for address parsing."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("127.0.0.1:4001", ("127.0.0.1", 4001)),
            ("peer.local:80", ("peer.local", 80)),
            ("[::1]:4001", ("::1", 4001)),
            ("/ip4/192.168.1.5/tcp/4001", ("192.168.1.5", 4001)),
            ("/ip6/::1/tcp/4001", ("::1", 4001)),
        ],
    )
    def test_parse_address(self, text, expected):
        assert parse_address(text) == expected

    @pytest.mark.parametrize(
        "text",
        ["", "nohost", "host:", ":4001", "host:abc", "host:0", "host:70000", "::1:4001"],
    )
    def test_parse_address_invalid(self, text):
        with pytest.raises(ValueError):
            parse_address(text)

    def test_format_address_brackets_ipv6(self):
        assert format_address("::1", 4001) == "[::1]:4001"
        assert format_address("10.0.0.1", 4001) == "10.0.0.1:4001"

    def test_normalize_multiaddr(self):
        assert normalize_address("/ip4/10.0.0.1/tcp/4001") == "10.0.0.1:4001"


class TestPeerRegistry:
    """Tests for PeerRegistry persistence."""

    def test_load_creates_empty_file(self, registry):
        assert registry.load() == []
        assert json.loads(registry.path.read_text()) == []

    def test_load_blank_file(self, registry):
        registry.path.write_text("  \n")

        assert registry.load() == []

    def test_remember_is_idempotent(self, registry):
        assert registry.remember("10.0.0.1:4001") is True
        assert registry.remember("10.0.0.1:4001") is False
        assert registry.remember("/ip4/10.0.0.1/tcp/4001") is False

        assert registry.load() == ["10.0.0.1:4001"]

    def test_remember_keeps_insertion_order(self, registry):
        registry.remember("10.0.0.2:4001")
        registry.remember("10.0.0.1:4001")

        assert registry.load() == ["10.0.0.2:4001", "10.0.0.1:4001"]

    def test_remember_survives_reload(self, registry):
        registry.remember("10.0.0.1:4001")

        assert PeerRegistry(registry.path).load() == ["10.0.0.1:4001"]

    def test_remember_malformed_address(self, registry):
        with pytest.raises(RegistryError):
            registry.remember("not an address")

    def test_load_malformed_json(self, registry):
        registry.path.write_text("{broken")

        with pytest.raises(RegistryError):
            registry.load()

    def test_load_not_a_list(self, registry):
        registry.path.write_text(json.dumps({"peers": []}))

        with pytest.raises(RegistryError):
            registry.load()

    def test_load_skips_bad_entries_and_duplicates(self, registry):
        registry.path.write_text(
            json.dumps(["10.0.0.1:4001", "garbage", "10.0.0.1:4001", "10.0.0.2:4001"])
        )

        assert registry.load() == ["10.0.0.1:4001", "10.0.0.2:4001"]
