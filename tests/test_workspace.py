"""Tests for tracked-file bookkeeping."""

import pytest

from git2p.repo import StoreError, Workspace


@pytest.fixture
def workspace(tmp_path):
    """Create an initialized workspace with a working directory."""
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    ws = Workspace(tmp_path / ".git2p", work_dir)
    ws.init()
    return ws


class TestInit:
    def test_init_creates_repository(self, tmp_path):
        ws = Workspace(tmp_path / ".git2p", tmp_path)

        assert not ws.is_initialized
        assert ws.init() is True
        assert ws.is_initialized

    def test_init_twice(self, workspace):
        assert workspace.init() is False

    def test_commands_require_init(self, tmp_path):
        ws = Workspace(tmp_path / ".git2p", tmp_path)

        with pytest.raises(StoreError, match="not initialized"):
            ws.tracked_files()
        with pytest.raises(StoreError, match="not initialized"):
            ws.add([tmp_path / "a.txt"])


class TestTracking:
    """Tests for add, remove and list."""

    def test_add_and_list(self, workspace):
        (workspace.work_dir / "b.txt").write_text("b")
        (workspace.work_dir / "a.txt").write_text("a")

        added = workspace.add([workspace.work_dir / "b.txt", workspace.work_dir / "a.txt"])

        assert added == ["b.txt", "a.txt"]
        assert workspace.tracked_files() == ["a.txt", "b.txt"]
        assert (workspace.root / "a.txt").read_text() == "a"

    def test_add_missing_file(self, workspace):
        with pytest.raises(StoreError, match="not found"):
            workspace.add([workspace.work_dir / "missing.txt"])

    def test_remove(self, workspace):
        (workspace.work_dir / "a.txt").write_text("a")
        workspace.add([workspace.work_dir / "a.txt"])

        assert workspace.remove(["a.txt"]) == ["a.txt"]
        assert workspace.tracked_files() == []

    def test_remove_untracked(self, workspace):
        with pytest.raises(StoreError, match="not found in repository"):
            workspace.remove(["a.txt"])

    def test_known_peers_not_tracked(self, workspace):
        (workspace.root / "known_peers.json").write_text("[]")

        assert workspace.tracked_files() == []


class TestCheckout:
    """Tests for revert and pull."""

    def test_checkout_restores_files(self, workspace):
        path = workspace.work_dir / "a.txt"
        path.write_text("v1")
        workspace.add([path])
        commit = workspace.store.create_commit("v1", "2024-01-01T00:00:00Z")
        path.write_text("v2")

        assert workspace.checkout(commit.id) == ["a.txt"]
        assert path.read_text() == "v1"

    def test_checkout_unknown_commit(self, workspace):
        with pytest.raises(StoreError, match="not found"):
            workspace.checkout("0000000")

    def test_pull_without_commits(self, workspace):
        assert workspace.pull() is None

    def test_pull_takes_latest_timestamp(self, workspace):
        path = workspace.work_dir / "a.txt"
        path.write_text("new")
        workspace.add([path])
        workspace.store.create_commit("new", "2024-02-01T00:00:00Z")
        (workspace.root / "a.txt").write_text("old")
        workspace.store.create_commit("old", "2024-01-01T00:00:00Z")
        path.write_text("scratch")

        commit = workspace.pull()

        assert commit.message == "new"
        assert path.read_text() == "new"
