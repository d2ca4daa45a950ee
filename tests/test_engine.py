"""Tests for the sync protocol engine."""

import pytest

from git2p.repo import CommitStore
from git2p.sync import (
    AskForCommit,
    AskForCommits,
    FullCommitMessage,
    MyCommits,
    SyncEngine,
    encode,
)


def make_store(path, files=None):
    root = path / ".git2p"
    root.mkdir(parents=True)
    for name, content in (files or {}).items():
        (root / name).write_bytes(content)
    return CommitStore(root)


def exchange(sender_id, receiver, messages):
    """Deliver messages to a receiver over the wire encoding, return replies."""
    replies = []
    for message in messages:
        replies.extend(receiver.handle_payload(encode(message), sender_id))
    return replies


@pytest.fixture
def store(tmp_path):
    return make_store(tmp_path, {"a.txt": b"hello"})


@pytest.fixture
def engine(store):
    return SyncEngine(store, "local-peer")


class TestTransitions:
    """Tests for each inbound message type."""

    def test_ask_for_commits_lists_local_ids(self, engine, store):
        first = store.create_commit("first", "2024-01-01T00:00:00Z")
        second = store.create_commit("second", "2024-01-02T00:00:00Z")

        replies = engine.handle(AskForCommits(), "remote-peer")

        assert replies == [MyCommits(commits=sorted([first.id, second.id]))]

    def test_ask_for_commits_empty_store(self, engine):
        assert engine.handle(AskForCommits(), "remote-peer") == [MyCommits(commits=[])]

    def test_my_commits_requests_missing(self, engine, store):
        local = store.create_commit("first", "2024-01-01T00:00:00Z")

        replies = engine.handle(
            MyCommits(commits=["zzzzzzz", local.id, "aaaaaaa"]), "remote-peer"
        )

        assert replies == [AskForCommit("aaaaaaa"), AskForCommit("zzzzzzz")]

    def test_my_commits_up_to_date(self, engine, store):
        local = store.create_commit("first", "2024-01-01T00:00:00Z")

        assert engine.handle(MyCommits(commits=[local.id]), "remote-peer") == []

    def test_ask_for_commit_known(self, engine, store):
        local = store.create_commit("first", "2024-01-01T00:00:00Z")

        replies = engine.handle(AskForCommit(local.id), "remote-peer")

        assert len(replies) == 1
        assert replies[0].full.commit == local
        assert replies[0].full.files == [("a.txt", b"hello")]

    def test_ask_for_commit_unknown(self, engine):
        assert engine.handle(AskForCommit("0000000"), "remote-peer") == []

    def test_full_commit_is_imported(self, tmp_path, engine, store):
        remote_store = make_store(tmp_path / "remote", {"b.txt": b"world"})
        commit = remote_store.create_commit("remote", "2024-01-01T00:00:00Z")

        replies = engine.handle(
            FullCommitMessage(full=remote_store.materialize(commit.id)), "remote-peer"
        )

        assert replies == []
        assert store.list_commit_ids() == {commit.id}
        assert store.materialize(commit.id).files == [("b.txt", b"world")]

    def test_self_messages_ignored(self, engine):
        assert engine.handle(AskForCommits(), "local-peer") == []
        assert engine.handle_payload(encode(AskForCommits()), "local-peer") == []

    def test_handle_payload_decodes(self, engine):
        replies = engine.handle_payload(b'{"type": "AskForCommits"}', "remote-peer")

        assert replies == [MyCommits(commits=[])]

    def test_handle_payload_drops_garbage(self, engine, store):
        store.create_commit("first", "2024-01-01T00:00:00Z")
        before = store.list_commit_ids()

        assert engine.handle_payload(b"Hello there", "remote-peer") == []
        assert engine.handle_payload(b'{"type": "Bogus"}', "remote-peer") == []
        assert store.list_commit_ids() == before


class TestConvergence:
    """Tests for two stores syncing over the protocol."""

    def run_round(self, a_id, a, b_id, b):
        """One full round, as started by `a` on connection."""
        # a asks, b answers with its ids
        my_commits = exchange(a_id, b, [a.ask_for_commits()])
        # a requests what it lacks
        requests = exchange(b_id, a, my_commits)
        # b sends the full commits, a imports them
        fulls = exchange(a_id, b, requests)
        exchange(b_id, a, fulls)

    def test_new_peer_receives_commit(self, tmp_path):
        """A fresh peer ends up with the same snapshot as its neighbor."""
        a_store = make_store(tmp_path / "a", {"a.txt": b"hello"})
        b_store = make_store(tmp_path / "b")
        commit = a_store.create_commit("first", "2024-01-01T00:00:00Z")
        a = SyncEngine(a_store, "peer-a")
        b = SyncEngine(b_store, "peer-b")

        self.run_round("peer-b", b, "peer-a", a)

        assert b_store.list_commit_ids() == {commit.id}
        assert (b_store.versions_path / commit.id / "a.txt").read_bytes() == b"hello"

    def test_two_way_convergence(self, tmp_path):
        """{x, y} and {y, z} both end at {x, y, z}."""
        a_store = make_store(tmp_path / "a", {"a.txt": b"a"})
        b_store = make_store(tmp_path / "b", {"b.txt": b"b"})
        y = a_store.create_commit("y", "2024-01-02T00:00:00Z")
        b_store.apply_remote(a_store.materialize(y.id))
        x = a_store.create_commit("x", "2024-01-01T00:00:00Z")
        z = b_store.create_commit("z", "2024-01-03T00:00:00Z")
        a = SyncEngine(a_store, "peer-a")
        b = SyncEngine(b_store, "peer-b")

        self.run_round("peer-a", a, "peer-b", b)
        self.run_round("peer-b", b, "peer-a", a)

        assert a_store.list_commit_ids() == {x.id, y.id, z.id}
        assert b_store.list_commit_ids() == {x.id, y.id, z.id}
        assert a_store.materialize(z.id) == b_store.materialize(z.id)
        assert a_store.materialize(x.id) == b_store.materialize(x.id)

    def test_repeated_round_is_quiet(self, tmp_path):
        a_store = make_store(tmp_path / "a", {"a.txt": b"hello"})
        b_store = make_store(tmp_path / "b")
        a_store.create_commit("first", "2024-01-01T00:00:00Z")
        a = SyncEngine(a_store, "peer-a")
        b = SyncEngine(b_store, "peer-b")
        self.run_round("peer-b", b, "peer-a", a)

        my_commits = exchange("peer-b", a, [b.ask_for_commits()])

        assert exchange("peer-a", b, my_commits) == []
