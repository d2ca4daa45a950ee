"""Sync protocol engine.

Each inbound message is answered from the current contents of the commit
store alone; no per-peer session state is kept between messages.

    AskForCommits      -> MyCommits(local ids)
    MyCommits(ids)     -> AskForCommit(id) for every id missing locally
    AskForCommit(id)   -> FullCommit(snapshot), or nothing if unknown
    FullCommit(full)   -> import the snapshot, no reply
"""

import logging

from ..repo.commit_store import CommitStore
from .messages import (
    AskForCommit,
    AskForCommits,
    FullCommitMessage,
    MyCommits,
    ProtocolDecodeError,
    SyncMessage,
    decode,
)

logger = logging.getLogger(__name__)


class SyncEngine:
    """Maps (local store, inbound message) to store writes and replies."""

    def __init__(self, store: CommitStore, local_peer_id: str):
        """Initialize the engine.

        Args:
            store: Commit store to read from and import into.
            local_peer_id: This node's transport identity. Messages from it
                are ignored.
        """
        self.store = store
        self.local_peer_id = local_peer_id

    def ask_for_commits(self) -> SyncMessage:
        return AskForCommits()

    def handle_payload(self, payload: bytes, sender: str) -> list[SyncMessage]:
        """Decode a broadcast payload and handle it.

        Payloads that are not sync messages are logged and dropped; the
        broadcast topic may carry unrelated traffic.
        """
        if sender == self.local_peer_id:
            logger.debug("Ignoring message published by this node")
            return []

        try:
            message = decode(payload)
        except ProtocolDecodeError as e:
            logger.info(
                f"Received: {payload[:100].decode('utf-8', errors='replace')!r} "
                f"from {sender} ({e})"
            )
            return []

        return self.handle(message, sender)

    def handle(self, message: SyncMessage, sender: str) -> list[SyncMessage]:
        """Apply one inbound message.

        Returns:
            Messages to broadcast in response.
        """
        if sender == self.local_peer_id:
            return []

        if isinstance(message, AskForCommits):
            logger.info(f"Received AskForCommits from {sender}")
            return [MyCommits(commits=sorted(self.store.list_commit_ids()))]

        if isinstance(message, MyCommits):
            logger.info(f"Received MyCommits from {sender}")
            local = self.store.list_commit_ids()
            missing = sorted(set(message.commits) - local)
            if not missing:
                logger.info(f"You are up to date with peer {sender}.")
                return []
            logger.info(f"New remote commits found: {missing}")
            return [AskForCommit(commit_id=commit_id) for commit_id in missing]

        if isinstance(message, AskForCommit):
            logger.info(f"Received AskForCommit for {message.commit_id} from {sender}")
            full = self.store.materialize(message.commit_id)
            if full is None:
                logger.info(f"Could not read commit {message.commit_id}")
                return []
            return [FullCommitMessage(full=full)]

        if isinstance(message, FullCommitMessage):
            logger.info(
                f"Received FullCommit {message.full.commit.id} from {sender}"
            )
            self.store.apply_remote(message.full)
            return []

        raise TypeError(f"Unhandled sync message: {message!r}")
