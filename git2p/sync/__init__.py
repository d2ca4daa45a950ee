"""Commit synchronization between peers.

Peers compare commit id sets over a broadcast topic and fetch every
commit they are missing.
"""

from .engine import SyncEngine
from .messages import (
    AskForCommit,
    AskForCommits,
    FullCommitMessage,
    MyCommits,
    ProtocolDecodeError,
    SyncMessage,
    decode,
    encode,
)
from .session import SyncSession, build_session, run_session

__all__ = [
    "SyncEngine",
    "AskForCommit",
    "AskForCommits",
    "FullCommitMessage",
    "MyCommits",
    "ProtocolDecodeError",
    "SyncMessage",
    "decode",
    "encode",
    "SyncSession",
    "build_session",
    "run_session",
]
