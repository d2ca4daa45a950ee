"""Repository storage: commits, snapshots, tracked files and known peers."""

from .commit_store import Commit, CommitStore, FullCommit, StoreError
from .peer_registry import PeerRegistry, RegistryError, parse_address
from .workspace import Workspace

__all__ = [
    "Commit",
    "CommitStore",
    "FullCommit",
    "StoreError",
    "PeerRegistry",
    "RegistryError",
    "parse_address",
    "Workspace",
]
