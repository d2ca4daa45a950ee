"""On-disk commit store: append-only commit log plus full file snapshots.

Layout under the repository root:

    logs/<commit_id>.json       pretty-printed commit metadata
    versions/<commit_id>/<name> one file per tracked file at commit time

Tracked files are the regular files directly inside the repository root.
"""

import hashlib
import json
import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

COMMIT_ID_LENGTH = 7
LOGS_DIR = "logs"
VERSIONS_DIR = "versions"

# Files in the repository root that belong to git2p itself, not the user.
RESERVED_FILES = frozenset({"known_peers.json"})

_COMMIT_ID_RE = re.compile(r"^[0-9A-Za-z_-]{1,64}$")


class StoreError(Exception):
    """Raised when a commit cannot be created, found, or written."""

    pass


def commit_digest(message: str, timestamp: str) -> str:
    """Short commit id: truncated SHA-1 of message followed by timestamp."""
    hasher = hashlib.sha1()
    hasher.update(message.encode("utf-8"))
    hasher.update(timestamp.encode("utf-8"))
    return hasher.hexdigest()[:COMMIT_ID_LENGTH]


def validate_commit_id(commit_id: str) -> str:
    if not isinstance(commit_id, str) or not _COMMIT_ID_RE.match(commit_id):
        raise StoreError(f"Invalid commit id: {commit_id!r}")
    return commit_id


def validate_file_name(name: str) -> str:
    """Snapshot entries are flat: reject anything that could escape the dir."""
    if (
        not isinstance(name, str)
        or not name
        or name in (".", "..")
        or "/" in name
        or "\\" in name
        or "\x00" in name
    ):
        raise StoreError(f"Invalid file name in snapshot: {name!r}")
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        raise StoreError(f"Invalid file name in snapshot: {name!r}")
    return name


@dataclass(frozen=True)
class Commit:
    """Immutable descriptor of a snapshot."""

    id: str
    message: str
    timestamp: str  # RFC3339

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "message": self.message,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Commit":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            message=data["message"],
            timestamp=data["timestamp"],
        )


@dataclass
class FullCommit:
    """A commit together with every file of its snapshot."""

    commit: Commit
    files: list[tuple[str, bytes]] = field(default_factory=list)

    @property
    def file_names(self) -> list[str]:
        return [name for name, _ in self.files]


class CommitStore:
    """Reads and writes commits under a repository root.

    The store never edits or deletes an existing commit. `create_commit`
    refuses to reuse an id, while `apply_remote` is an idempotent import.
    """

    def __init__(self, root: str | Path):
        """Initialize the commit store.

        Args:
            root: Repository directory (for example ``.git2p``).
        """
        self.root = Path(root).expanduser()
        self.logs_path = self.root / LOGS_DIR
        self.versions_path = self.root / VERSIONS_DIR

    def _log_file(self, commit_id: str) -> Path:
        return self.logs_path / f"{commit_id}.json"

    def _version_dir(self, commit_id: str) -> Path:
        return self.versions_path / commit_id

    def tracked_paths(self) -> list[Path]:
        """Regular files in the repository root that get snapshotted."""
        if not self.root.is_dir():
            return []
        return sorted(
            path
            for path in self.root.iterdir()
            if path.is_file() and path.name not in RESERVED_FILES
        )

    def create_commit(self, message: str, timestamp: str | None = None) -> Commit:
        """Snapshot every tracked file into a new commit.

        Args:
            message: Commit message.
            timestamp: RFC3339 timestamp; defaults to the current UTC time.

        Returns:
            The created Commit.

        Raises:
            StoreError: If the repository is missing, the id already exists,
                or the snapshot cannot be written.
        """
        if not self.root.is_dir():
            raise StoreError(f"Repository not initialized at {self.root}")

        if timestamp is None:
            timestamp = datetime.now(timezone.utc).isoformat()

        commit = Commit(
            id=commit_digest(message, timestamp),
            message=message,
            timestamp=timestamp,
        )
        commit_dir = self._version_dir(commit.id)

        try:
            self.versions_path.mkdir(parents=True, exist_ok=True)
            self.logs_path.mkdir(parents=True, exist_ok=True)
            commit_dir.mkdir()
        except FileExistsError:
            raise StoreError(f"Commit {commit.id} already exists")
        except OSError as e:
            raise StoreError(f"Failed to create commit {commit.id}: {e}") from e

        try:
            for path in self.tracked_paths():
                shutil.copy2(path, commit_dir / path.name)
            self._write_log(commit)
        except OSError as e:
            raise StoreError(f"Failed to write commit {commit.id}: {e}") from e

        logger.info(f"Created commit {commit.id}: {message}")
        return commit

    def _write_log(self, commit: Commit) -> None:
        """Write the log entry through a temp file so it appears atomically."""
        self.logs_path.mkdir(parents=True, exist_ok=True)
        log_file = self._log_file(commit.id)
        tmp_file = log_file.with_suffix(".json.tmp")
        tmp_file.write_text(json.dumps(commit.to_dict(), indent=2))
        os.replace(tmp_file, log_file)

    def list_commit_ids(self) -> set[str]:
        """Ids of all committed snapshots.

        A log entry whose version directory is missing is left out so that
        the sync protocol requests the snapshot again.

        Returns:
            Set of commit ids; empty if no commits exist yet.
        """
        if not self.logs_path.is_dir():
            return set()

        ids = set()
        for path in self.logs_path.glob("*.json"):
            if not path.is_file():
                continue
            commit_id = path.stem
            if not self._version_dir(commit_id).is_dir():
                logger.warning(f"Commit {commit_id} is logged but has no snapshot")
                continue
            ids.add(commit_id)
        return ids

    def load_commit(self, commit_id: str) -> Commit | None:
        """Read one commit's metadata.

        Returns:
            The Commit, or None if it is absent or unreadable.
        """
        try:
            validate_commit_id(commit_id)
        except StoreError:
            return None

        log_file = self._log_file(commit_id)
        if not log_file.is_file():
            return None

        try:
            return Commit.from_dict(json.loads(log_file.read_text()))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Skipping unreadable log entry {log_file}: {e}")
            return None

    def list_commits(self) -> list[Commit]:
        """All readable commits, newest first."""
        if not self.logs_path.is_dir():
            return []

        commits = []
        for path in self.logs_path.glob("*.json"):
            commit = self.load_commit(path.stem)
            if commit is not None:
                commits.append(commit)

        commits.sort(key=lambda c: c.timestamp, reverse=True)
        return commits

    def latest_commit(self) -> Commit | None:
        commits = self.list_commits()
        return commits[0] if commits else None

    def materialize(self, commit_id: str) -> FullCommit | None:
        """Read a commit's metadata and every file of its snapshot.

        Returns:
            The FullCommit, or None if metadata or snapshot is missing.
        """
        commit = self.load_commit(commit_id)
        if commit is None:
            return None

        commit_dir = self._version_dir(commit_id)
        if not commit_dir.is_dir():
            return None

        files = []
        try:
            for path in sorted(commit_dir.iterdir()):
                if path.is_file():
                    files.append((path.name, path.read_bytes()))
        except OSError as e:
            raise StoreError(f"Failed to read snapshot {commit_id}: {e}") from e

        return FullCommit(commit=commit, files=files)

    def apply_remote(self, full: FullCommit) -> None:
        """Import a snapshot received from a peer.

        A commit that is already present locally is never rewritten, so
        importing it again leaves the store unchanged. Files are written
        before the log entry so a listed id always has its snapshot.

        Raises:
            StoreError: If the commit id or a file name is invalid, or the
                files cannot be written.
        """
        commit_id = validate_commit_id(full.commit.id)
        for name, _ in full.files:
            validate_file_name(name)

        commit_dir = self._version_dir(commit_id)
        if commit_dir.is_dir() and self._log_file(commit_id).is_file():
            logger.debug(f"Commit {commit_id} already present, skipping")
            return

        try:
            commit_dir.mkdir(parents=True, exist_ok=True)
            for name, content in full.files:
                (commit_dir / name).write_bytes(content)
            self._write_log(full.commit)
        except OSError as e:
            raise StoreError(f"Failed to apply commit {commit_id}: {e}") from e

        logger.info(f"Successfully synchronized commit {commit_id}")

    def version_files(self, commit_id: str) -> list[Path]:
        """Paths of the files in a commit's snapshot directory."""
        validate_commit_id(commit_id)
        commit_dir = self._version_dir(commit_id)
        if not commit_dir.is_dir():
            raise StoreError(f"Commit with id '{commit_id}' not found.")
        return sorted(path for path in commit_dir.iterdir() if path.is_file())
