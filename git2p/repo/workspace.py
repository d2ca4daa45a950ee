"""Tracked-file bookkeeping around the commit store."""

import logging
import shutil
from pathlib import Path

from .commit_store import Commit, CommitStore, StoreError

logger = logging.getLogger(__name__)


class Workspace:
    """Repository directory plus the working directory its files come from."""

    def __init__(self, root: str | Path, work_dir: str | Path = "."):
        self.root = Path(root).expanduser()
        self.work_dir = Path(work_dir).expanduser()
        self.store = CommitStore(self.root)

    @property
    def is_initialized(self) -> bool:
        return self.root.is_dir()

    def init(self) -> bool:
        """Create the repository directory.

        Returns:
            False if it already existed.
        """
        if self.root.exists():
            return False
        try:
            self.root.mkdir(parents=True)
        except OSError as e:
            raise StoreError(f"Failed to initialize repository: {e}") from e
        logger.info(f"Initialized repository at {self.root}")
        return True

    def _require_initialized(self) -> None:
        if not self.is_initialized:
            raise StoreError("Repository not initialized! Run 'git2p init' first.")

    def add(self, paths: list[str | Path]) -> list[str]:
        """Copy files into the repository so they are tracked.

        Stops at the first file that cannot be added.

        Returns:
            Basenames of the files added.
        """
        self._require_initialized()
        added = []
        for path in paths:
            path = Path(path)
            if not path.is_file():
                raise StoreError(f"File '{path}' not found!")
            try:
                shutil.copy2(path, self.root / path.name)
            except OSError as e:
                raise StoreError(f"Failed to add '{path}': {e}") from e
            added.append(path.name)
        return added

    def remove(self, names: list[str]) -> list[str]:
        """Stop tracking files by deleting their repository copies."""
        self._require_initialized()
        removed = []
        for name in names:
            tracked = self.root / Path(name).name
            if not tracked.is_file():
                raise StoreError(f"File '{name}' not found in repository!")
            try:
                tracked.unlink()
            except OSError as e:
                raise StoreError(f"Failed to remove '{name}': {e}") from e
            removed.append(tracked.name)
        return removed

    def tracked_files(self) -> list[str]:
        self._require_initialized()
        return [path.name for path in self.store.tracked_paths()]

    def checkout(self, commit_id: str) -> list[str]:
        """Copy a commit's files into the working directory.

        Returns:
            Names of the files written.
        """
        self._require_initialized()
        written = []
        for path in self.store.version_files(commit_id):
            try:
                shutil.copy2(path, self.work_dir / path.name)
            except OSError as e:
                raise StoreError(f"Failed to restore '{path.name}': {e}") from e
            written.append(path.name)
        return written

    def pull(self) -> Commit | None:
        """Check out the most recent commit by timestamp.

        Concurrent lineages are not merged: whichever commit carries the
        latest timestamp wins.

        Returns:
            The commit checked out, or None if there are no commits.
        """
        self._require_initialized()
        latest = self.store.latest_commit()
        if latest is None:
            return None
        self.checkout(latest.id)
        return latest
