"""Polling watcher for modifications to tracked files."""

import asyncio
import logging
from pathlib import Path
from typing import Callable

from .repo.workspace import Workspace

logger = logging.getLogger(__name__)

# (mtime_ns, size) per file name; None when the file does not exist
Signature = tuple[int, int] | None


class FileWatcher:
    """Reports when working-directory copies of tracked files change."""

    def __init__(self, workspace: Workspace, poll_interval_seconds: float = 1.0):
        self._workspace = workspace
        self._interval = poll_interval_seconds
        self._signatures: dict[str, Signature] = {}

    def _signature(self, path: Path) -> Signature:
        try:
            stat = path.stat()
        except FileNotFoundError:
            return None
        return (stat.st_mtime_ns, stat.st_size)

    def snapshot(self) -> None:
        """Record the current state of every tracked file."""
        self._signatures = {
            name: self._signature(self._workspace.work_dir / name)
            for name in self._workspace.tracked_files()
        }

    @property
    def watched(self) -> list[str]:
        return sorted(self._signatures)

    def poll(self) -> list[str]:
        """Names of watched files that changed since the last poll."""
        modified = []
        for name, previous in self._signatures.items():
            current = self._signature(self._workspace.work_dir / name)
            if current != previous:
                self._signatures[name] = current
                modified.append(name)
        return modified

    async def run(
        self,
        stop_event: asyncio.Event,
        on_modified: Callable[[str], None] | None = None,
    ) -> None:
        """Poll until the stop event is set.

        Args:
            stop_event: Set to stop watching.
            on_modified: Called with each modified file name; defaults to
                logging it.
        """
        self.snapshot()
        logger.info(f"Watching {len(self._signatures)} tracked files")

        while not stop_event.is_set():
            for name in self.poll():
                if on_modified:
                    on_modified(name)
                else:
                    logger.info(f"File modified: {name}")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
