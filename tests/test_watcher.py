"""Tests for the tracked-file watcher."""

import asyncio
import os

import pytest

from git2p.repo import Workspace
from git2p.watcher import FileWatcher


@pytest.fixture
def workspace(tmp_path):
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    ws = Workspace(tmp_path / ".git2p", work_dir)
    ws.init()
    for name in ("a.txt", "b.txt"):
        path = work_dir / name
        path.write_text(name)
        ws.add([path])
    return ws


def touch(path, content):
    """Rewrite a file and push its mtime forward so the change is visible."""
    path.write_text(content)
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))


class TestFileWatcher:
    """Tests for FileWatcher polling."""

    def test_snapshot_watches_tracked_files(self, workspace):
        watcher = FileWatcher(workspace)

        watcher.snapshot()

        assert watcher.watched == ["a.txt", "b.txt"]

    def test_poll_without_changes(self, workspace):
        watcher = FileWatcher(workspace)
        watcher.snapshot()

        assert watcher.poll() == []

    def test_poll_reports_modified_once(self, workspace):
        watcher = FileWatcher(workspace)
        watcher.snapshot()

        touch(workspace.work_dir / "b.txt", "changed")

        assert watcher.poll() == ["b.txt"]
        assert watcher.poll() == []

    def test_poll_reports_deleted(self, workspace):
        watcher = FileWatcher(workspace)
        watcher.snapshot()

        (workspace.work_dir / "a.txt").unlink()

        assert watcher.poll() == ["a.txt"]

    @pytest.mark.asyncio
    async def test_run_calls_back_until_stopped(self, workspace):
        watcher = FileWatcher(workspace, poll_interval_seconds=0.01)
        stop = asyncio.Event()
        modified = []

        task = asyncio.create_task(watcher.run(stop, on_modified=modified.append))
        await asyncio.sleep(0.05)
        touch(workspace.work_dir / "a.txt", "changed")
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

        assert modified == ["a.txt"]
