"""CLI entry point for git2p."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .repo import PeerRegistry, RegistryError, StoreError, Workspace
from .sync import run_session
from .transport import TransportError
from .watcher import FileWatcher

NOT_INITIALIZED = "Repository not initialized! Run 'git2p init' first."


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        # Safe JSON serialization
        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            # Fallback for non-serializable objects
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    # Configure handler with appropriate formatter
    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


def _load(args: argparse.Namespace) -> Config:
    config = load_config(args.config)
    if getattr(args, "repo", None):
        config.repo.path = str(args.repo)
    return config


def _workspace(config: Config) -> Workspace:
    return Workspace(config.repo.root, config.repo.work_dir)


def _open_workspace(args: argparse.Namespace) -> Workspace | None:
    """Workspace for commands that need an initialized repository."""
    workspace = _workspace(_load(args))
    if not workspace.is_initialized:
        print(f"Error: {NOT_INITIALIZED}", file=sys.stderr)
        return None
    return workspace


def cmd_init(args: argparse.Namespace) -> int:
    """Create the repository directory."""
    workspace = _workspace(_load(args))
    try:
        created = workspace.init()
    except StoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if created:
        print("Repository initialized!")
    else:
        print("Repository already initialized!")
    print("You can now add files to tracking.")
    return 0


def cmd_add(args: argparse.Namespace) -> int:
    """Copy files into the repository."""
    workspace = _open_workspace(args)
    if workspace is None:
        return 1

    status = 0
    for file in args.files:
        try:
            workspace.add([file])
            print(f"Added '{file}'")
        except StoreError as e:
            print(f"Error: {e}", file=sys.stderr)
            status = 1
    return status


def cmd_rm(args: argparse.Namespace) -> int:
    """Stop tracking files."""
    workspace = _open_workspace(args)
    if workspace is None:
        return 1

    status = 0
    for file in args.files:
        try:
            workspace.remove([file])
            print(f"Removed '{file}'")
        except StoreError as e:
            print(f"Error: {e}", file=sys.stderr)
            status = 1
    return status


def cmd_list(args: argparse.Namespace) -> int:
    """List tracked files."""
    workspace = _open_workspace(args)
    if workspace is None:
        return 1

    tracked = workspace.tracked_files()
    if not tracked:
        print("No files added yet.")
    else:
        print("Tracked files:")
        for name in tracked:
            print(name)
    return 0


def cmd_commit(args: argparse.Namespace) -> int:
    """Snapshot every tracked file."""
    workspace = _open_workspace(args)
    if workspace is None:
        return 1

    try:
        commit = workspace.store.create_commit(args.message)
    except StoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Committed with id: {commit.id}")
    return 0


def cmd_log(args: argparse.Namespace) -> int:
    """Show commits, newest first."""
    workspace = _open_workspace(args)
    if workspace is None:
        return 1

    commits = workspace.store.list_commits()
    if not commits:
        print("No commits yet.")
        return 0

    if args.as_json:
        print(json.dumps([c.to_dict() for c in commits], indent=2))
        return 0

    for commit in commits:
        print(f"commit {commit.id}")
        print("Author: User")
        print(f"Date:   {commit.timestamp}")
        print()
        print(f"\t{commit.message}")
        print()
    return 0


def cmd_revert(args: argparse.Namespace) -> int:
    """Restore a commit's files into the working directory."""
    workspace = _open_workspace(args)
    if workspace is None:
        return 1

    try:
        restored = workspace.checkout(args.commit_id)
    except StoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for name in restored:
        print(f"Reverted '{name}'")
    print(f"Successfully reverted to commit {args.commit_id}.")
    return 0


def cmd_pull(args: argparse.Namespace) -> int:
    """Restore the latest commit's files into the working directory."""
    workspace = _open_workspace(args)
    if workspace is None:
        return 1

    try:
        commit = workspace.pull()
    except StoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if commit is None:
        print("No commits to pull.")
        return 0

    print(f"Successfully pulled latest commit {commit.id}.")
    return 0


async def cmd_watch(args: argparse.Namespace) -> int:
    """Report modifications to tracked files until interrupted."""
    config = _load(args)
    workspace = _workspace(config)
    if not workspace.is_initialized:
        print(f"Error: {NOT_INITIALIZED}", file=sys.stderr)
        return 1

    watcher = FileWatcher(workspace, config.watch.poll_interval_seconds)
    print("Now watching for changes. Press Ctrl+C to stop.")

    try:
        await watcher.run(
            asyncio.Event(),
            on_modified=lambda name: print(f"File modified: {name}"),
        )
    except asyncio.CancelledError:
        pass
    return 0


def cmd_peers(args: argparse.Namespace) -> int:
    """List known peer addresses."""
    config = _load(args)
    if not config.repo.root.is_dir():
        print(f"Error: {NOT_INITIALIZED}", file=sys.stderr)
        return 1

    try:
        peers = PeerRegistry(config.repo.known_peers_path).load()
    except RegistryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not peers:
        print("No known peers.")
    for address in peers:
        print(address)
    return 0


async def cmd_connect(args: argparse.Namespace) -> int:
    """Synchronize commits with peers until interrupted."""
    config = _load(args)
    if args.transport:
        config.transport.kind = args.transport
    if args.port is not None:
        config.transport.listen_port = args.port
    if args.no_discovery:
        config.discovery.enabled = False

    print(f"Starting git2p node: {config.node.name}")
    print(f"Repository: {config.repo.root}")
    print(f"Transport: {config.transport.kind}")

    try:
        await run_session(config, addr=args.addr)
    except (StoreError, TransportError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except asyncio.CancelledError:
        print("\nShutting down...")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="git2p",
        description="P2P git-like file manager",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (YAML)",
    )
    parser.add_argument(
        "--repo",
        type=Path,
        default=None,
        help="Repository directory (default: .git2p)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    init_parser = subparsers.add_parser("init", help="Initialize a repository")
    init_parser.set_defaults(func=cmd_init)

    add_parser = subparsers.add_parser("add", help="Track files")
    add_parser.add_argument("files", nargs="+", help="Files to add")
    add_parser.set_defaults(func=cmd_add)

    rm_parser = subparsers.add_parser("rm", help="Stop tracking files")
    rm_parser.add_argument("files", nargs="+", help="Files to remove")
    rm_parser.set_defaults(func=cmd_rm)

    list_parser = subparsers.add_parser("list", help="List tracked files")
    list_parser.set_defaults(func=cmd_list)

    commit_parser = subparsers.add_parser("commit", help="Snapshot tracked files")
    commit_parser.add_argument("-m", "--message", required=True, help="Commit message")
    commit_parser.set_defaults(func=cmd_commit)

    log_parser = subparsers.add_parser("log", help="Show commit history")
    log_parser.add_argument(
        "--json",
        action="store_true",
        dest="as_json",
        help="Output commits as JSON",
    )
    log_parser.set_defaults(func=cmd_log)

    revert_parser = subparsers.add_parser("revert", help="Restore files from a commit")
    revert_parser.add_argument("commit_id", help="Commit to restore")
    revert_parser.set_defaults(func=cmd_revert)

    pull_parser = subparsers.add_parser("pull", help="Restore files from the latest commit")
    pull_parser.set_defaults(func=cmd_pull)

    watch_parser = subparsers.add_parser("watch", help="Watch tracked files for changes")
    watch_parser.set_defaults(func=cmd_watch)

    peers_parser = subparsers.add_parser("peers", help="List known peers")
    peers_parser.set_defaults(func=cmd_peers)

    connect_parser = subparsers.add_parser("connect", help="Synchronize with peers")
    connect_parser.add_argument(
        "--addr",
        type=str,
        default=None,
        help="Peer address to dial, e.g. 192.168.1.5:4001",
    )
    connect_parser.add_argument(
        "--transport",
        choices=["tcp", "mqtt"],
        default=None,
        help="Transport to use (default: from config, tcp)",
    )
    connect_parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="TCP port to listen on (default: any free port)",
    )
    connect_parser.add_argument(
        "--no-discovery",
        action="store_true",
        help="Disable mDNS peer discovery",
    )
    connect_parser.set_defaults(func=cmd_connect)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, getattr(args, 'json', False))

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    if asyncio.iscoroutinefunction(func):
        try:
            return asyncio.run(func(args))
        except KeyboardInterrupt:
            print("\nShutting down...")
            return 0
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
