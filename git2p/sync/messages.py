"""Sync protocol messages and their JSON wire encoding.

Every message is a UTF-8 JSON object whose ``type`` field names the variant.
File contents travel as arrays of integers.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Union

from ..repo.commit_store import Commit, FullCommit


class ProtocolDecodeError(Exception):
    """Raised when a payload is not a recognized sync message."""

    pass


@dataclass(frozen=True)
class AskForCommits:
    """Ask every peer to list its commit ids."""


@dataclass
class MyCommits:
    commits: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class AskForCommit:
    commit_id: str


@dataclass
class FullCommitMessage:
    full: FullCommit


SyncMessage = Union[AskForCommits, MyCommits, AskForCommit, FullCommitMessage]


def message_type(message: SyncMessage) -> str:
    if isinstance(message, AskForCommits):
        return "AskForCommits"
    if isinstance(message, MyCommits):
        return "MyCommits"
    if isinstance(message, AskForCommit):
        return "AskForCommit"
    if isinstance(message, FullCommitMessage):
        return "FullCommit"
    raise TypeError(f"Not a sync message: {message!r}")


def to_dict(message: SyncMessage) -> dict[str, Any]:
    data: dict[str, Any] = {"type": message_type(message)}
    if isinstance(message, MyCommits):
        data["commits"] = sorted(message.commits)
    elif isinstance(message, AskForCommit):
        data["commit_id"] = message.commit_id
    elif isinstance(message, FullCommitMessage):
        data["commit"] = message.full.commit.to_dict()
        data["files"] = [[name, list(content)] for name, content in message.full.files]
    return data


def encode(message: SyncMessage) -> bytes:
    return json.dumps(to_dict(message)).encode("utf-8")


def _require(data: dict[str, Any], key: str, kind: type) -> Any:
    if key not in data:
        raise ProtocolDecodeError(f"Missing field '{key}'")
    value = data[key]
    if not isinstance(value, kind):
        raise ProtocolDecodeError(f"Field '{key}' must be {kind.__name__}")
    return value


def _decode_bytes(value: Any) -> bytes:
    if not isinstance(value, list):
        raise ProtocolDecodeError("File content must be an array of integers")
    try:
        return bytes(value)
    except (TypeError, ValueError) as e:
        raise ProtocolDecodeError(f"Invalid file content: {e}") from e


def _decode_full_commit(data: dict[str, Any]) -> FullCommitMessage:
    commit_data = _require(data, "commit", dict)
    try:
        commit = Commit(
            id=_require(commit_data, "id", str),
            message=_require(commit_data, "message", str),
            timestamp=_require(commit_data, "timestamp", str),
        )
    except ProtocolDecodeError as e:
        raise ProtocolDecodeError(f"Invalid commit: {e}") from e

    files = []
    for entry in _require(data, "files", list):
        if not isinstance(entry, list) or len(entry) != 2:
            raise ProtocolDecodeError("File entry must be a [name, content] pair")
        name, content = entry
        if not isinstance(name, str):
            raise ProtocolDecodeError("File name must be a string")
        files.append((name, _decode_bytes(content)))

    return FullCommitMessage(full=FullCommit(commit=commit, files=files))


def from_dict(data: Any) -> SyncMessage:
    if not isinstance(data, dict):
        raise ProtocolDecodeError("Message must be a JSON object")

    kind = data.get("type")
    if kind == "AskForCommits":
        return AskForCommits()
    if kind == "MyCommits":
        commits = _require(data, "commits", list)
        if not all(isinstance(c, str) for c in commits):
            raise ProtocolDecodeError("Commit ids must be strings")
        return MyCommits(commits=commits)
    if kind == "AskForCommit":
        return AskForCommit(commit_id=_require(data, "commit_id", str))
    if kind == "FullCommit":
        return _decode_full_commit(data)
    raise ProtocolDecodeError(f"Unknown message type: {kind!r}")


def decode(payload: bytes) -> SyncMessage:
    """Parse a wire payload.

    Raises:
        ProtocolDecodeError: If the payload is not a valid sync message.
    """
    try:
        data = json.loads(payload.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise ProtocolDecodeError(f"Payload is not UTF-8: {e}") from e
    except (ValueError, RecursionError) as e:
        raise ProtocolDecodeError(f"Payload is not JSON: {e}") from e
    return from_dict(data)
