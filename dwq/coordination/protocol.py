"""
Coordination-service interface consumed by the work queue.

Any tree-structured store with atomic node creation, session-bound
(ephemeral) nodes and one-shot child watches satisfies it. Two
implementations ship with dwq:

    InMemoryCoordinationClient  (dwq.coordination.memory)
    ZooKeeperClient             (dwq.coordination.zookeeper)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol


class EventType(str, Enum):
    """Kinds of watch notification."""

    CHILDREN_CHANGED = "children_changed"
    NODE_CREATED = "node_created"
    NODE_DELETED = "node_deleted"
    DATA_CHANGED = "data_changed"
    SESSION = "session"


@dataclass(frozen=True)
class WatchedEvent:
    """A single watch firing: what happened and to which node."""

    type: EventType
    path: str


Watcher = Callable[[WatchedEvent], None]


class NodeExistsPolicy(str, Enum):
    """What create_persistent() does when the node is already there."""

    SKIP = "skip"
    FAIL = "fail"
    OVERWRITE = "overwrite"


class NodeMissingPolicy(str, Enum):
    """What delete_recursive() does when the node is absent."""

    SKIP = "skip"
    FAIL = "fail"


class CoordinationClient(Protocol):
    """
    Session-scoped handle on a coordination service.

    All calls are synchronous and may block on network I/O. Failures raise
    dwq.exceptions.CoordinationError (or NodeExistsError / NoNodeError).
    Watches are one-shot: a watcher fires at most once per registration and
    registering the same callable twice on one path before it fires counts
    once.
    """

    def ensure_path(self, path: str) -> None: ...

    def create_persistent(
        self,
        path: str,
        data: bytes,
        on_exists: NodeExistsPolicy = NodeExistsPolicy.SKIP,
    ) -> None: ...

    def create_ephemeral_exclusive(self, path: str, data: bytes) -> None: ...

    def get_data(self, path: str) -> bytes: ...

    def exists(self, path: str) -> bool: ...

    def get_children(
        self, path: str, watch: Optional[Watcher] = None
    ) -> List[str]: ...

    def delete_recursive(
        self,
        path: str,
        on_missing: NodeMissingPolicy = NodeMissingPolicy.SKIP,
    ) -> None: ...

    def close(self) -> None: ...


def join_path(parent: str, *names: str) -> str:
    """Join node names onto a parent path."""
    path = parent.rstrip("/")
    for name in names:
        path = f"{path}/{name.strip('/')}"
    return path or "/"


def normalize_path(path: str) -> str:
    if not path.startswith("/"):
        raise ValueError(f"Node path must be absolute: {path!r}")
    if path == "/":
        return path
    return "/" + "/".join(part for part in path.split("/") if part)


def parent_path(path: str) -> str:
    """Parent of a normalized path ("/" for top-level nodes)."""
    head, _, _ = path.rpartition("/")
    return head or "/"


def node_name(path: str) -> str:
    return path.rpartition("/")[2]
