"""
In-process coordination service for tests, demos and single-host fleets.

An InMemoryEnsemble is the shared tree; every connect() opens a new session
with its own client handle. Semantics follow ZooKeeper where dwq relies on
them:

- Creating a node requires its parent to exist.
- Ephemeral nodes belong to the creating session and disappear when that
  session is closed or expired (expire_session() simulates a crashed worker).
- Child watches are one-shot. They fire CHILDREN_CHANGED when a child is
  created or deleted and NODE_DELETED when the watched node itself goes.
- Watchers run on a per-session event thread, in order, after the mutation
  has been applied and the tree lock released.

Usage:
    ensemble = InMemoryEnsemble()
    worker_a = ensemble.connect()
    worker_b = ensemble.connect()

    worker_a.create_ephemeral_exclusive("/locks/x", b"")
    ensemble.expire_session(worker_a.session_id)  # /locks/x is gone
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from dwq.coordination.protocol import (
    EventType,
    NodeExistsPolicy,
    NodeMissingPolicy,
    WatchedEvent,
    Watcher,
    join_path,
    node_name,
    normalize_path,
    parent_path,
)
from dwq.exceptions import NodeExistsError, NoNodeError, SessionExpiredError

logger = logging.getLogger(__name__)

_Pending = List[Tuple["InMemoryCoordinationClient", Watcher, WatchedEvent]]


@dataclass
class _Node:
    data: bytes
    owner: Optional[int] = None  # session id for ephemeral nodes
    children: Set[str] = field(default_factory=set)


class InMemoryEnsemble:
    """
    Shared node tree standing in for a coordination-service ensemble.

    Thread-safe: every operation runs under one re-entrant lock; watch
    notifications are handed to session event threads after it is released.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._nodes: Dict[str, _Node] = {"/": _Node(b"")}
        self._child_watches: Dict[
            str, Dict[Tuple[int, Watcher], "InMemoryCoordinationClient"]
        ] = {}
        self._sessions: Dict[int, "InMemoryCoordinationClient"] = {}
        self._session_ids = itertools.count(1)

    def connect(self) -> "InMemoryCoordinationClient":
        """Open a new session."""
        with self._lock:
            session_id = next(self._session_ids)
            client = InMemoryCoordinationClient(self, session_id)
            self._sessions[session_id] = client
        logger.debug("Opened in-memory session %d", session_id)
        return client

    def expire_session(self, session_id: int) -> None:
        """
        End a session as if its owner crashed.

        Removes every ephemeral node the session owns (firing the usual
        watches on other sessions) and drops the session's own watches.
        Expiring an unknown or already-ended session is a no-op.
        """
        pending: _Pending = []
        with self._lock:
            client = self._sessions.pop(session_id, None)
            if client is None:
                return
            owned = [p for p, n in self._nodes.items() if n.owner == session_id]
            for path in sorted(owned, key=len, reverse=True):
                if path in self._nodes:
                    self._delete_locked(path, pending)
            for watchers in self._child_watches.values():
                for key in [k for k in watchers if k[0] == session_id]:
                    del watchers[key]
        client._terminate()
        logger.debug(
            "Expired in-memory session %d (%d ephemeral nodes removed)",
            session_id,
            len(owned),
        )
        self._dispatch(pending)

    @property
    def sessions(self) -> List[int]:
        with self._lock:
            return sorted(self._sessions)

    def dump(self) -> Dict[str, bytes]:
        """Snapshot of every node path and its data (root excluded)."""
        with self._lock:
            return {p: n.data for p, n in self._nodes.items() if p != "/"}

    # -- operations (called by InMemoryCoordinationClient) -------------------

    def ensure_path(self, session_id: int, path: str) -> None:
        path = normalize_path(path)
        pending: _Pending = []
        with self._lock:
            self._check_session(session_id, path)
            current = "/"
            for name in path.strip("/").split("/") if path != "/" else []:
                current = join_path(current, name)
                if current not in self._nodes:
                    self._create_locked(current, b"", None, pending)
        self._dispatch(pending)

    def create(
        self,
        session_id: int,
        path: str,
        data: bytes,
        *,
        ephemeral: bool,
        on_exists: NodeExistsPolicy,
    ) -> None:
        path = normalize_path(path)
        pending: _Pending = []
        with self._lock:
            self._check_session(session_id, path)
            existing = self._nodes.get(path)
            if existing is not None:
                if on_exists is NodeExistsPolicy.FAIL or ephemeral:
                    raise NodeExistsError(f"Node already exists: {path}", path=path)
                if on_exists is NodeExistsPolicy.OVERWRITE:
                    existing.data = bytes(data)
                return
            self._create_locked(
                path, bytes(data), session_id if ephemeral else None, pending
            )
        self._dispatch(pending)

    def get_data(self, session_id: int, path: str) -> bytes:
        path = normalize_path(path)
        with self._lock:
            self._check_session(session_id, path)
            node = self._nodes.get(path)
            if node is None:
                raise NoNodeError(f"No node: {path}", path=path)
            return node.data

    def exists(self, session_id: int, path: str) -> bool:
        path = normalize_path(path)
        with self._lock:
            self._check_session(session_id, path)
            return path in self._nodes

    def get_children(
        self, session_id: int, path: str, watch: Optional[Watcher]
    ) -> List[str]:
        path = normalize_path(path)
        with self._lock:
            self._check_session(session_id, path)
            node = self._nodes.get(path)
            if node is None:
                raise NoNodeError(f"No node: {path}", path=path)
            if watch is not None:
                watchers = self._child_watches.setdefault(path, {})
                watchers[(session_id, watch)] = self._sessions[session_id]
            return sorted(node.children)

    def delete(
        self, session_id: int, path: str, on_missing: NodeMissingPolicy
    ) -> None:
        path = normalize_path(path)
        if path == "/":
            raise ValueError("Cannot delete the root node")
        pending: _Pending = []
        with self._lock:
            self._check_session(session_id, path)
            if path not in self._nodes:
                if on_missing is NodeMissingPolicy.FAIL:
                    raise NoNodeError(f"No node: {path}", path=path)
                return
            self._delete_locked(path, pending)
        self._dispatch(pending)

    # -- internals ------------------------------------------------------------

    def _check_session(self, session_id: int, path: str) -> None:
        if session_id not in self._sessions:
            raise SessionExpiredError(
                f"Session {session_id} is closed or expired", path=path
            )

    def _create_locked(
        self, path: str, data: bytes, owner: Optional[int], pending: _Pending
    ) -> None:
        parent = parent_path(path)
        parent_node = self._nodes.get(parent)
        if parent_node is None:
            raise NoNodeError(f"Parent node does not exist: {parent}", path=path)
        self._nodes[path] = _Node(data, owner)
        parent_node.children.add(node_name(path))
        self._fire(parent, EventType.CHILDREN_CHANGED, pending)

    def _delete_locked(self, path: str, pending: _Pending) -> None:
        node = self._nodes[path]
        for child in sorted(node.children):
            self._delete_locked(join_path(path, child), pending)
        del self._nodes[path]
        parent = parent_path(path)
        self._nodes[parent].children.discard(node_name(path))
        self._fire(path, EventType.NODE_DELETED, pending)
        self._fire(parent, EventType.CHILDREN_CHANGED, pending)

    def _fire(self, path: str, event_type: EventType, pending: _Pending) -> None:
        watchers = self._child_watches.pop(path, None)
        if not watchers:
            return
        event = WatchedEvent(event_type, path)
        for (_, watcher), client in watchers.items():
            pending.append((client, watcher, event))

    @staticmethod
    def _dispatch(pending: _Pending) -> None:
        for client, watcher, event in pending:
            client._deliver(watcher, event)


class InMemoryCoordinationClient:
    """One session on an InMemoryEnsemble. Implements CoordinationClient."""

    def __init__(self, ensemble: InMemoryEnsemble, session_id: int) -> None:
        self._ensemble = ensemble
        self.session_id = session_id
        self._closed = False
        self._events: "queue.Queue[Optional[Tuple[Watcher, WatchedEvent]]]" = (
            queue.Queue()
        )
        self._event_thread = threading.Thread(
            target=self._event_loop,
            name=f"dwq-memory-events-{session_id}",
            daemon=True,
        )
        self._event_thread.start()

    def ensure_path(self, path: str) -> None:
        self._ensemble.ensure_path(self.session_id, path)

    def create_persistent(
        self,
        path: str,
        data: bytes,
        on_exists: NodeExistsPolicy = NodeExistsPolicy.SKIP,
    ) -> None:
        self._ensemble.create(
            self.session_id, path, data, ephemeral=False, on_exists=on_exists
        )

    def create_ephemeral_exclusive(self, path: str, data: bytes) -> None:
        self._ensemble.create(
            self.session_id,
            path,
            data,
            ephemeral=True,
            on_exists=NodeExistsPolicy.FAIL,
        )

    def get_data(self, path: str) -> bytes:
        return self._ensemble.get_data(self.session_id, path)

    def exists(self, path: str) -> bool:
        return self._ensemble.exists(self.session_id, path)

    def get_children(self, path: str, watch: Optional[Watcher] = None) -> List[str]:
        return self._ensemble.get_children(self.session_id, path, watch)

    def delete_recursive(
        self,
        path: str,
        on_missing: NodeMissingPolicy = NodeMissingPolicy.SKIP,
    ) -> None:
        self._ensemble.delete(self.session_id, path, on_missing)

    def close(self) -> None:
        """End the session; its ephemeral nodes are removed."""
        self._ensemble.expire_session(self.session_id)

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, watcher: Watcher, event: WatchedEvent) -> None:
        if not self._closed:
            self._events.put((watcher, event))

    def _terminate(self) -> None:
        self._closed = True
        self._events.put(None)

    def _event_loop(self) -> None:
        while True:
            item = self._events.get()
            if item is None:
                return
            watcher, event = item
            try:
                watcher(event)
            except Exception:
                logger.exception(
                    "Watcher raised on %s event for %s", event.type.value, event.path
                )

    def __enter__(self) -> "InMemoryCoordinationClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()
