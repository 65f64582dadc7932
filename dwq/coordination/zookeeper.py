"""
ZooKeeper-backed coordination client (via kazoo).

Usage:
    from dwq.coordination.zookeeper import ZooKeeperClient

    client = ZooKeeperClient.connect("zk1:2181,zk2:2181", timeout=10.0)
    try:
        ...
    finally:
        client.close()

Error mapping:
    kazoo NodeExistsError  -> dwq NodeExistsError
    kazoo NoNodeError      -> dwq NoNodeError
    kazoo SessionExpiredError -> dwq SessionExpiredError
    other KazooException / KazooTimeoutError -> dwq CoordinationError
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from kazoo.client import KazooClient
from kazoo.exceptions import KazooException
from kazoo.exceptions import NodeExistsError as KazooNodeExistsError
from kazoo.exceptions import NoNodeError as KazooNoNodeError
from kazoo.exceptions import SessionExpiredError as KazooSessionExpiredError
from kazoo.handlers.threading import KazooTimeoutError
from kazoo.protocol.states import EventType as KazooEventType

from dwq.coordination.protocol import (
    EventType,
    NodeExistsPolicy,
    NodeMissingPolicy,
    WatchedEvent,
    Watcher,
)
from dwq.exceptions import (
    CoordinationError,
    NodeExistsError,
    NoNodeError,
    SessionExpiredError,
)

logger = logging.getLogger(__name__)

_EVENT_TYPES = {
    KazooEventType.CHILD: EventType.CHILDREN_CHANGED,
    KazooEventType.CREATED: EventType.NODE_CREATED,
    KazooEventType.DELETED: EventType.NODE_DELETED,
    KazooEventType.CHANGED: EventType.DATA_CHANGED,
    KazooEventType.NONE: EventType.SESSION,
}


class _WatchAdapter:
    """
    Kazoo-facing wrapper for a dwq watcher.

    Holds the watcher strongly and compares equal to any other adapter of an
    equal watcher, so kazoo's per-path watcher set deduplicates
    re-registration (bound methods included).
    """

    __slots__ = ("watch",)

    def __init__(self, watch: Watcher) -> None:
        self.watch = watch

    def __call__(self, event) -> None:
        self.watch(
            WatchedEvent(_EVENT_TYPES.get(event.type, EventType.SESSION), event.path)
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, _WatchAdapter):
            return NotImplemented
        return self.watch == other.watch

    def __hash__(self) -> int:
        return hash(self.watch)


@contextmanager
def _translate_errors(path: str) -> Iterator[None]:
    try:
        yield
    except KazooNodeExistsError as exc:
        raise NodeExistsError(f"Node already exists: {path}", path=path) from exc
    except KazooNoNodeError as exc:
        raise NoNodeError(f"No node: {path}", path=path) from exc
    except KazooSessionExpiredError as exc:
        raise SessionExpiredError("ZooKeeper session expired", path=path) from exc
    except (KazooException, KazooTimeoutError) as exc:
        raise CoordinationError(
            f"ZooKeeper operation failed: {exc!r}", path=path
        ) from exc


class ZooKeeperClient:
    """CoordinationClient over a started KazooClient."""

    def __init__(self, kazoo: KazooClient) -> None:
        self._zk = kazoo

    @classmethod
    def connect(cls, hosts: str, timeout: float = 10.0) -> "ZooKeeperClient":
        """Start a session against ``hosts`` (comma-separated host:port)."""
        kazoo = KazooClient(hosts=hosts, timeout=timeout)
        with _translate_errors("/"):
            kazoo.start(timeout=timeout)
        logger.info("Connected to ZooKeeper at %s", hosts)
        return cls(kazoo)

    def ensure_path(self, path: str) -> None:
        with _translate_errors(path):
            self._zk.ensure_path(path)

    def create_persistent(
        self,
        path: str,
        data: bytes,
        on_exists: NodeExistsPolicy = NodeExistsPolicy.SKIP,
    ) -> None:
        try:
            with _translate_errors(path):
                self._zk.create(path, data)
        except NodeExistsError:
            if on_exists is NodeExistsPolicy.FAIL:
                raise
            if on_exists is NodeExistsPolicy.OVERWRITE:
                with _translate_errors(path):
                    self._zk.set(path, data)

    def create_ephemeral_exclusive(self, path: str, data: bytes) -> None:
        with _translate_errors(path):
            self._zk.create(path, data, ephemeral=True)

    def get_data(self, path: str) -> bytes:
        with _translate_errors(path):
            data, _ = self._zk.get(path)
        return data

    def exists(self, path: str) -> bool:
        with _translate_errors(path):
            return self._zk.exists(path) is not None

    def get_children(self, path: str, watch: Optional[Watcher] = None) -> List[str]:
        adapter = _WatchAdapter(watch) if watch is not None else None
        with _translate_errors(path):
            return list(self._zk.get_children(path, watch=adapter))

    def delete_recursive(
        self,
        path: str,
        on_missing: NodeMissingPolicy = NodeMissingPolicy.SKIP,
    ) -> None:
        try:
            with _translate_errors(path):
                self._zk.delete(path, recursive=True)
        except NoNodeError:
            if on_missing is NodeMissingPolicy.FAIL:
                raise

    def close(self) -> None:
        self._zk.stop()
        self._zk.close()

