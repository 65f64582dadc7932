"""
Tests for the kazoo-backed coordination client.

A MagicMock stands in for KazooClient, so these run without a ZooKeeper
ensemble and check call translation and error mapping only.
"""
from __future__ import annotations

import gc
from unittest.mock import MagicMock, patch

import pytest
from kazoo import exceptions as kazoo_exceptions
from kazoo.handlers.threading import KazooTimeoutError
from kazoo.protocol.states import EventType as KazooEventType
from kazoo.protocol.states import KazooState
from kazoo.protocol.states import WatchedEvent as KazooWatchedEvent

from dwq.coordination import EventType, NodeExistsPolicy, NodeMissingPolicy, WatchedEvent
from dwq.coordination.zookeeper import ZooKeeperClient
from dwq.exceptions import (
    CoordinationError,
    NodeExistsError,
    NoNodeError,
    SessionExpiredError,
)


class _Listener:
    def __init__(self) -> None:
        self.events = []

    def on_event(self, event) -> None:
        self.events.append(event)


@pytest.fixture
def kazoo():
    return MagicMock()


@pytest.fixture
def client(kazoo):
    return ZooKeeperClient(kazoo)


class TestConnect:
    def test_connect_starts_session(self):
        with patch("dwq.coordination.zookeeper.KazooClient") as kazoo_cls:
            client = ZooKeeperClient.connect("zk1:2181,zk2:2181", timeout=3.0)

        kazoo_cls.assert_called_once_with(hosts="zk1:2181,zk2:2181", timeout=3.0)
        kazoo_cls.return_value.start.assert_called_once_with(timeout=3.0)
        assert isinstance(client, ZooKeeperClient)

    def test_connect_timeout_is_coordination_error(self):
        with patch("dwq.coordination.zookeeper.KazooClient") as kazoo_cls:
            kazoo_cls.return_value.start.side_effect = KazooTimeoutError("no ensemble")
            with pytest.raises(CoordinationError):
                ZooKeeperClient.connect("zk1:2181")

    def test_close_stops_and_closes(self, client, kazoo):
        client.close()
        kazoo.stop.assert_called_once_with()
        kazoo.close.assert_called_once_with()


class TestNodes:
    def test_ensure_path(self, client, kazoo):
        client.ensure_path("/q/locks")
        kazoo.ensure_path.assert_called_once_with("/q/locks")

    def test_create_persistent(self, client, kazoo):
        client.create_persistent("/q/a", b"data")
        kazoo.create.assert_called_once_with("/q/a", b"data")

    def test_create_persistent_skip_existing(self, client, kazoo):
        kazoo.create.side_effect = kazoo_exceptions.NodeExistsError()
        client.create_persistent("/q/a", b"data", NodeExistsPolicy.SKIP)
        kazoo.set.assert_not_called()

    def test_create_persistent_overwrite(self, client, kazoo):
        kazoo.create.side_effect = kazoo_exceptions.NodeExistsError()
        client.create_persistent("/q/a", b"data", NodeExistsPolicy.OVERWRITE)
        kazoo.set.assert_called_once_with("/q/a", b"data")

    def test_create_persistent_fail(self, client, kazoo):
        kazoo.create.side_effect = kazoo_exceptions.NodeExistsError()
        with pytest.raises(NodeExistsError) as exc_info:
            client.create_persistent("/q/a", b"data", NodeExistsPolicy.FAIL)
        assert exc_info.value.path == "/q/a"

    def test_create_ephemeral_exclusive(self, client, kazoo):
        client.create_ephemeral_exclusive("/q/locks/a", b"")
        kazoo.create.assert_called_once_with("/q/locks/a", b"", ephemeral=True)

    def test_create_ephemeral_contention(self, client, kazoo):
        kazoo.create.side_effect = kazoo_exceptions.NodeExistsError()
        with pytest.raises(NodeExistsError):
            client.create_ephemeral_exclusive("/q/locks/a", b"")

    def test_get_data(self, client, kazoo):
        kazoo.get.return_value = (b"payload", MagicMock())
        assert client.get_data("/q/a") == b"payload"

    def test_get_data_missing(self, client, kazoo):
        kazoo.get.side_effect = kazoo_exceptions.NoNodeError()
        with pytest.raises(NoNodeError):
            client.get_data("/q/a")

    def test_exists(self, client, kazoo):
        kazoo.exists.return_value = None
        assert client.exists("/q/a") is False
        kazoo.exists.return_value = MagicMock()
        assert client.exists("/q/a") is True

    def test_delete_recursive(self, client, kazoo):
        client.delete_recursive("/q/a")
        kazoo.delete.assert_called_once_with("/q/a", recursive=True)

    def test_delete_missing_policy(self, client, kazoo):
        kazoo.delete.side_effect = kazoo_exceptions.NoNodeError()
        client.delete_recursive("/q/a", NodeMissingPolicy.SKIP)
        with pytest.raises(NoNodeError):
            client.delete_recursive("/q/a", NodeMissingPolicy.FAIL)


class TestErrorMapping:
    def test_session_expired(self, client, kazoo):
        kazoo.exists.side_effect = kazoo_exceptions.SessionExpiredError()
        with pytest.raises(SessionExpiredError):
            client.exists("/q")

    def test_connection_loss(self, client, kazoo):
        kazoo.get_children.side_effect = kazoo_exceptions.ConnectionLoss()
        with pytest.raises(CoordinationError) as exc_info:
            client.get_children("/q")
        assert not isinstance(exc_info.value, (NoNodeError, NodeExistsError))
        assert exc_info.value.path == "/q"

    def test_operation_timeout(self, client, kazoo):
        kazoo.ensure_path.side_effect = KazooTimeoutError("slow")
        with pytest.raises(CoordinationError):
            client.ensure_path("/q")


class TestWatches:
    def test_get_children_without_watch(self, client, kazoo):
        kazoo.get_children.return_value = ["a", "locks"]
        assert client.get_children("/q") == ["a", "locks"]
        kazoo.get_children.assert_called_once_with("/q", watch=None)

    def test_watch_events_are_translated(self, client, kazoo):
        received = []

        def watcher(event):
            received.append(event)

        client.get_children("/q", watch=watcher)
        adapter = kazoo.get_children.call_args.kwargs["watch"]

        adapter(KazooWatchedEvent(KazooEventType.CHILD, KazooState.CONNECTED, "/q"))
        adapter(KazooWatchedEvent(KazooEventType.DELETED, KazooState.CONNECTED, "/q"))

        assert received == [
            WatchedEvent(EventType.CHILDREN_CHANGED, "/q"),
            WatchedEvent(EventType.NODE_DELETED, "/q"),
        ]

    def test_same_watcher_registers_equal_adapters(self, client, kazoo):
        def watcher(event):
            pass

        client.get_children("/q", watch=watcher)
        client.get_children("/q", watch=watcher)

        first, second = (c.kwargs["watch"] for c in kazoo.get_children.call_args_list)
        assert first == second
        assert len({first, second}) == 1

    def test_bound_method_watchers_deduplicate(self, client, kazoo):
        listener = _Listener()

        client.get_children("/q", watch=listener.on_event)
        client.get_children("/q", watch=listener.on_event)

        adapters = {c.kwargs["watch"] for c in kazoo.get_children.call_args_list}
        assert len(adapters) == 1

    def test_bound_method_watcher_survives_gc(self, client, kazoo):
        listener = _Listener()
        client.get_children("/q", watch=listener.on_event)
        adapter = kazoo.get_children.call_args.kwargs["watch"]

        gc.collect()
        adapter(KazooWatchedEvent(KazooEventType.CHILD, KazooState.CONNECTED, "/q"))

        assert listener.events == [WatchedEvent(EventType.CHILDREN_CHANGED, "/q")]

    def test_lambda_watcher_survives_gc(self, client, kazoo):
        received = []
        client.get_children("/q", watch=lambda event: received.append(event))
        adapter = kazoo.get_children.call_args.kwargs["watch"]

        gc.collect()
        adapter(KazooWatchedEvent(KazooEventType.CHILD, KazooState.CONNECTED, "/q"))

        assert len(received) == 1
        assert received[0].type is EventType.CHILDREN_CHANGED
