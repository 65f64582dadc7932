"""
Fault-injecting wrapper for any CoordinationClient.

Wrap a client, hand it to a DistributedWorkQueue, and the scenario decides
per call whether to delay or fail it. Calls that are not faulted go to the
wrapped client unchanged.

Usage:
    from dwq.stress import FaultInjectingClient, Scenario, faults, rules

    flaky = FaultInjectingClient(
        ensemble.connect(),
        Scenario("marker-cleanup-fails", [
            rules.fail_operations(
                "delete_recursive",
                exc_factory=faults.connection_loss,
                path_prefix="/queue/locks/",
            ),
        ]),
    )
    queue = DistributedWorkQueue("/queue", flaky)
"""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import Callable, List, Optional, TypeVar

from dwq.coordination.protocol import (
    CoordinationClient,
    NodeExistsPolicy,
    NodeMissingPolicy,
    Watcher,
)
from dwq.stress.scenario import CallContext, Scenario

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FaultInjectingClient:
    """
    CoordinationClient that injects scenario faults before delegating.

    Thread-safe: the call index is shared by all threads using the client.
    """

    def __init__(
        self,
        client: CoordinationClient,
        scenario: Scenario,
        *,
        seed: int = 0,
    ) -> None:
        self._client = client
        self._scenario = scenario
        self._rng = random.Random(seed)
        self._call_index = 0
        self._injected: List[CallContext] = []
        self._lock = threading.Lock()

    @property
    def wrapped(self) -> CoordinationClient:
        return self._client

    @property
    def call_count(self) -> int:
        with self._lock:
            return self._call_index

    @property
    def injected(self) -> List[CallContext]:
        """Calls that received a fault, in order."""
        with self._lock:
            return list(self._injected)

    def _call(self, operation: str, path: str, fn: Callable[[], T]) -> T:
        with self._lock:
            self._call_index += 1
            ctx = CallContext(
                call_index=self._call_index,
                operation=operation,
                path=path,
                rng=self._rng,
            )
            fault = self._scenario.decide(ctx)
            if fault is not None:
                self._injected.append(ctx)

        if fault is not None:
            if fault.delay_seconds > 0:
                time.sleep(fault.delay_seconds)
            if fault.exception is not None:
                logger.debug("Injecting %r into %s(%s)", fault.exception, operation, path)
                raise fault.exception
        return fn()

    def ensure_path(self, path: str) -> None:
        self._call("ensure_path", path, lambda: self._client.ensure_path(path))

    def create_persistent(
        self,
        path: str,
        data: bytes,
        on_exists: NodeExistsPolicy = NodeExistsPolicy.SKIP,
    ) -> None:
        self._call(
            "create_persistent",
            path,
            lambda: self._client.create_persistent(path, data, on_exists),
        )

    def create_ephemeral_exclusive(self, path: str, data: bytes) -> None:
        self._call(
            "create_ephemeral_exclusive",
            path,
            lambda: self._client.create_ephemeral_exclusive(path, data),
        )

    def get_data(self, path: str) -> bytes:
        return self._call("get_data", path, lambda: self._client.get_data(path))

    def exists(self, path: str) -> bool:
        return self._call("exists", path, lambda: self._client.exists(path))

    def get_children(self, path: str, watch: Optional[Watcher] = None) -> List[str]:
        return self._call(
            "get_children", path, lambda: self._client.get_children(path, watch=watch)
        )

    def delete_recursive(
        self,
        path: str,
        on_missing: NodeMissingPolicy = NodeMissingPolicy.SKIP,
    ) -> None:
        self._call(
            "delete_recursive",
            path,
            lambda: self._client.delete_recursive(path, on_missing),
        )

    def close(self) -> None:
        self._client.close()
