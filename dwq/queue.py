"""
Distributed work queue on a coordination service.

A producer puts named work items under a registry node; any number of
worker processes race to claim and run each one. No central scheduler:
workers lock items with ephemeral markers and delete an item only after it
was processed successfully. Delivery is at-least-once, so processors must be
idempotent.

Registry layout:

    <path>/                 registry, children are pending work items
    <path>/<work_id>        persistent node, data = payload
    <path>/locks/<work_id>  ephemeral claim marker, owned by the worker session

Usage:
    from dwq import DistributedWorkQueue, WorkerPool, CallableProcessor
    from dwq.coordination.zookeeper import ZooKeeperClient

    client = ZooKeeperClient.connect("zk1:2181")
    queue = DistributedWorkQueue("/jobs/bulk-import", client)

    # Producer
    queue.add_work("file-0001", b"hdfs://.../0001.rf")
    queue.wait_until_done({"file-0001"})

    # Worker
    pool = WorkerPool(max_workers=4)
    queue.start_processing(CallableProcessor(import_file), pool)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from dwq.claim import ClaimScanner
from dwq.config import Settings, get_settings
from dwq.coordination.protocol import (
    CoordinationClient,
    EventType,
    NodeExistsPolicy,
    WatchedEvent,
    join_path,
    normalize_path,
)
from dwq.exceptions import (
    InvalidWorkIdError,
    NoNodeError,
    PoolShutdownError,
    WaitCancelledError,
    WaitTimeoutError,
)
from dwq.metrics import QueueMetrics
from dwq.models import LOCKS_NODE, WorkItem
from dwq.pool import InFlightCounter, WorkerPool
from dwq.processor import Processor
from dwq.triggers import ChildWatch, PeriodicScan

logger = logging.getLogger(__name__)


class DistributedWorkQueue:
    """
    Producer and worker API for one registry node.

    One instance per (registry, process). The same instance can both add
    work and process it. Processing starts with start_processing() and runs
    in the background until stop().
    """

    def __init__(
        self,
        path: str,
        client: CoordinationClient,
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Args:
            path: Absolute registry node path, e.g. "/dwq/bulk-import".
            client: Coordination session; ephemeral claims live and die with it.
            settings: Timings (defaults from get_settings()).
        """
        self._path = normalize_path(path)
        self._locks_path = join_path(self._path, LOCKS_NODE)
        self._client = client
        self._settings = settings or get_settings()
        self._counter = InFlightCounter()
        self.metrics = QueueMetrics(self._path)

        self._lock = threading.Lock()
        self._pool: Optional[WorkerPool] = None
        self._scanner: Optional[ClaimScanner] = None
        self._watch: Optional[ChildWatch] = None
        self._timer: Optional[PeriodicScan] = None

    @property
    def path(self) -> str:
        return self._path

    # -- producer ------------------------------------------------------------

    def add_work(self, work_id: str, data: bytes) -> None:
        """
        Queue an item. Re-adding an existing id is a no-op (payload kept).

        Raises:
            InvalidWorkIdError: ``work_id`` is ``locks`` (any case) or not a
                single node name.
            CoordinationError: The coordination service failed.
        """
        if work_id.lower() == LOCKS_NODE:
            raise InvalidWorkIdError(
                f"{LOCKS_NODE} is reserved work id", work_id=work_id
            )
        try:
            item = WorkItem(work_id=work_id, data=data)
        except ValidationError as exc:
            raise InvalidWorkIdError(
                f"Invalid work id {work_id!r}",
                work_id=work_id,
                details={"errors": [e["msg"] for e in exc.errors()]},
            ) from exc

        self._client.ensure_path(self._path)
        self._client.create_persistent(
            join_path(self._path, item.work_id), item.data, NodeExistsPolicy.SKIP
        )
        logger.debug("Added work %s to %s", item.work_id, self._path)

    def pending_work(self) -> List[str]:
        """Ids currently queued (claimed or not). Empty if the registry is absent."""
        try:
            children = self._client.get_children(self._path)
        except NoNodeError:
            return []
        return sorted(c for c in children if c != LOCKS_NODE)

    def wait_until_done(
        self,
        work_ids: Iterable[str],
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
        recheck_interval: Optional[float] = None,
    ) -> None:
        """
        Block until none of ``work_ids`` is left in the registry.

        Woken by child watches; re-checks every ``recheck_interval`` seconds
        (DWQ_WAIT_RECHECK_SECONDS, 10s by default) in case a notification
        was missed between a read and the re-arm.

        Args:
            work_ids: Ids to wait for.
            timeout: Give up after this many seconds (None waits forever).
            cancel: Give up once this event is set (checked at least every
                ``recheck_interval``).
            recheck_interval: Seconds between fallback re-reads of the
                registry (None uses DWQ_WAIT_RECHECK_SECONDS).

        Raises:
            WaitTimeoutError: ``timeout`` elapsed first.
            WaitCancelledError: ``cancel`` was set first.
            ValueError: ``recheck_interval`` is not positive.
            CoordinationError: The coordination service failed.
        """
        ids = set(work_ids)
        if recheck_interval is None:
            interval = self._settings.wait_recheck_seconds
        elif recheck_interval <= 0:
            raise ValueError("recheck_interval must be > 0")
        else:
            interval = recheck_interval
        deadline = None if timeout is None else time.monotonic() + timeout
        cond = threading.Condition()
        changed = [False]

        def watcher(event: WatchedEvent) -> None:
            if event.type is EventType.CHILDREN_CHANGED:
                with cond:
                    changed[0] = True
                    cond.notify_all()
            else:
                logger.info(
                    "Got unexpected coordination event %s for %s",
                    event.type.value,
                    self._path,
                )

        remaining = self._remaining(ids, watcher)
        while remaining:
            if cancel is not None and cancel.is_set():
                raise WaitCancelledError(
                    f"Wait on {self._path} cancelled", remaining=remaining
                )
            wait_for = interval
            if deadline is not None:
                left = deadline - time.monotonic()
                if left <= 0:
                    raise WaitTimeoutError(
                        f"Timed out waiting for work in {self._path}",
                        remaining=remaining,
                    )
                wait_for = min(wait_for, left)
            with cond:
                cond.wait_for(lambda: changed[0], timeout=wait_for)
                changed[0] = False
            remaining = self._remaining(ids, watcher)

    def _remaining(self, ids: set, watcher) -> List[str]:
        # Every read re-arms the one-shot watch.
        try:
            children = self._client.get_children(self._path, watch=watcher)
        except NoNodeError:
            return []
        return sorted(ids.intersection(children))

    # -- worker --------------------------------------------------------------

    def start_processing(self, processor: Processor, pool: WorkerPool) -> None:
        """
        Begin claiming and processing work in the background.

        Sets up the registry, arms the child watch, scans once immediately,
        and schedules the jittered periodic re-scan. Returns without waiting
        for any work.

        Raises:
            RuntimeError: This instance is already processing (call stop() first).
            CoordinationError: Setup against the coordination service failed.
        """
        with self._lock:
            if self._scanner is not None:
                raise RuntimeError(f"Already processing work in {self._path}")

            self._client.ensure_path(self._path)
            self._client.ensure_path(self._locks_path)

            scanner = ClaimScanner(
                self._client,
                self._path,
                processor,
                pool,
                self._counter,
                metrics=self.metrics,
                on_complete=self._rescan_after_task,
            )
            watch = ChildWatch(self._client, self._path, scanner.scan)
            self._pool = pool
            children = watch.start()
            self._scanner = scanner
            self._watch = watch

        logger.info(
            "Processing work in %s with up to %d concurrent tasks",
            self._path,
            pool.max_workers,
        )
        scanner.scan(children)

        timer = PeriodicScan(
            self._periodic_rescan,
            self._settings.scan_period_seconds,
            name=f"dwq-scan:{self._path}",
        )
        with self._lock:
            if not scanner.stopped:
                self._timer = timer
                timer.start()

    def stop(self) -> None:
        """
        Stop discovering work. In-flight tasks finish; the pool stays open.
        start_processing() may be called again afterwards.
        """
        with self._lock:
            scanner, watch, timer = self._scanner, self._watch, self._timer
            self._scanner = None
            self._watch = None
            self._timer = None
        if scanner is not None:
            scanner.stop()
        if watch is not None:
            watch.cancel()
        if timer is not None:
            timer.stop()
        if scanner is not None:
            logger.info("Stopped processing work in %s", self._path)

    @property
    def processing(self) -> bool:
        scanner = self._scanner
        return scanner is not None and not scanner.stopped

    @property
    def in_flight(self) -> int:
        return self._counter.get()

    @property
    def stats(self) -> Dict[str, Any]:
        pool = self._pool
        snapshot = self.metrics.snapshot().to_dict()
        snapshot["in_flight"] = self._counter.get()
        snapshot["capacity"] = pool.max_workers if pool is not None else 0
        return snapshot

    def _rescan_after_task(self) -> None:
        # Runs as its own pool job so long drain chains never nest.
        pool = self._pool
        if pool is None:
            return
        try:
            pool.submit(self._scan_latest)
        except PoolShutdownError:
            logger.debug("Worker pool shut down; not re-scanning %s", self._path)

    def _periodic_rescan(self) -> None:
        self._scan_latest()

    def _scan_latest(self) -> None:
        scanner, watch = self._scanner, self._watch
        if scanner is None or watch is None or scanner.stopped:
            return
        try:
            # Reading through the watch also restores it if a firing was lost.
            children = watch.read()
        except Exception:
            logger.error("Failed to look for work in %s", self._path, exc_info=True)
            return
        scanner.scan(children)

    def __enter__(self) -> "DistributedWorkQueue":
        return self

    def __exit__(self, *args) -> None:
        self.stop()
