"""
Claim protocol: scan the registry, lock one item at a time, dispatch.

Many workers scan the same child list concurrently. Each claim is an
exclusive create of an ephemeral marker at ``<root>/locks/<name>``; exactly
one concurrent attempt per name succeeds, and the marker vanishes with the
worker's session if the worker dies. There is no waiting on a held lock: a
busy item is simply skipped and picked up by a later scan if it survives.

Scan outline (per candidate, in shuffled order):

    create marker    -> exists already? someone else has it, next
    item still there -> no? another worker finished it, release, next
    admit            -> pool full? release, stop this pass
    read payload     -> gone? release, next
    dispatch

Task outline:

    process          -> ok: delete item     | raised: keep item (retry later)
    delete marker    (always)
    decrement in-flight counter
    on_complete()    (queue re-scans with fresh children)
"""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import Callable, Optional, Sequence

from dwq import telemetry
from dwq.coordination.protocol import (
    CoordinationClient,
    NodeMissingPolicy,
    join_path,
)
from dwq.exceptions import NodeExistsError, NoNodeError, PoolShutdownError
from dwq.metrics import QueueMetrics
from dwq.models import LOCKS_NODE, ClaimedWork
from dwq.pool import InFlightCounter, WorkerPool
from dwq.processor import Processor

logger = logging.getLogger(__name__)


class ClaimScanner:
    """
    Claims and dispatches registry children for one queue on one worker.

    Safe to call scan() from several threads at once (watch callback,
    periodic timer, task completions): the only shared local state is the
    in-flight counter, and cross-worker races are settled by the
    coordination service's exclusive create.
    """

    def __init__(
        self,
        client: CoordinationClient,
        path: str,
        processor: Processor,
        pool: WorkerPool,
        counter: InFlightCounter,
        *,
        metrics: Optional[QueueMetrics] = None,
        on_complete: Optional[Callable[[], None]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Args:
            client: Coordination session used for claims and cleanup.
            path: Registry node; children are work items plus ``locks``.
            processor: Factory for per-item processor instances.
            pool: Executes dispatched tasks; its size is the ceiling.
            counter: In-flight task count shared by every scan of this queue.
            metrics: Where to record outcomes (a private one if omitted).
            on_complete: Called after each task has released its capacity.
            rng: Source for the per-scan shuffle.
        """
        self._client = client
        self._path = path
        self._locks_path = join_path(path, LOCKS_NODE)
        self._processor = processor
        self._pool = pool
        self._counter = counter
        self._metrics = metrics or QueueMetrics(path)
        self._on_complete = on_complete
        self._rng = rng or random.Random()
        self._stopped = threading.Event()

    def stop(self) -> None:
        """Make later scans no-ops. Tasks already dispatched still finish."""
        self._stopped.set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def has_capacity(self) -> bool:
        return self._counter.get() < self._pool.max_workers

    def scan(self, children: Sequence[str]) -> None:
        """Claim and dispatch as many of ``children`` as capacity allows."""
        if self._stopped.is_set() or not children:
            return
        if not self.has_capacity():
            return

        self._metrics.inc("scans")
        candidates = list(children)
        self._rng.shuffle(candidates)
        try:
            for child in candidates:
                if child == LOCKS_NODE:
                    continue
                if not self._claim(child):
                    break
        except Exception:
            self._metrics.inc("scan_errors")
            logger.exception("Unexpected error looking for work in %s", self._path)

    def _claim(self, child: str) -> bool:
        """Try one candidate. Returns False when the pass should stop."""
        lock_path = join_path(self._locks_path, child)
        item_path = join_path(self._path, child)

        try:
            # No queueing on the lock: if it is held right now, move on.
            self._client.create_ephemeral_exclusive(lock_path, b"")
        except NodeExistsError:
            self._metrics.inc("contention_skips")
            return True

        try:
            present = self._client.exists(item_path)
        except Exception:
            self._release_quietly(lock_path)
            raise
        if not present:
            self._release(lock_path)
            self._metrics.inc("stale_skips")
            return True

        if not self._counter.try_acquire(self._pool.max_workers):
            self._release(lock_path)
            return False

        try:
            data = self._client.get_data(item_path)
        except NoNodeError:
            self._counter.decrement()
            self._release(lock_path)
            self._metrics.inc("stale_skips")
            return True
        except Exception:
            self._counter.decrement()
            self._release_quietly(lock_path)
            raise

        logger.debug("got lock for %s", child)
        work = ClaimedWork(
            work_id=child, item_path=item_path, lock_path=lock_path, data=data
        )
        self._metrics.set_in_flight(self._counter.get())
        try:
            self._pool.submit(self.run, work)
        except PoolShutdownError:
            self._counter.decrement()
            self._release_quietly(lock_path)
            logger.info("Worker pool shut down; stopped claiming work in %s", self._path)
            return False
        self._metrics.inc("claims")
        return True

    def run(self, work: ClaimedWork) -> None:
        """Execute one claimed item. Never raises."""
        start = time.monotonic()
        try:
            with telemetry.span("dwq.process", work_id=work.work_id, queue=self._path):
                self._process(work)
        finally:
            remaining = self._counter.decrement()
            self._metrics.set_in_flight(remaining)
            self._metrics.observe_task((time.monotonic() - start) * 1000.0)

        # Capacity is visibly free before the next scan starts.
        if self._on_complete is not None and not self._stopped.is_set():
            try:
                self._on_complete()
            except Exception:
                logger.exception("Failed to look for work in %s", self._path)

    def _process(self, work: ClaimedWork) -> None:
        try:
            self._processor.new_processor().process(work.work_id, work.data)
        except Exception:
            self._metrics.inc("failed")
            logger.warning("Failed to process work %s", work.work_id, exc_info=True)
        else:
            self._metrics.inc("processed")
            logger.debug("Processed work %s", work.work_id)
            # A failed attempt skips this, so the item stays for a retry.
            try:
                self._client.delete_recursive(work.item_path, NodeMissingPolicy.SKIP)
            except Exception:
                self._metrics.inc("cleanup_errors")
                logger.error(
                    "Error received when trying to delete entry %s",
                    work.item_path,
                    exc_info=True,
                )

        try:
            self._client.delete_recursive(work.lock_path, NodeMissingPolicy.SKIP)
        except Exception:
            self._metrics.inc("cleanup_errors")
            logger.error(
                "Error received when trying to delete claim %s",
                work.lock_path,
                exc_info=True,
            )

    def _release(self, lock_path: str) -> None:
        self._client.delete_recursive(lock_path, NodeMissingPolicy.SKIP)

    def _release_quietly(self, lock_path: str) -> None:
        try:
            self._release(lock_path)
        except Exception:
            self._metrics.inc("cleanup_errors")
            logger.error("Error releasing claim %s", lock_path, exc_info=True)
