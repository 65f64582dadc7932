"""
Bounded worker pool and in-flight accounting for claimed work.

Problem: every discovery trigger (watch, timer, task completion) can claim
work concurrently, and each claim holds a marker in the coordination service.
Claiming more than the pool can run just parks markers that block other
workers.

Solution: an explicit in-flight counter checked before and during every scan.
Admission is an atomic check-and-increment against the pool's ceiling, so the
counter only exceeds the ceiling when resize() lowers it below the current
load (those tasks simply finish).

Usage:
    pool = WorkerPool(max_workers=4)
    counter = InFlightCounter()

    if counter.try_acquire(pool.max_workers):
        pool.submit(task)        # task must call counter.decrement()

    pool.resize(8)               # grow at runtime
    pool.shutdown(wait=True)
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, List

from dwq.exceptions import PoolShutdownError

logger = logging.getLogger(__name__)


class InFlightCounter:
    """Thread-safe count of tasks handed to the pool and not yet finished."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def get(self) -> int:
        with self._lock:
            return self._value

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def decrement(self) -> int:
        with self._lock:
            self._value -= 1
            return self._value

    def try_acquire(self, ceiling: int) -> bool:
        """Increment only if the count is below ``ceiling``."""
        with self._lock:
            if self._value >= ceiling:
                return False
            self._value += 1
            return True


class WorkerPool:
    """
    Fixed-size thread pool whose size is the queue's concurrency ceiling.

    Thread-safe. Growing the pool swaps in a larger executor; the retired
    executor finishes whatever it already accepted and is joined on shutdown.
    Shrinking only lowers the ceiling.
    """

    def __init__(
        self,
        max_workers: int = 4,
        *,
        thread_name_prefix: str = "dwq-worker",
    ) -> None:
        """
        Args:
            max_workers: Maximum concurrently executing tasks.
            thread_name_prefix: Prefix for executor thread names.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")

        self._max_workers = max_workers
        self._threads = max_workers
        self._prefix = thread_name_prefix
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=thread_name_prefix
        )
        self._retired: List[ThreadPoolExecutor] = []
        self._lock = threading.Lock()
        self._shutdown = False

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def resize(self, max_workers: int) -> None:
        """Change the concurrency ceiling."""
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        with self._lock:
            if self._shutdown:
                raise PoolShutdownError("Worker pool has been shut down")
            if max_workers > self._threads:
                old = self._executor
                self._executor = ThreadPoolExecutor(
                    max_workers=max_workers, thread_name_prefix=self._prefix
                )
                self._threads = max_workers
                self._retired.append(old)
                old.shutdown(wait=False)
            previous, self._max_workers = self._max_workers, max_workers
        logger.info("Worker pool resized: %d -> %d", previous, max_workers)

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        with self._lock:
            if self._shutdown:
                raise PoolShutdownError("Worker pool has been shut down")
            return self._executor.submit(fn, *args)

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting tasks; optionally wait for running ones."""
        with self._lock:
            self._shutdown = True
            executors = self._retired + [self._executor]
            self._retired = []
        for executor in executors:
            executor.shutdown(wait=wait)

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, *args) -> None:
        self.shutdown(wait=True)
