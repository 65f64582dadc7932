"""
Tests for the worker pool and in-flight accounting.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from dwq.exceptions import PoolShutdownError
from dwq.pool import InFlightCounter, WorkerPool


class TestInFlightCounter:
    def test_increment_decrement(self):
        counter = InFlightCounter()
        assert counter.increment() == 1
        assert counter.increment() == 2
        assert counter.decrement() == 1
        assert counter.get() == 1

    def test_try_acquire_respects_ceiling(self):
        counter = InFlightCounter()
        assert counter.try_acquire(2)
        assert counter.try_acquire(2)
        assert not counter.try_acquire(2)
        assert counter.get() == 2

        counter.decrement()
        assert counter.try_acquire(2)

    def test_try_acquire_is_atomic_under_contention(self):
        """Concurrent acquirers never push the count past the ceiling."""
        counter = InFlightCounter()
        barrier = threading.Barrier(16)

        def grab():
            barrier.wait()
            return counter.try_acquire(5)

        with ThreadPoolExecutor(max_workers=16) as executor:
            results = list(executor.map(lambda _: grab(), range(16)))

        assert sum(results) == 5
        assert counter.get() == 5


class TestWorkerPool:
    def test_rejects_zero_workers(self):
        with pytest.raises(ValueError):
            WorkerPool(max_workers=0)

    def test_submit_runs_task(self):
        with WorkerPool(max_workers=2) as pool:
            future = pool.submit(lambda x: x * 2, 21)
            assert future.result(timeout=2) == 42

    def test_thread_name_prefix(self):
        with WorkerPool(max_workers=1, thread_name_prefix="import-worker") as pool:
            name = pool.submit(lambda: threading.current_thread().name).result(timeout=2)
        assert name.startswith("import-worker")

    def test_submit_after_shutdown(self):
        pool = WorkerPool(max_workers=1)
        pool.shutdown()

        assert pool.is_shutdown
        with pytest.raises(PoolShutdownError):
            pool.submit(lambda: None)
        with pytest.raises(RuntimeError):
            pool.submit(lambda: None)

    def test_runs_at_most_max_workers_concurrently(self):
        running = 0
        peak = 0
        lock = threading.Lock()

        def task():
            nonlocal running, peak
            with lock:
                running += 1
                peak = max(peak, running)
            time.sleep(0.05)
            with lock:
                running -= 1

        with WorkerPool(max_workers=3) as pool:
            futures = [pool.submit(task) for _ in range(12)]
            for f in futures:
                f.result(timeout=5)

        assert peak <= 3

    def test_resize_grows_capacity(self):
        release = threading.Event()
        pool = WorkerPool(max_workers=1)
        try:
            first = pool.submit(release.wait, 5)
            pool.resize(3)
            assert pool.max_workers == 3

            # The new executor runs work while the old one is still busy.
            assert pool.submit(lambda: "ran").result(timeout=2) == "ran"
            release.set()
            first.result(timeout=2)
        finally:
            release.set()
            pool.shutdown()

    def test_resize_shrink_lowers_ceiling(self):
        with WorkerPool(max_workers=4) as pool:
            pool.resize(2)
            assert pool.max_workers == 2
            assert pool.submit(lambda: 1).result(timeout=2) == 1

    def test_resize_validation(self):
        with WorkerPool(max_workers=2) as pool:
            with pytest.raises(ValueError):
                pool.resize(0)
        with pytest.raises(PoolShutdownError):
            pool.resize(3)

    def test_shutdown_waits_for_retired_executors(self):
        done = threading.Event()

        def slow():
            time.sleep(0.1)
            done.set()

        pool = WorkerPool(max_workers=1)
        pool.submit(slow)
        pool.resize(2)
        pool.shutdown(wait=True)

        assert done.is_set()
