"""Processors and polling helpers shared by the queue tests."""
from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Tuple


def eventually(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RecordingProcessor:
    """Records every (work_id, data) it is asked to process."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: List[Tuple[str, bytes]] = []
        self.instances = 0
        self._lock = threading.Lock()

    def new_processor(self) -> "RecordingProcessor":
        with self._lock:
            self.instances += 1
        return self

    def process(self, work_id: str, data: bytes) -> None:
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.calls.append((work_id, data))

    @property
    def work_ids(self) -> List[str]:
        with self._lock:
            return [work_id for work_id, _ in self.calls]

    def count(self, work_id: str) -> int:
        return self.work_ids.count(work_id)


class FailingProcessor:
    """Raises for every item; counts attempts per id."""

    def __init__(self) -> None:
        self.attempts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def new_processor(self) -> "FailingProcessor":
        return self

    def process(self, work_id: str, data: bytes) -> None:
        with self._lock:
            self.attempts[work_id] = self.attempts.get(work_id, 0) + 1
        raise RuntimeError(f"cannot process {work_id}")

    def total(self) -> int:
        with self._lock:
            return sum(self.attempts.values())


class BlockingProcessor:
    """Blocks in process() until released; tracks peak concurrency."""

    def __init__(self) -> None:
        self.release = threading.Event()
        self.started: List[str] = []
        self.running = 0
        self.peak = 0
        self._lock = threading.Lock()

    def new_processor(self) -> "BlockingProcessor":
        return self

    def process(self, work_id: str, data: bytes) -> None:
        with self._lock:
            self.started.append(work_id)
            self.running += 1
            self.peak = max(self.peak, self.running)
        try:
            self.release.wait(timeout=10)
        finally:
            with self._lock:
                self.running -= 1
