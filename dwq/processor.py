"""
Processing capability supplied by the caller.

A Processor is a factory for itself: the queue calls new_processor() once per
claimed item and runs process() on the fresh instance, so implementations can
keep per-item state without locking. Raising from process() leaves the item in
the registry for a later retry by any worker.

Usage:
    class Thumbnailer:
        def new_processor(self):
            return Thumbnailer()

        def process(self, work_id: str, data: bytes) -> None:
            render(work_id, data)

    queue.start_processing(Thumbnailer(), pool)

    # Or wrap a plain function
    queue.start_processing(CallableProcessor(render), pool)
"""

from __future__ import annotations

from typing import Callable, Protocol


class Processor(Protocol):
    """Interface for the per-item processing logic."""

    def new_processor(self) -> "Processor": ...

    def process(self, work_id: str, data: bytes) -> None: ...


class CallableProcessor:
    """Adapt a stateless ``fn(work_id, data)`` to the Processor interface."""

    def __init__(self, fn: Callable[[str, bytes], None]) -> None:
        self._fn = fn

    def new_processor(self) -> "CallableProcessor":
        return CallableProcessor(self._fn)

    def process(self, work_id: str, data: bytes) -> None:
        self._fn(work_id, data)
