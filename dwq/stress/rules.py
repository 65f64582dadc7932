"""
Built-in fault injection rules.

Rules are composable building blocks for scenarios.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Optional, Set

from dwq.stress.scenario import CallContext, Fault


@dataclass(frozen=True)
class LatencyRule:
    """
    Add latency with a given probability.

    Example:
        LatencyRule(p=0.3, delay_seconds=0.2)  # 30% chance of 200ms delay
    """

    p: float
    delay_seconds: float

    def maybe_fault(self, ctx: CallContext) -> Optional[Fault]:
        if ctx.rng.random() < self.p:
            return Fault(delay_seconds=self.delay_seconds)
        return None


@dataclass(frozen=True)
class ErrorRateRule:
    """
    Raise an exception with a given probability.

    Example:
        ErrorRateRule(p=0.2, exc_factory=faults.connection_loss)
    """

    p: float
    exc_factory: Callable[[], Exception]

    def maybe_fault(self, ctx: CallContext) -> Optional[Fault]:
        if ctx.rng.random() < self.p:
            return Fault(exception=self.exc_factory())
        return None


@dataclass(frozen=True)
class NthCallRule:
    """
    Fail at specific call indices (deterministic).

    Example:
        NthCallRule(indices={1, 5, 10}, exc_factory=faults.connection_loss)
    """

    indices: Set[int]
    exc_factory: Callable[[], Exception]

    def maybe_fault(self, ctx: CallContext) -> Optional[Fault]:
        if ctx.call_index in self.indices:
            return Fault(exception=self.exc_factory())
        return None


@dataclass
class OperationRule:
    """
    Fail every call to the named operations, optionally only under a path
    prefix and only for the first ``limit`` matches.

    Example:
        # Claim markers can never be deleted
        OperationRule(
            operations=frozenset({"delete_recursive"}),
            exc_factory=faults.connection_loss,
            path_prefix="/queue/locks/",
        )
    """

    operations: FrozenSet[str]
    exc_factory: Callable[[], Exception]
    path_prefix: str = ""
    limit: Optional[int] = None
    _matched: int = field(default=0, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def maybe_fault(self, ctx: CallContext) -> Optional[Fault]:
        if ctx.operation not in self.operations:
            return None
        if not ctx.path.startswith(self.path_prefix):
            return None
        with self._lock:
            if self.limit is not None and self._matched >= self.limit:
                return None
            self._matched += 1
        return Fault(exception=self.exc_factory())

    @property
    def matched(self) -> int:
        with self._lock:
            return self._matched


def latency(p: float, delay_seconds: float) -> LatencyRule:
    """Convenience: add latency with probability p."""
    return LatencyRule(p=p, delay_seconds=delay_seconds)


def error_rate(p: float, exc_factory: Callable[[], Exception]) -> ErrorRateRule:
    """Convenience: raise errors with probability p."""
    return ErrorRateRule(p=p, exc_factory=exc_factory)


def fail_operations(
    *operations: str,
    exc_factory: Callable[[], Exception],
    path_prefix: str = "",
    limit: Optional[int] = None,
) -> OperationRule:
    """Convenience: fail calls to the named client operations."""
    return OperationRule(
        operations=frozenset(operations),
        exc_factory=exc_factory,
        path_prefix=path_prefix,
        limit=limit,
    )
