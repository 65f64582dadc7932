"""
Scenario and fault definitions for coordination fault injection.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import List, Optional, Protocol


@dataclass(frozen=True)
class CallContext:
    """
    Context for each coordination call.

    Attributes:
        call_index: Increments on every wrapped call (1-based).
        operation: Client method name, e.g. "delete_recursive".
        path: Node path the call targets.
        rng: Seeded random number generator for reproducibility.
    """

    call_index: int
    operation: str
    path: str
    rng: random.Random


@dataclass(frozen=True)
class Fault:
    """
    A fault to inject before a coordination call.

    Attributes:
        delay_seconds: How long to delay before the call.
        exception: Exception to raise instead of making the call (if any).
    """

    delay_seconds: float = 0.0
    exception: Optional[Exception] = None


class FaultRule(Protocol):
    """Protocol for fault injection rules."""

    def maybe_fault(self, ctx: CallContext) -> Optional[Fault]:
        """
        Decide whether to inject a fault for this call.

        Returns:
            Fault to inject, or None for no fault.
        """
        ...


@dataclass
class Scenario:
    """
    A named collection of fault rules.

    Rules are evaluated in order; first match wins.
    """

    name: str
    rules: List[FaultRule] = field(default_factory=list)

    def decide(self, ctx: CallContext) -> Optional[Fault]:
        for rule in self.rules:
            fault = rule.maybe_fault(ctx)
            if fault is not None:
                return fault
        return None

    def __add__(self, other: "Scenario") -> "Scenario":
        """Combine scenarios by concatenating rules."""
        return Scenario(
            name=f"{self.name}+{other.name}",
            rules=list(self.rules) + list(other.rules),
        )
