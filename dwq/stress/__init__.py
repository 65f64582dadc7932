"""
Fault injection for the coordination layer.

Wrap a CoordinationClient so chosen calls fail or slow down, then watch how
the queue copes: failed cleanups, lost connections mid-scan, expired
sessions.

Usage:
    from dwq.stress import FaultInjectingClient, Scenario, rules, faults

    flaky = FaultInjectingClient(
        ensemble.connect(),
        Scenario("one_in_five_fails", [rules.error_rate(0.2, faults.connection_loss)]),
        seed=42,
    )
"""

from dwq.stress.scenario import Scenario, Fault, CallContext
from dwq.stress.harness import FaultInjectingClient
from dwq.stress import rules
from dwq.stress import faults

__all__ = [
    "Scenario",
    "Fault",
    "CallContext",
    "FaultInjectingClient",
    "rules",
    "faults",
]
