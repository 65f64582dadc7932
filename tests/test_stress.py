"""
Tests for coordination fault injection and the queue's behaviour under it.
"""
from __future__ import annotations

import random

import pytest

from dwq import DistributedWorkQueue, WorkerPool
from dwq.coordination.protocol import join_path
from dwq.exceptions import CoordinationError, SessionExpiredError
from dwq.models import LOCKS_NODE
from dwq.stress import CallContext, Fault, FaultInjectingClient, Scenario, faults, rules
from tests.support.helpers import RecordingProcessor, eventually

QUEUE = "/dwq/stress"


def _ctx(index: int = 1, operation: str = "exists", path: str = "/q") -> CallContext:
    return CallContext(call_index=index, operation=operation, path=path, rng=random.Random(0))


class TestRules:
    def test_nth_call(self):
        rule = rules.NthCallRule(indices={2}, exc_factory=faults.connection_loss)
        assert rule.maybe_fault(_ctx(1)) is None
        fault = rule.maybe_fault(_ctx(2))
        assert isinstance(fault.exception, CoordinationError)

    def test_error_rate_extremes(self):
        always = rules.error_rate(1.0, faults.session_expired)
        never = rules.error_rate(0.0, faults.session_expired)

        assert isinstance(always.maybe_fault(_ctx()).exception, SessionExpiredError)
        assert never.maybe_fault(_ctx()) is None

    def test_latency(self):
        fault = rules.latency(1.0, 0.25).maybe_fault(_ctx())
        assert fault == Fault(delay_seconds=0.25)

    def test_fail_operations_filters_and_limits(self):
        rule = rules.fail_operations(
            "delete_recursive",
            exc_factory=faults.operation_timeout,
            path_prefix="/q/locks/",
            limit=1,
        )

        assert rule.maybe_fault(_ctx(operation="exists", path="/q/locks/a")) is None
        assert rule.maybe_fault(_ctx(operation="delete_recursive", path="/q/a")) is None
        assert rule.maybe_fault(_ctx(operation="delete_recursive", path="/q/locks/a")) is not None
        assert rule.maybe_fault(_ctx(operation="delete_recursive", path="/q/locks/b")) is None
        assert rule.matched == 1

    def test_scenario_first_match_wins_and_combines(self):
        first = Scenario("a", [rules.latency(1.0, 0.1)])
        second = Scenario("b", [rules.error_rate(1.0, faults.connection_loss)])

        combined = first + second

        assert combined.name == "a+b"
        assert combined.decide(_ctx()) == Fault(delay_seconds=0.1)
        assert Scenario("empty").decide(_ctx()) is None


class TestFaultInjectingClient:
    def test_delegates_when_no_fault(self, ensemble):
        client = FaultInjectingClient(ensemble.connect(), Scenario("none"))
        client.ensure_path("/q")
        client.create_persistent("/q/a", b"x")

        assert client.get_data("/q/a") == b"x"
        assert client.get_children("/q") == ["a"]
        assert client.call_count == 4
        assert client.injected == []

    def test_injects_and_skips_call(self, ensemble):
        inner = ensemble.connect()
        inner.ensure_path("/q")
        client = FaultInjectingClient(
            inner,
            Scenario("no-creates", [
                rules.fail_operations("create_persistent", exc_factory=faults.connection_loss),
            ]),
        )

        with pytest.raises(CoordinationError):
            client.create_persistent("/q/a", b"")

        assert not inner.exists("/q/a")
        assert [c.operation for c in client.injected] == ["create_persistent"]

    def test_seeded_runs_are_reproducible(self, ensemble):
        def run(seed):
            client = FaultInjectingClient(
                ensemble.connect(),
                Scenario("flaky", [rules.error_rate(0.5, faults.connection_loss)]),
                seed=seed,
            )
            outcomes = []
            for _ in range(20):
                try:
                    client.exists("/")
                    outcomes.append(True)
                except CoordinationError:
                    outcomes.append(False)
            return outcomes

        assert run(5) == run(5)


class TestQueueUnderFaults:
    def test_drains_despite_flaky_coordination(self, ensemble, fast_settings):
        """Transient errors on scans only delay work; everything is processed."""
        producer = DistributedWorkQueue(QUEUE, ensemble.connect(), settings=fast_settings)
        ids = {f"job-{i}" for i in range(10)}
        for work_id in ids:
            producer.add_work(work_id, b"")

        flaky = FaultInjectingClient(
            ensemble.connect(),
            Scenario("claims-flaky", [
                rules.fail_operations(
                    "create_ephemeral_exclusive",
                    exc_factory=faults.connection_loss,
                    limit=3,
                ),
                rules.fail_operations(
                    "exists",
                    exc_factory=faults.connection_loss,
                    limit=2,
                ),
            ]),
            seed=1,
        )
        worker = DistributedWorkQueue(QUEUE, flaky, settings=fast_settings)
        processor = RecordingProcessor()

        with WorkerPool(max_workers=3) as pool:
            worker.start_processing(processor, pool)
            try:
                producer.wait_until_done(ids, timeout=10)
            finally:
                worker.stop()

        assert sorted(set(processor.work_ids)) == sorted(ids)
        assert worker.metrics.get("scan_errors") >= 1

    def test_lingering_claim_blocks_until_session_ends(self, ensemble, fast_settings):
        """A claim marker that could not be deleted holds the item until expiry."""
        locks = join_path(QUEUE, LOCKS_NODE)
        producer = DistributedWorkQueue(QUEUE, ensemble.connect(), settings=fast_settings)
        flaky_inner = ensemble.connect()
        flaky = FaultInjectingClient(
            flaky_inner,
            Scenario("claim-delete-fails", [
                rules.fail_operations(
                    "delete_recursive",
                    exc_factory=faults.connection_loss,
                    path_prefix=locks + "/",
                ),
                rules.fail_operations(
                    "delete_recursive",
                    exc_factory=faults.connection_loss,
                    path_prefix=join_path(QUEUE, "sticky"),
                ),
            ]),
        )
        worker = DistributedWorkQueue(QUEUE, flaky, settings=fast_settings)
        processor = RecordingProcessor()
        producer.add_work("sticky", b"")

        with WorkerPool(max_workers=1) as pool:
            worker.start_processing(processor, pool)
            try:
                assert eventually(lambda: processor.work_ids == ["sticky"])
                assert eventually(lambda: worker.metrics.get("cleanup_errors") >= 2)
                # Item and marker both remain; rescans see the claim as held.
                assert eventually(lambda: worker.metrics.get("contention_skips") >= 1)
                assert processor.work_ids == ["sticky"]
            finally:
                worker.stop()

        assert producer.pending_work() == ["sticky"]
        ensemble.expire_session(flaky_inner.session_id)
        assert ensemble.connect().get_children(locks) == []
