"""
dwq - Distributed work queue on a coordination service.

Producer:
    from dwq import DistributedWorkQueue
    from dwq.coordination.zookeeper import ZooKeeperClient

    queue = DistributedWorkQueue("/dwq/import", ZooKeeperClient.connect("zk:2181"))
    queue.add_work("file-0001", b"payload")
    queue.wait_until_done({"file-0001"}, timeout=600)

Worker:
    from dwq import CallableProcessor, WorkerPool

    pool = WorkerPool(max_workers=4)
    queue.start_processing(CallableProcessor(handle), pool)

In-process fleet (tests, demos):
    from dwq import InMemoryEnsemble

    ensemble = InMemoryEnsemble()
    producer = DistributedWorkQueue("/dwq/import", ensemble.connect())
    worker = DistributedWorkQueue("/dwq/import", ensemble.connect())

Advanced usage via submodules:
    from dwq.claim import ClaimScanner
    from dwq.triggers import ChildWatch, PeriodicScan
    from dwq.stress import FaultInjectingClient, Scenario, rules, faults
"""

# =============================================================================
# Core API
# =============================================================================
from dwq.queue import DistributedWorkQueue  # noqa: F401
from dwq.pool import InFlightCounter, WorkerPool  # noqa: F401
from dwq.processor import CallableProcessor, Processor  # noqa: F401
from dwq.models import LOCKS_NODE, ClaimedWork, WorkItem  # noqa: F401

# =============================================================================
# Coordination backends
# =============================================================================
from dwq.coordination import (  # noqa: F401
    CoordinationClient,
    InMemoryCoordinationClient,
    InMemoryEnsemble,
)

# =============================================================================
# Configuration and observability
# =============================================================================
from dwq.config import Settings, get_settings  # noqa: F401
from dwq.metrics import QueueMetrics  # noqa: F401

# =============================================================================
# Exceptions
# =============================================================================
from dwq.exceptions import (  # noqa: F401
    DwqError,
    DwqConfigError,
    InvalidWorkIdError,
    CoordinationError,
    NodeExistsError,
    NoNodeError,
    SessionExpiredError,
    PoolShutdownError,
    WaitCancelledError,
    WaitTimeoutError,
)

__all__ = [
    "DistributedWorkQueue",
    "WorkerPool",
    "InFlightCounter",
    "Processor",
    "CallableProcessor",
    "LOCKS_NODE",
    "WorkItem",
    "ClaimedWork",
    "CoordinationClient",
    "InMemoryEnsemble",
    "InMemoryCoordinationClient",
    "Settings",
    "get_settings",
    "QueueMetrics",
    "DwqError",
    "DwqConfigError",
    "InvalidWorkIdError",
    "CoordinationError",
    "NodeExistsError",
    "NoNodeError",
    "SessionExpiredError",
    "PoolShutdownError",
    "WaitCancelledError",
    "WaitTimeoutError",
]
