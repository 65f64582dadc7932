from dwq.coordination.protocol import (
    CoordinationClient,
    EventType,
    NodeExistsPolicy,
    NodeMissingPolicy,
    WatchedEvent,
    Watcher,
    join_path,
)
from dwq.coordination.memory import InMemoryCoordinationClient, InMemoryEnsemble

__all__ = [
    # Protocol
    "CoordinationClient",
    "EventType",
    "NodeExistsPolicy",
    "NodeMissingPolicy",
    "WatchedEvent",
    "Watcher",
    "join_path",
    # In-process backend
    "InMemoryEnsemble",
    "InMemoryCoordinationClient",
]
