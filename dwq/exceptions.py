"""
Typed exceptions for dwq.

Provides structured error handling with:
- DwqError: Base exception for all dwq errors
- DwqConfigError: Configuration and validation errors
- InvalidWorkIdError: Rejected work item ids (reserved or malformed)
- CoordinationError: Coordination-service failures (and node-level subclasses)
- PoolShutdownError: Work submitted to a pool that has been shut down
- WaitCancelledError / WaitTimeoutError: Completion waits that gave up

All exceptions include structured attributes for programmatic handling.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DwqError(Exception):
    """Base exception for all dwq errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context as key-value pairs
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class DwqConfigError(DwqError):
    """Configuration error.

    Raised when an environment variable or constructor argument has an
    unusable value.

    Examples:
        DwqConfigError("DWQ_POOL_SIZE must be an integer", details={"value": "x"})
    """

    pass


class InvalidWorkIdError(DwqError, ValueError):
    """Work id cannot be used as a registry child.

    Raised by add_work() for the reserved ``locks`` name (any case) and for
    ids that are not a single node name.

    Attributes:
        work_id: The rejected id
    """

    def __init__(
        self,
        message: str,
        *,
        work_id: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if work_id is not None:
            details["work_id"] = work_id

        self.work_id = work_id

        super().__init__(message, code=code, details=details)


class CoordinationError(DwqError):
    """Coordination-service failure.

    Raised when:
    - The service is unreachable or the connection is lost
    - The session has expired
    - A node precondition fails (see subclasses)

    Attributes:
        path: Node path the failing operation targeted, if any
    """

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if path:
            details["path"] = path

        self.path = path

        super().__init__(message, code=code, details=details)


class NodeExistsError(CoordinationError):
    """Exclusive create hit an existing node."""

    pass


class NoNodeError(CoordinationError):
    """Node (or a required parent) does not exist."""

    pass


class SessionExpiredError(CoordinationError):
    """The client's session is closed or expired; ephemeral nodes are gone."""

    pass


class PoolShutdownError(DwqError, RuntimeError):
    """Task submitted to a WorkerPool after shutdown()."""

    pass


class WaitCancelledError(DwqError):
    """wait_until_done() was cancelled before the work drained.

    Attributes:
        remaining: Work ids still present when the wait gave up
    """

    def __init__(
        self,
        message: str,
        *,
        remaining: Optional[list] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        self.remaining = sorted(remaining or [])
        details["remaining"] = self.remaining
        super().__init__(message, code=code, details=details)


class WaitTimeoutError(WaitCancelledError, TimeoutError):
    """wait_until_done() reached its deadline before the work drained."""

    pass


__all__ = [
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
