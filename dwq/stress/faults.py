"""
Factory functions for coordination-service failures.

These are the same exception types the real clients raise, so the queue
handles them exactly as it would a live outage.
"""

from __future__ import annotations

from dwq.exceptions import CoordinationError, SessionExpiredError


def connection_loss(message: str = "Connection to coordination service lost (mock)") -> CoordinationError:
    """A transient failure: the call did not reach the service."""
    return CoordinationError(message, code="connection_loss")


def session_expired(message: str = "Session expired (mock)") -> SessionExpiredError:
    """The session is gone along with its ephemeral claim markers."""
    return SessionExpiredError(message, code="session_expired")


def operation_timeout(message: str = "Coordination call timed out (mock)") -> CoordinationError:
    return CoordinationError(message, code="operation_timeout")
