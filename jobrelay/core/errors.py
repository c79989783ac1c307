"""Shared error codes and exceptions for the job relay.

Only validation and backpressure errors ever reach the caller of ``enqueue``;
handler failures are contained by the queue and surface through the dead
letter store instead.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    VALIDATION_FAILED = "VALIDATION_FAILED"
    QUEUE_FULL = "QUEUE_FULL"
    NOT_FOUND = "NOT_FOUND"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"  # DLQ file read/write failures
    ALERT_DELIVERY_FAILED = "ALERT_DELIVERY_FAILED"  # Webhook alert not delivered


class JobRelayError(Exception):
    """Base class for all job relay errors."""

    code: ErrorCode = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""


class JobValidationError(JobRelayError, ValueError):
    """Malformed enqueue call. Never queued, never retried."""

    code = ErrorCode.VALIDATION_FAILED


class QueueFullError(JobRelayError):
    """The pending FIFO reached its configured maximum size."""

    code = ErrorCode.QUEUE_FULL


class DeadLetterNotFoundError(JobRelayError, KeyError):
    """No dead letter entry with the requested id."""

    code = ErrorCode.NOT_FOUND

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return self.message


class PersistenceError(JobRelayError):
    """The dead letter file could not be read or written."""

    code = ErrorCode.PERSISTENCE_ERROR


class AlertDeliveryError(JobRelayError):
    """The alert webhook rejected or never received the notification."""

    code = ErrorCode.ALERT_DELIVERY_FAILED


__all__ = [
    "ErrorCode",
    "JobRelayError",
    "JobValidationError",
    "QueueFullError",
    "DeadLetterNotFoundError",
    "PersistenceError",
    "AlertDeliveryError",
]
