"""Typed retry policy for storage operations.

Only faults classified as transient are eligible, and only when the policy
lists their kind. Everything else propagates on the first attempt.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TypeVar

from loguru import logger
from sqlalchemy.exc import DBAPIError, IntegrityError, ResourceClosedError

from plan_engine.errors import TransientStorageError

T = TypeVar("T")


class StorageFaultKind(StrEnum):
    """Classified transient storage faults."""

    TRANSACTION_CLOSED = "transaction_closed"
    CONNECTION_LOST = "connection_lost"
    DEADLOCK = "deadlock"
    SERIALIZATION_FAILURE = "serialization_failure"
    LOCK_TIMEOUT = "lock_timeout"
    CONCURRENT_INSERT = "concurrent_insert"


_MESSAGE_KINDS: tuple[tuple[str, StorageFaultKind], ...] = (
    ("deadlock detected", StorageFaultKind.DEADLOCK),
    ("could not serialize access", StorageFaultKind.SERIALIZATION_FAILURE),
    ("database is locked", StorageFaultKind.LOCK_TIMEOUT),
    ("lock timeout", StorageFaultKind.LOCK_TIMEOUT),
    ("server closed the connection", StorageFaultKind.CONNECTION_LOST),
    ("connection reset", StorageFaultKind.CONNECTION_LOST),
)


def classify_storage_error(error: BaseException) -> StorageFaultKind | None:
    """Map a SQLAlchemy error to a transient fault kind.

    Args:
        error: Exception raised by the storage layer

    Returns:
        Fault kind, or None if the error is not transient
    """
    if isinstance(error, TransientStorageError):
        return error.kind
    if isinstance(error, ResourceClosedError):
        return StorageFaultKind.TRANSACTION_CLOSED
    if isinstance(error, IntegrityError):
        message = str(error.orig).lower()
        if "unique" in message or "duplicate" in message:
            return StorageFaultKind.CONCURRENT_INSERT
        return None
    if isinstance(error, DBAPIError):
        if error.connection_invalidated:
            return StorageFaultKind.CONNECTION_LOST
        message = str(error.orig).lower()
        for needle, kind in _MESSAGE_KINDS:
            if needle in message:
                return kind
    return None


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-attempt, fixed-backoff retry policy.

    Attributes:
        retryable: Fault kinds that may be retried
        max_attempts: Total attempts including the first
        backoff_seconds: Fixed delay between attempts
    """

    retryable: frozenset[StorageFaultKind] = field(default_factory=frozenset)
    max_attempts: int = 2
    backoff_seconds: float = 0.15

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """Return True if ``error`` raised on ``attempt`` (1-based) may be retried."""
        if attempt >= self.max_attempts:
            return False
        return isinstance(error, TransientStorageError) and error.kind in self.retryable


def as_transient(error: BaseException) -> BaseException:
    """Wrap a classifiable storage error in TransientStorageError, else return it unchanged."""
    if isinstance(error, TransientStorageError):
        return error
    kind = classify_storage_error(error)
    if kind is None:
        return error
    transient = TransientStorageError(f"Transient storage fault: {type(error).__name__}", kind=kind)
    transient.__cause__ = error
    return transient


def run_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    *,
    label: str = "storage operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation``, retrying whole-operation on policy-approved faults.

    Args:
        operation: Callable performing the complete unit of work
        policy: Retry policy
        label: Name used in log messages
        sleep: Sleep function (injectable for tests)

    Returns:
        The operation's result

    Raises:
        TransientStorageError: When a transient fault persists past the last attempt
        Exception: Any non-transient error, unchanged, on first occurrence
    """
    attempt = 1
    while True:
        try:
            return operation()
        except Exception as e:
            error = as_transient(e)
            if not policy.should_retry(error, attempt):
                if error is e:
                    raise
                raise error from e
            logger.warning(
                f"{label} hit a transient storage fault, retrying",
                fault_kind=str(error.kind),  # type: ignore[attr-defined]
                attempt=attempt,
                max_attempts=policy.max_attempts,
                backoff_seconds=policy.backoff_seconds,
            )
            sleep(policy.backoff_seconds)
            attempt += 1
