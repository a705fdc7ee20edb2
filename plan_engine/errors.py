"""Error taxonomy for plan materialization.

Standard error codes:
- NOT_FOUND: Plan, session or calendar entry does not exist (or is not owned by the caller)
- PLAN_NOT_PUBLISHED: Materialization requested for a plan that is still a draft
- WEEK_LOCKED: Session edit attempted inside a locked week
- SESSION_LOCKED: Content edit attempted on a locked session
- INVALID_SESSION_DETAIL: Structured session detail failed validation
- INVALID_PLAN_SETUP: Plan setup is malformed (dates, horizon)
- EMPTY_PLAN: Publish attempted on a plan without sessions
- TRANSIENT_STORAGE: Storage fault that is safe to retry
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from plan_engine.persistence.retry import StorageFaultKind


class PlanEngineError(Exception):
    """Base exception for all plan engine errors.

    Attributes:
        code: Machine-readable error code
        message: Human-readable message
        details: Extra diagnostics for callers rendering the error
    """

    default_code = "PLAN_ENGINE_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None):
        self.code = code or self.default_code
        self.message = message
        self.details = details or {}
        super().__init__(f"{self.code}: {message}")


class NotFoundError(PlanEngineError):
    """Raised when a plan, session or entry is missing."""

    default_code = "NOT_FOUND"


class ConflictError(PlanEngineError):
    """Raised when the request conflicts with plan state (unpublished, locked)."""

    default_code = "CONFLICT"


class ValidationError(PlanEngineError):
    """Raised when session detail or plan setup fails validation."""

    default_code = "VALIDATION_ERROR"


class TransientStorageError(PlanEngineError):
    """Raised for storage faults that may succeed when retried.

    Attributes:
        kind: Classified fault kind, consulted by the retry policy
    """

    default_code = "TRANSIENT_STORAGE"

    def __init__(self, message: str, *, kind: StorageFaultKind, details: dict[str, Any] | None = None):
        self.kind = kind
        super().__init__(message, details=details)
