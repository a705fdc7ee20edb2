"""Plan materialization (idempotent, edit-safe, retryable).

Converts a published plan's sessions into dated calendar entries and keeps them
in sync on every republish:
- One entry per (athlete, origin, source_id), created or updated in place
- Manually edited entries keep their content; they are only restored
- Entries whose session left the plan are soft-deleted, never removed
- The whole run is retried once on a transient storage fault

Re-running on an unchanged plan writes nothing.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session

from plan_engine.calendar.store import SqlCalendarStore
from plan_engine.config.settings import settings
from plan_engine.constants import CALENDAR_ORIGIN, ENTRY_STATUS_PLANNED, SOURCE_ID_PREFIX
from plan_engine.db.models import EntryEditState
from plan_engine.db.session import get_session
from plan_engine.errors import PlanEngineError, ValidationError
from plan_engine.persistence.retry import RetryPolicy, StorageFaultKind, run_with_retry
from plan_engine.planning.dates import effective_weeks_to_event, resolve_session_date
from plan_engine.planning.session_detail import DetailRenderer, SessionDetail, SessionDetailRenderer, title_from_objective
from plan_engine.planning.types import DraftSession, PlanSetup, PlanStatus, PublishedPlan
from plan_engine.plans.provider import load_plan

_DISCIPLINE_MAP: dict[str, str] = {
    "run": "RUN",
    "bike": "BIKE",
    "ride": "BIKE",
    "cycle": "BIKE",
    "swim": "SWIM",
    "brick": "BRICK",
    "strength": "OTHER",
    "rest": "REST",
}

# Invalid sessions reported back in ValidationError details
_INVALID_SAMPLE_SIZE = 12


@dataclass(frozen=True)
class MaterializeResult:
    """Result of a materialization run.

    Attributes:
        plan_id: Plan that was materialized
        upserted_count: Sessions written (created, updated or restored)
        soft_deleted_count: Entries soft-deleted because their session left the plan
    """

    plan_id: str
    upserted_count: int
    soft_deleted_count: int


@dataclass(frozen=True)
class _PreparedSession:
    session: DraftSession
    detail: SessionDetail
    workout_detail: str


def materialize_retry_policy() -> RetryPolicy:
    """Retry policy for materialization: one retry on a small set of transient faults."""
    return RetryPolicy(
        retryable=frozenset(
            {
                StorageFaultKind.TRANSACTION_CLOSED,
                StorageFaultKind.CONNECTION_LOST,
                StorageFaultKind.CONCURRENT_INSERT,
            }
        ),
        max_attempts=settings.materialize_retry_attempts,
        backoff_seconds=settings.materialize_retry_backoff_ms / 1000,
    )


def to_calendar_discipline(raw: str) -> str:
    """Map a plan discipline to the calendar discipline vocabulary."""
    value = (raw or "").strip().lower()
    if value in _DISCIPLINE_MAP:
        return _DISCIPLINE_MAP[value]
    return value.upper() if value else "OTHER"


def build_entry_title(session: DraftSession, detail: SessionDetail) -> str:
    """Session type, else the objective without its duration suffix, else "<DISCIPLINE> Session"."""
    session_type = session.type.strip()
    if session_type:
        return session_type
    from_objective = title_from_objective(detail.objective)
    if from_objective:
        return from_objective
    return f"{to_calendar_discipline(session.discipline)} Session"


def _prepare_sessions(plan: PublishedPlan, renderer: DetailRenderer) -> list[_PreparedSession]:
    """Validate every session's detail before anything is written.

    Raises:
        ValidationError: If any session fails; details list a sample of the failures
    """
    prepared: list[_PreparedSession] = []
    invalid: list[dict[str, Any]] = []

    for session in plan.sessions:
        try:
            detail = renderer.validate(session.detail, session.duration_minutes)
        except PlanEngineError as e:
            invalid.append(
                {
                    "session_id": session.id,
                    "week_index": session.week_index,
                    "day_of_week": session.day_of_week,
                    "error": e.message,
                }
            )
            continue
        prepared.append(_PreparedSession(session=session, detail=detail, workout_detail=renderer.render(detail)))

    if invalid:
        raise ValidationError(
            "Every session needs a valid detail matching its duration before it can be materialized.",
            code="INVALID_SESSION_DETAIL",
            details={
                "total_sessions": len(plan.sessions),
                "invalid_count": len(invalid),
                "sample": invalid[:_INVALID_SAMPLE_SIZE],
            },
        )
    return prepared


def _entry_content(prepared: _PreparedSession) -> dict[str, Any]:
    session = prepared.session
    return {
        "discipline": to_calendar_discipline(session.discipline),
        "subtype": session.type.strip() or None,
        "title": build_entry_title(session, prepared.detail),
        "duration_minutes": max(0, session.duration_minutes),
        "notes": session.notes,
        "workout_detail": prepared.workout_detail,
        "workout_structure": prepared.detail.model_dump(mode="json", by_alias=True, exclude_none=True),
    }


def _anchoring_setup(plan: PublishedPlan) -> PlanSetup:
    """Setup used for date resolution.

    Legacy completion-date anchoring counts weeks back from the event, so the
    horizon is widened to cover every session's week.
    """
    if plan.setup.start_date is not None:
        return plan.setup
    return plan.setup.model_copy(update={"weeks_to_event": effective_weeks_to_event(plan.setup, plan.sessions)})


def _materialize_once(
    db: Session,
    plan_id: str,
    *,
    athlete_id: str | None,
    coach_id: str | None,
    actor: str | None,
    now: datetime | None,
    renderer: DetailRenderer,
) -> MaterializeResult:
    plan = load_plan(db, plan_id, athlete_id=athlete_id, coach_id=coach_id, require_status=PlanStatus.PUBLISHED)
    prepared_sessions = _prepare_sessions(plan, renderer)
    setup = _anchoring_setup(plan)

    store = SqlCalendarStore(db)
    desired_source_ids = [p.session.source_id for p in prepared_sessions]
    existing_by_source_id = store.find_by_source_ids(plan.athlete_id, CALENDAR_ORIGIN, desired_source_ids)

    upserted_count = 0
    restored_manual_count = 0
    for prepared in prepared_sessions:
        session = prepared.session
        existing = existing_by_source_id.get(session.source_id)
        session_date = resolve_session_date(setup, session.week_index, session.day_of_week)

        restore_only: dict[str, Any] = {"deleted_at": None, "deleted_by": None}
        content = _entry_content(prepared)

        if existing is not None and existing.is_manually_edited:
            update_fields = restore_only
            if existing.is_deleted:
                restored_manual_count += 1
        else:
            update_fields = {**restore_only, **content}
            if existing is None or existing.is_date_movable:
                update_fields["date"] = session_date

        store.upsert_by_key(
            plan.athlete_id,
            CALENDAR_ORIGIN,
            session.source_id,
            create_fields={
                **content,
                "coach_id": plan.coach_id,
                "date": session_date,
                "planned_start_time_local": None,
                "status": ENTRY_STATUS_PLANNED,
                "edit_state": EntryEditState.GENERATED,
            },
            update_fields=update_fields,
            preloaded=existing_by_source_id,
        )
        upserted_count += 1

    # Stale entries span every plan of the athlete: publishing a plan retires
    # calendar entries left by any other plan materialized for them.
    desired = set(desired_source_ids)
    stale = [
        entry
        for entry in store.find_active_by_origin(plan.athlete_id, CALENDAR_ORIGIN, SOURCE_ID_PREFIX)
        if entry.source_id not in desired
    ]
    deleted_at = now or datetime.now(timezone.utc)
    deleted_by = actor or plan.coach_id
    soft_deleted_count = sum(1 for entry in stale if store.soft_delete_by_id(entry.id, deleted_by, deleted_at))
    db.flush()

    logger.info(
        "Plan materialized to calendar",
        plan_id=plan.plan_id,
        athlete_id=plan.athlete_id,
        time_zone=plan.setup.time_zone,
        weeks_to_event_configured=plan.setup.weeks_to_event,
        weeks_to_event_effective=setup.weeks_to_event,
        upserted_count=upserted_count,
        restored_manual_count=restored_manual_count,
        soft_deleted_count=soft_deleted_count,
    )
    return MaterializeResult(plan_id=plan.plan_id, upserted_count=upserted_count, soft_deleted_count=soft_deleted_count)


def materialize(
    plan_id: str,
    *,
    athlete_id: str | None = None,
    coach_id: str | None = None,
    actor: str | None = None,
    now: datetime | None = None,
    renderer: DetailRenderer | None = None,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> MaterializeResult:
    """Materialize a published plan into calendar entries.

    Each attempt runs in its own database session and commits on success. A
    timed-out or failed attempt can be re-run from scratch.

    Args:
        plan_id: Plan to materialize
        athlete_id: Optional owning athlete to enforce
        coach_id: Optional owning coach to enforce
        actor: User recorded on soft-deletes (defaults to the plan's coach)
        now: Soft-delete timestamp (defaults to current UTC time)
        renderer: Session detail validator/renderer
        policy: Retry policy (defaults to one retry on transient faults)
        sleep: Sleep function used between attempts

    Returns:
        MaterializeResult with upserted and soft-deleted counts

    Raises:
        NotFoundError: Plan missing or not owned by the caller
        ConflictError: Plan not published
        ValidationError: Setup or any session detail invalid (nothing written)
        TransientStorageError: Transient fault persisted past the retry
    """
    detail_renderer = renderer or SessionDetailRenderer()
    logger.info("Materializing plan to calendar", plan_id=plan_id, actor=actor)

    def _attempt() -> MaterializeResult:
        with get_session() as db:
            return _materialize_once(
                db,
                plan_id,
                athlete_id=athlete_id,
                coach_id=coach_id,
                actor=actor,
                now=now,
                renderer=detail_renderer,
            )

    return run_with_retry(_attempt, policy or materialize_retry_policy(), label="Plan materialization", sleep=sleep)
