"""Draft plan editing.

Week locks make every session in the week immutable (including lock toggles).
A locked session rejects content edits; the only accepted edit is unlocking it.
All checks run before anything is written.
"""

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass

from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from plan_engine.config.settings import settings
from plan_engine.db.models import TrainingPlanSession, TrainingPlanWeek
from plan_engine.db.session import get_session
from plan_engine.errors import ConflictError, NotFoundError, ValidationError
from plan_engine.planning.durations import DurationRules, normalize_draft_sessions
from plan_engine.planning.session_detail import parse_session_detail, reflow_session_detail
from plan_engine.planning.types import PlanSetup
from plan_engine.plans.provider import get_athlete_time_zone, get_plan_row, get_session_rows, to_draft_session

_CONTENT_FIELDS = ("type", "duration_minutes", "notes")


class WeekLockEdit(BaseModel):
    """Lock or unlock a plan week."""

    week_index: int = Field(ge=0)
    locked: bool


class SessionEdit(BaseModel):
    """Edit of a single draft session. Only fields that are set are applied."""

    session_id: str
    type: str | None = None
    duration_minutes: int | None = Field(default=None, ge=0, le=10_000)
    notes: str | None = None
    locked: bool | None = None

    @property
    def wants_content_change(self) -> bool:
        return any(name in self.model_fields_set for name in _CONTENT_FIELDS)


@dataclass(frozen=True)
class WeekSummary:
    week_index: int
    locked: bool
    sessions_count: int
    total_minutes: int


def _week_rows(db: Session, plan_id: str) -> dict[int, TrainingPlanWeek]:
    rows = db.execute(select(TrainingPlanWeek).where(TrainingPlanWeek.plan_id == plan_id)).scalars()
    return {row.week_index: row for row in rows}


def set_session_duration(row: TrainingPlanSession, minutes: int) -> None:
    """Set a session duration and reflow its detail blocks onto the new total.

    A detail that does not parse is left as it is; publish and materialize
    report it.
    """
    if row.duration_minutes == minutes:
        return
    row.duration_minutes = minutes
    if row.detail_json is None:
        return
    try:
        detail = parse_session_detail(row.detail_json)
    except ValidationError as e:
        logger.warning("Session detail not reflowed", session_id=row.id, error=e.message)
        return
    row.detail_json = reflow_session_detail(detail, minutes).model_dump(mode="json", by_alias=True, exclude_none=True)


def refresh_week_summaries(db: Session, plan_id: str) -> list[WeekSummary]:
    """Recompute per-week session counts and minute totals.

    Creates missing week rows so every week with sessions has a summary.
    """
    db.flush()
    weeks = _week_rows(db, plan_id)
    counts: dict[int, int] = defaultdict(int)
    totals: dict[int, int] = defaultdict(int)
    for row in get_session_rows(db, plan_id):
        counts[row.week_index] += 1
        totals[row.week_index] += row.duration_minutes or 0

    for week_index in sorted(set(weeks) | set(counts)):
        week = weeks.get(week_index)
        if week is None:
            week = TrainingPlanWeek(plan_id=plan_id, week_index=week_index, locked=False)
            db.add(week)
            weeks[week_index] = week
        week.sessions_count = counts[week_index]
        week.total_minutes = totals[week_index]

    db.flush()
    return [
        WeekSummary(week_index=w.week_index, locked=w.locked, sessions_count=w.sessions_count, total_minutes=w.total_minutes)
        for w in sorted(weeks.values(), key=lambda w: w.week_index)
    ]


def update_draft_plan(
    plan_id: str,
    *,
    coach_id: str | None = None,
    athlete_id: str | None = None,
    week_locks: Sequence[WeekLockEdit] = (),
    session_edits: Sequence[SessionEdit] = (),
) -> list[WeekSummary]:
    """Apply week lock toggles and session edits to a plan.

    Args:
        plan_id: Plan to edit
        coach_id: Optional owning coach to enforce
        athlete_id: Optional owning athlete to enforce
        week_locks: Week lock changes, applied before session edits are checked
        session_edits: Session edits

    Returns:
        Week summaries after the edit

    Raises:
        NotFoundError: Plan or session missing
        ConflictError: WEEK_LOCKED or SESSION_LOCKED
    """
    with get_session() as db:
        get_plan_row(db, plan_id, athlete_id=athlete_id, coach_id=coach_id)
        weeks = _week_rows(db, plan_id)
        sessions = {row.id: row for row in get_session_rows(db, plan_id)}

        lock_state = {week_index: week.locked for week_index, week in weeks.items()}
        for edit in week_locks:
            lock_state[edit.week_index] = edit.locked

        for edit in session_edits:
            row = sessions.get(edit.session_id)
            if row is None:
                raise NotFoundError("Draft session not found.", details={"session_id": edit.session_id})
            if lock_state.get(row.week_index, False):
                raise ConflictError(
                    "Week is locked and sessions cannot be modified.",
                    code="WEEK_LOCKED",
                    details={"week_index": row.week_index},
                )
            if row.locked and edit.wants_content_change:
                raise ConflictError(
                    "Session is locked and cannot be edited.",
                    code="SESSION_LOCKED",
                    details={"session_id": row.id},
                )

        for edit in week_locks:
            week = weeks.get(edit.week_index)
            if week is None:
                week = TrainingPlanWeek(plan_id=plan_id, week_index=edit.week_index)
                db.add(week)
                weeks[edit.week_index] = week
            week.locked = edit.locked

        for edit in session_edits:
            row = sessions[edit.session_id]
            for name in edit.model_fields_set - {"session_id", "duration_minutes"}:
                setattr(row, name, getattr(edit, name))
            if "duration_minutes" in edit.model_fields_set and edit.duration_minutes is not None:
                set_session_duration(row, edit.duration_minutes)

        summaries = refresh_week_summaries(db, plan_id)
        logger.info(
            "Draft plan updated",
            plan_id=plan_id,
            week_lock_changes=len(week_locks),
            session_edits=len(session_edits),
        )
        return summaries


def normalize_plan_durations(plan_id: str, *, coach_id: str | None = None) -> dict[str, int]:
    """Round and rebalance every week of a plan and write durations back.

    Sessions in locked weeks are treated as locked for rebalancing.

    Args:
        plan_id: Plan to normalize
        coach_id: Optional owning coach to enforce

    Returns:
        Mapping of session id to new duration for sessions whose duration changed

    Raises:
        NotFoundError: Plan missing
        ValidationError: Stored setup is malformed
    """
    with get_session() as db:
        plan = get_plan_row(db, plan_id, coach_id=coach_id)
        setup = PlanSetup.from_setup_json(plan.setup_json, get_athlete_time_zone(db, plan.athlete_id))
        locked_weeks = {w.week_index for w in _week_rows(db, plan_id).values() if w.locked}

        rows = get_session_rows(db, plan_id)
        drafts = [
            to_draft_session(row).model_copy(update={"locked": row.locked or row.week_index in locked_weeks})
            for row in rows
        ]
        normalized = normalize_draft_sessions(
            drafts,
            DurationRules(
                long_session_day=setup.long_session_day,
                long_session_threshold_minutes=settings.long_session_threshold_minutes,
            ),
        )

        changed: dict[str, int] = {}
        for row in rows:
            minutes = normalized[row.id]
            if row.duration_minutes != minutes:
                set_session_duration(row, minutes)
                changed[row.id] = minutes

        refresh_week_summaries(db, plan_id)
        logger.info("Plan durations normalized", plan_id=plan_id, changed_count=len(changed))
        return changed
