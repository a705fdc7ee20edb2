"""Publish lifecycle for training plans.

Publishing snapshots the plan and records a short summary of what changed since
the previous snapshot. Republishing an unchanged plan is a no-op. Unpublishing
returns the plan to draft and soft-deletes the calendar entries it produced.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from plan_engine.calendar.store import SqlCalendarStore
from plan_engine.constants import CALENDAR_ORIGIN
from plan_engine.db.models import TrainingPlan, TrainingPlanPublishSnapshot, TrainingPlanSession
from plan_engine.db.session import get_session
from plan_engine.errors import PlanEngineError, ValidationError
from plan_engine.planning.session_detail import parse_session_detail
from plan_engine.planning.types import PlanStatus, source_id_for
from plan_engine.plans.provider import get_plan_row, get_session_rows

NO_CHANGES = "No changes"
INITIAL_PUBLISH = "Initial publish"

_MISSING_DETAIL_SAMPLE_SIZE = 12
_MAX_SUMMARY_LINES = 5


@dataclass(frozen=True)
class PublishResult:
    plan_id: str
    published: bool
    summary_text: str
    hash: str


@dataclass(frozen=True)
class UnpublishResult:
    plan_id: str
    was_published: bool
    soft_deleted_count: int


@dataclass(frozen=True)
class PublishStatus:
    plan_id: str
    status: PlanStatus
    published_at: datetime | None
    published_by: str | None
    last_published_hash: str | None
    last_published_summary: str | None


def compute_stable_hash(value: Any) -> str:
    """SHA-256 of the canonical JSON form (sorted keys, no whitespace)."""
    canonical = json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_plan_json(plan: TrainingPlan, sessions: list[TrainingPlanSession]) -> dict[str, Any]:
    """Snapshot form of a plan: setup plus sessions grouped by week."""
    weeks: dict[int, list[dict[str, Any]]] = {}
    for s in sessions:
        weeks.setdefault(s.week_index, []).append(
            {
                "ordinal": s.ordinal,
                "dayOfWeek": s.day_of_week,
                "discipline": s.discipline,
                "type": s.type,
                "durationMinutes": s.duration_minutes,
                "notes": s.notes,
                "locked": s.locked,
                "detail": s.detail_json,
            }
        )
    return {
        "setup": plan.setup_json or {},
        "weeks": [{"weekIndex": week_index, "sessions": weeks[week_index]} for week_index in sorted(weeks)],
    }


def _flatten(plan_json: dict[str, Any] | None) -> tuple[dict[str, dict[str, Any]], dict[int, int]]:
    sessions: dict[str, dict[str, Any]] = {}
    week_totals: dict[int, int] = {}
    for week in (plan_json or {}).get("weeks", []):
        week_index = int(week.get("weekIndex", 0))
        total = 0
        for s in week.get("sessions", []):
            minutes = int(s.get("durationMinutes") or 0)
            sessions[f"{week_index}:{int(s.get('ordinal', 0))}"] = {"type": str(s.get("type", "")), "duration_minutes": minutes}
            total += minutes
        week_totals[week_index] = total
    return sessions, week_totals


def _format_pct(delta: float) -> str:
    pct = round(delta * 100)
    return f"{'+' if pct >= 0 else ''}{pct}%"


def summarize_plan_changes(previous: dict[str, Any] | None, current: dict[str, Any] | None) -> str:
    """Deterministic, short summary of changes between two plan snapshots.

    Sessions are matched by (week index, ordinal). Returns "No changes" or up
    to five "- ..." lines.
    """
    prev_sessions, prev_totals = _flatten(previous)
    next_sessions, next_totals = _flatten(current)

    added = len(next_sessions.keys() - prev_sessions.keys())
    removed = len(prev_sessions.keys() - next_sessions.keys())
    duration_changes = 0
    type_changes: list[tuple[str, str]] = []
    for key in sorted(prev_sessions.keys() & next_sessions.keys(), key=lambda k: tuple(int(p) for p in k.split(":"))):
        before, after = prev_sessions[key], next_sessions[key]
        if before["duration_minutes"] != after["duration_minutes"]:
            duration_changes += 1
        if before["type"] != after["type"]:
            type_changes.append((before["type"], after["type"]))

    week_changes: list[tuple[int, float]] = []
    for week_index in sorted(prev_totals.keys() | next_totals.keys()):
        before_total = prev_totals.get(week_index, 0)
        after_total = next_totals.get(week_index, 0)
        if before_total == after_total:
            continue
        pct_delta = 1.0 if before_total == 0 else (after_total - before_total) / before_total
        week_changes.append((week_index, pct_delta))

    if not (duration_changes or type_changes or added or removed or week_changes):
        return NO_CHANGES

    lines: list[str] = []
    if duration_changes:
        lines.append(f"- {duration_changes} sessions updated (duration changes)")
    if type_changes:
        count = len(type_changes)
        before_type, after_type = type_changes[0]
        lines.append(f"- {count} session type {'change' if count == 1 else 'changes'} ({before_type} -> {after_type})")
    if added:
        lines.append(f"- {added} sessions added")
    if removed:
        lines.append(f"- {removed} sessions removed")
    if week_changes:
        week_index, pct_delta = sorted(week_changes, key=lambda w: (-abs(w[1]), w[0]))[0]
        lines.append(f"- Week {week_index + 1} total volume {_format_pct(pct_delta)}")

    return "\n".join(lines[:_MAX_SUMMARY_LINES])


def _check_publishable(sessions: list[TrainingPlanSession]) -> None:
    if not sessions:
        raise ValidationError("Cannot publish an empty plan.", code="EMPTY_PLAN")

    missing: list[dict[str, Any]] = []
    for s in sessions:
        try:
            parse_session_detail(s.detail_json)
        except PlanEngineError:
            missing.append({"session_id": s.id, "week_index": s.week_index, "day_of_week": s.day_of_week})
    if missing:
        raise ValidationError(
            "Cannot publish until every session has a valid detail.",
            code="INVALID_SESSION_DETAIL",
            details={
                "total_sessions": len(sessions),
                "invalid_count": len(missing),
                "sample": missing[:_MISSING_DETAIL_SAMPLE_SIZE],
            },
        )


def _latest_snapshot(db: Session, plan_id: str) -> TrainingPlanPublishSnapshot | None:
    return db.execute(
        select(TrainingPlanPublishSnapshot)
        .where(TrainingPlanPublishSnapshot.plan_id == plan_id)
        .order_by(TrainingPlanPublishSnapshot.published_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def publish_plan(
    plan_id: str,
    *,
    coach_id: str | None = None,
    athlete_id: str | None = None,
    now: datetime | None = None,
) -> PublishResult:
    """Publish a plan.

    Raises:
        NotFoundError: Plan missing or not owned by the caller
        ValidationError: Plan empty or a session lacks a valid detail
    """
    now = now or datetime.now(timezone.utc)
    with get_session() as db:
        plan = get_plan_row(db, plan_id, athlete_id=athlete_id, coach_id=coach_id)
        sessions = get_session_rows(db, plan_id)
        _check_publishable(sessions)

        plan_json = build_plan_json(plan, sessions)
        plan_hash = compute_stable_hash(plan_json)

        if plan.status == PlanStatus.PUBLISHED and plan.last_published_hash == plan_hash:
            plan.last_published_summary = NO_CHANGES
            logger.info("Plan republished without changes", plan_id=plan_id)
            return PublishResult(plan_id=plan_id, published=False, summary_text=NO_CHANGES, hash=plan_hash)

        previous = _latest_snapshot(db, plan_id)
        summary = summarize_plan_changes(previous.plan_json, plan_json) if previous else INITIAL_PUBLISH

        plan.status = PlanStatus.PUBLISHED
        plan.published_at = now
        plan.published_by = coach_id or plan.coach_id
        plan.last_published_hash = plan_hash
        plan.last_published_summary = summary
        db.add(
            TrainingPlanPublishSnapshot(
                plan_id=plan_id,
                hash=plan_hash,
                plan_json=plan_json,
                summary_text=summary,
                published_at=now,
                published_by=plan.published_by,
            )
        )
        db.flush()

        logger.info("Plan published", plan_id=plan_id, session_count=len(sessions), hash=plan_hash[:12])
        return PublishResult(plan_id=plan_id, published=True, summary_text=summary, hash=plan_hash)


def unpublish_plan(
    plan_id: str,
    *,
    coach_id: str | None = None,
    athlete_id: str | None = None,
    now: datetime | None = None,
) -> UnpublishResult:
    """Return a plan to draft and soft-delete its active calendar entries.

    Raises:
        NotFoundError: Plan missing or not owned by the caller
    """
    now = now or datetime.now(timezone.utc)
    with get_session() as db:
        plan = get_plan_row(db, plan_id, athlete_id=athlete_id, coach_id=coach_id)
        was_published = plan.status == PlanStatus.PUBLISHED

        store = SqlCalendarStore(db)
        source_ids = [source_id_for(s.id) for s in get_session_rows(db, plan_id)]
        entries = store.find_by_source_ids(plan.athlete_id, CALENDAR_ORIGIN, source_ids)
        actor = coach_id or plan.coach_id
        soft_deleted_count = sum(1 for entry in entries.values() if store.soft_delete_by_id(entry.id, actor, now))

        plan.status = PlanStatus.DRAFT
        plan.published_at = None
        plan.published_by = None
        db.flush()

        logger.info(
            "Plan unpublished",
            plan_id=plan_id,
            was_published=was_published,
            soft_deleted_count=soft_deleted_count,
        )
        return UnpublishResult(plan_id=plan_id, was_published=was_published, soft_deleted_count=soft_deleted_count)


def get_publish_status(plan_id: str, *, coach_id: str | None = None, athlete_id: str | None = None) -> PublishStatus:
    """Report a plan's publish state.

    Raises:
        NotFoundError: Plan missing or not owned by the caller
    """
    with get_session() as db:
        plan = get_plan_row(db, plan_id, athlete_id=athlete_id, coach_id=coach_id)
        return PublishStatus(
            plan_id=plan.id,
            status=PlanStatus(plan.status),
            published_at=plan.published_at,
            published_by=plan.published_by,
            last_published_hash=plan.last_published_hash,
            last_published_summary=plan.last_published_summary,
        )
