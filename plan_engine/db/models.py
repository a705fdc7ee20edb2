from __future__ import annotations

import uuid
from datetime import date as calendar_date
from datetime import datetime, timezone
from enum import StrEnum

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all database models."""


class EntryEditState(StrEnum):
    """Who last owns a calendar entry's content."""

    GENERATED = "generated"
    MANUALLY_EDITED = "manually_edited"


class User(Base):
    """Athletes and coaches.

    Only the fields the engine reads are modelled: the athlete time zone is the
    day boundary every materialized date is interpreted against.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    email: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    timezone: Mapped[str] = mapped_column(String, nullable=False, default="UTC")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class TrainingPlan(Base):
    """Coach-owned multi-week plan for one athlete.

    setup_json keeps the builder's camelCase setup (weekStart, startDate,
    eventDate/completionDate, weeksToEvent, longSessionDay).
    """

    __tablename__ = "training_plans"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    athlete_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    coach_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")  # draft, published
    setup_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    published_by: Mapped[str | None] = mapped_column(String, nullable=True)
    last_published_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    last_published_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class TrainingPlanWeek(Base):
    """Per-week lock state and summary of a plan."""

    __tablename__ = "training_plan_weeks"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    plan_id: Mapped[str] = mapped_column(String, ForeignKey("training_plans.id", ondelete="CASCADE"), nullable=False)
    week_index: Mapped[int] = mapped_column(Integer, nullable=False)
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sessions_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("plan_id", "week_index", name="uq_training_plan_week"),)


class TrainingPlanSession(Base):
    """A draft session addressed by week index and day of week (0=Sunday..6=Saturday)."""

    __tablename__ = "training_plan_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    plan_id: Mapped[str] = mapped_column(String, ForeignKey("training_plans.id", ondelete="CASCADE"), nullable=False)
    week_index: Mapped[int] = mapped_column(Integer, nullable=False)
    ordinal: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    discipline: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False, default="")
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    detail_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_training_plan_sessions_plan_week", "plan_id", "week_index", "ordinal"),)


class TrainingPlanPublishSnapshot(Base):
    """Immutable copy of the plan taken at each publish."""

    __tablename__ = "training_plan_publish_snapshots"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    plan_id: Mapped[str] = mapped_column(String, ForeignKey("training_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    hash: Mapped[str] = mapped_column(String, nullable=False)
    plan_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    summary_text: Mapped[str] = mapped_column(Text, nullable=False)
    published_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    published_by: Mapped[str | None] = mapped_column(String, nullable=True)


class CalendarEntry(Base):
    """A dated calendar item.

    Entries written by the materializer carry origin=CALENDAR_ORIGIN and a
    source_id derived from the draft session id. (athlete_id, origin, source_id)
    is the idempotency key: at most one row, active or soft-deleted, per key.
    """

    __tablename__ = "calendar_entries"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    athlete_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    coach_id: Mapped[str | None] = mapped_column(String, nullable=True)
    origin: Mapped[str] = mapped_column(String, nullable=False)
    source_id: Mapped[str] = mapped_column(String, nullable=False)

    date: Mapped[calendar_date] = mapped_column(Date, nullable=False)
    planned_start_time_local: Mapped[str | None] = mapped_column(String, nullable=True)  # HH:MM, None = un-timed
    status: Mapped[str] = mapped_column(String, nullable=False, default="planned")  # planned, completed, skipped

    discipline: Mapped[str] = mapped_column(String, nullable=False)
    subtype: Mapped[str | None] = mapped_column(String, nullable=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    workout_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    workout_structure: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    edit_state: Mapped[EntryEditState] = mapped_column(
        SAEnum(EntryEditState, native_enum=False, values_callable=lambda e: [m.value for m in e], length=32),
        nullable=False,
        default=EntryEditState.GENERATED,
    )

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    deleted_by: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("athlete_id", "origin", "source_id", name="uq_calendar_entry_source"),
        Index("idx_calendar_entries_athlete_date", "athlete_id", "date"),
    )

    @property
    def is_manually_edited(self) -> bool:
        """True when a coach or athlete owns this entry's content."""
        return self.edit_state == EntryEditState.MANUALLY_EDITED

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_date_movable(self) -> bool:
        """Whether re-materialization may relocate this entry.

        Soft-deleted entries and un-timed planned entries can move; once a time
        is set the entry stays on its day.
        """
        return self.is_deleted or (self.status == "planned" and self.planned_start_time_local is None)
