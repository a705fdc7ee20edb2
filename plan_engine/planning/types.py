"""Plan-side types consumed by the normalizer, resolver and materializer.

Setup JSON has been stored in several shapes over time (camelCase keys, event
date vs completion date, ISO timestamps vs day keys). ``PlanSetup.from_setup_json``
is the single place that shape is normalized.
"""

from collections.abc import Mapping
from datetime import date
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from plan_engine.constants import MAX_WEEKS_TO_EVENT, MIN_WEEKS_TO_EVENT, SOURCE_ID_PREFIX
from plan_engine.errors import ValidationError
from plan_engine.utils.timezone import to_local_day


class WeekStart(StrEnum):
    """First day of the plan week."""

    MONDAY = "monday"
    SUNDAY = "sunday"


class PlanStatus(StrEnum):
    """Plan visibility status."""

    DRAFT = "draft"
    PUBLISHED = "published"


def normalize_week_start(value: object) -> WeekStart:
    """Map a stored weekStart value to WeekStart, defaulting to Monday."""
    if isinstance(value, str) and value.strip().lower() == WeekStart.SUNDAY:
        return WeekStart.SUNDAY
    return WeekStart.MONDAY


def source_id_for(session_id: str) -> str:
    """Return the calendar idempotency key for a draft session id."""
    return f"{SOURCE_ID_PREFIX}{session_id}"


class PlanSetup(BaseModel):
    """Plan-level setup used to anchor sessions on the calendar.

    Attributes:
        week_start: First day of each plan week
        start_date: Calendar day the plan starts (preferred anchoring)
        completion_date: Event / completion day (legacy anchoring, required without start_date)
        weeks_to_event: Plan horizon in weeks (1-52)
        time_zone: Athlete IANA time zone; day boundaries are interpreted in it
        long_session_day: Day of week (0=Sunday..6=Saturday) of the long session, if any
    """

    model_config = ConfigDict(frozen=True)

    week_start: WeekStart = WeekStart.MONDAY
    start_date: date | None = None
    completion_date: date | None = None
    weeks_to_event: int = Field(default=1, ge=MIN_WEEKS_TO_EVENT, le=MAX_WEEKS_TO_EVENT)
    time_zone: str = "UTC"
    long_session_day: int | None = Field(default=None, ge=0, le=6)

    @model_validator(mode="after")
    def _require_anchor(self) -> "PlanSetup":
        if self.start_date is None and self.completion_date is None:
            raise ValueError("completion_date is required when start_date is absent")
        return self

    @classmethod
    def from_setup_json(cls, raw: Mapping[str, Any] | None, time_zone: str) -> "PlanSetup":
        """Build a PlanSetup from stored setup JSON.

        Args:
            raw: Setup JSON (camelCase keys as written by the plan builder)
            time_zone: Athlete time zone used to resolve timestamps to calendar days

        Returns:
            Validated PlanSetup

        Raises:
            ValidationError: If dates cannot be parsed or the setup is incomplete
        """
        raw = raw or {}
        try:
            start_raw = raw.get("startDate")
            completion_raw = raw.get("completionDate") or raw.get("eventDate")
            weeks_raw = raw.get("weeksToEvent")
            long_day_raw = raw.get("longSessionDay")

            return cls(
                week_start=normalize_week_start(raw.get("weekStart")),
                start_date=to_local_day(start_raw, time_zone) if start_raw else None,
                completion_date=to_local_day(completion_raw, time_zone) if completion_raw else None,
                weeks_to_event=_clamp_weeks(weeks_raw),
                time_zone=time_zone,
                long_session_day=None if long_day_raw is None else int(long_day_raw) % 7,
            )
        except PydanticValidationError as e:
            raise ValidationError(
                "Plan setup is invalid.",
                code="INVALID_PLAN_SETUP",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Plan setup dates must be YYYY-MM-DD: {e}", code="INVALID_PLAN_SETUP") from e


def _clamp_weeks(value: object) -> int:
    try:
        weeks = round(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return MIN_WEEKS_TO_EVENT
    return max(MIN_WEEKS_TO_EVENT, min(MAX_WEEKS_TO_EVENT, weeks))


class DraftSession(BaseModel):
    """A plan session addressed by week index and day of week.

    ``day_of_week`` uses the raw 0=Sunday..6=Saturday encoding.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    week_index: int = Field(ge=0)
    ordinal: int = Field(default=0, ge=0)
    day_of_week: int = Field(ge=0, le=6)
    discipline: str
    type: str = ""
    duration_minutes: int = Field(ge=0)
    locked: bool = False
    detail: dict[str, Any] | None = None
    notes: str | None = None

    @property
    def source_id(self) -> str:
        return source_id_for(self.id)


class PublishedPlan(BaseModel):
    """Desired state handed to the materializer by the plan provider."""

    plan_id: str
    athlete_id: str
    coach_id: str
    status: PlanStatus
    setup: PlanSetup
    sessions: list[DraftSession]
