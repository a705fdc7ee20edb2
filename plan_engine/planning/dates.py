"""Date Resolver.

Maps a session's (week_index, day_of_week) to a calendar day.

Two anchoring schemes exist:
- start-date anchoring: week 0 is the week containing ``start_date``
- legacy completion-date anchoring: the last week (``weeks_to_event - 1``) is
  the week containing ``completion_date``

``day_of_week`` uses the raw 0=Sunday..6=Saturday encoding regardless of the
plan's week-start convention. Results are calendar days, never instants.
"""

from collections.abc import Iterable
from datetime import date, timedelta

from plan_engine.planning.types import DraftSession, PlanSetup, WeekStart

_WEEK_START_DAY: dict[WeekStart, int] = {
    WeekStart.SUNDAY: 0,
    WeekStart.MONDAY: 1,
}


def raw_day_of_week(d: date) -> int:
    """Return d's day of week in the raw encoding (0=Sunday..6=Saturday)."""
    return (d.weekday() + 1) % 7


def day_offset_from_week_start(day_of_week: int, week_start: WeekStart) -> int:
    """Position (0-6) of day_of_week inside a week starting on week_start."""
    return (day_of_week % 7 - _WEEK_START_DAY[week_start]) % 7


def start_of_week(d: date, week_start: WeekStart) -> date:
    """Return the first day of the week containing d."""
    return d - timedelta(days=day_offset_from_week_start(raw_day_of_week(d), week_start))


def effective_weeks_to_event(setup: PlanSetup, sessions: Iterable[DraftSession]) -> int:
    """Plan horizon covering every session, even when weeks_to_event is stale."""
    max_week_index = max((s.week_index for s in sessions), default=-1)
    return max(setup.weeks_to_event, max_week_index + 1)


def week_boundary(setup: PlanSetup, week_index: int) -> date:
    """First calendar day of plan week ``week_index``."""
    if setup.start_date is not None:
        anchor = start_of_week(setup.start_date, setup.week_start)
        return anchor + timedelta(days=7 * week_index)

    # PlanSetup guarantees completion_date when start_date is missing.
    anchor = start_of_week(setup.completion_date, setup.week_start)  # type: ignore[arg-type]
    remaining = setup.weeks_to_event - 1 - week_index
    return anchor - timedelta(days=7 * remaining)


def resolve_session_date(setup: PlanSetup, week_index: int, day_of_week: int) -> date:
    """Resolve a session slot to its calendar day.

    Args:
        setup: Plan setup (anchoring dates, week-start convention, horizon)
        week_index: 0-based plan week
        day_of_week: 0=Sunday..6=Saturday

    Returns:
        Calendar day of the session. Increasing week_index by one always moves
        the result forward by exactly seven days.
    """
    return week_boundary(setup, week_index) + timedelta(days=day_offset_from_week_start(day_of_week, setup.week_start))
