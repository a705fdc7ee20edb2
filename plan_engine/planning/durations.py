"""Duration Normalizer.

Rounds each session of a week to a human-friendly increment (5 minutes, or 10
for long sessions) and then rebalances unlocked sessions so the week still sums
to its raw total rounded to the nearest 5 minutes.

Pure functions only. No database access.
"""

import math
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger

from plan_engine.constants import (
    DEFAULT_LONG_SESSION_THRESHOLD_MINUTES,
    LONG_INCREMENT_MINUTES,
    SHORT_INCREMENT_MINUTES,
)
from plan_engine.planning.types import DraftSession


@dataclass(frozen=True)
class DurationInput:
    """A session as seen by the normalizer."""

    duration_minutes: int
    locked: bool = False
    day_of_week: int | None = None


@dataclass(frozen=True)
class DurationRules:
    """Plan-level rounding rules.

    Attributes:
        long_session_day: Day of week (0=Sunday..6=Saturday) that always holds a long session
        long_session_threshold_minutes: Raw duration at or above which a session is long.
            Must be a multiple of 10 so normalizing a normalized week is a no-op.
    """

    long_session_day: int | None = None
    long_session_threshold_minutes: int = DEFAULT_LONG_SESSION_THRESHOLD_MINUTES

    def __post_init__(self) -> None:
        if self.long_session_threshold_minutes < 0 or self.long_session_threshold_minutes % LONG_INCREMENT_MINUTES:
            raise ValueError(
                f"long_session_threshold_minutes must be a non-negative multiple of {LONG_INCREMENT_MINUTES}, "
                f"got {self.long_session_threshold_minutes}"
            )


@dataclass(frozen=True)
class NormalizedDurations:
    """Normalizer output, index-aligned with the input sessions."""

    durations: list[int]
    long_flags: list[bool] = field(default_factory=list)
    target_total_minutes: int = 0
    final_total_minutes: int = 0

    @property
    def reached_target(self) -> bool:
        return self.final_total_minutes == self.target_total_minutes


def round_to_increment(value: int, increment: int) -> int:
    """Round to the nearest multiple of increment, ties up, never below zero."""
    inc = max(1, increment)
    quotient, remainder = divmod(value, inc)
    if 2 * remainder >= inc:
        quotient += 1
    return max(0, quotient * inc)


def _raw_minutes(value: float | int) -> int:
    return max(0, math.floor(value + 0.5))


def _is_long(session: DurationInput, raw: int, rules: DurationRules) -> bool:
    if rules.long_session_day is not None and session.day_of_week is not None:
        if session.day_of_week % 7 == rules.long_session_day % 7:
            return True
    return raw >= rules.long_session_threshold_minutes


def _pick_adjustment(
    sessions: Sequence[DurationInput],
    durations: list[int],
    long_flags: list[bool],
    gap: int,
    threshold: int,
) -> tuple[int, int] | None:
    """Choose the next (index, signed step) that shrinks the gap.

    Short sessions are preferred over long ones. A step is only taken when it
    is no larger than the gap, so every step shrinks |gap| by at least 5.
    """
    direction = 1 if gap > 0 else -1
    for want_long in (False, True):
        step = LONG_INCREMENT_MINUTES if want_long else SHORT_INCREMENT_MINUTES
        if step > abs(gap):
            continue
        for idx, session in enumerate(sessions):
            if session.locked or long_flags[idx] != want_long:
                continue
            candidate = durations[idx] + direction * step
            if candidate < 0:
                continue
            # A short session pushed over the threshold would re-round as long next time.
            if not want_long and candidate >= threshold and candidate % LONG_INCREMENT_MINUTES:
                continue
            return idx, direction * step
    return None


def normalize_durations(
    sessions: Sequence[DurationInput],
    rules: DurationRules | None = None,
) -> NormalizedDurations:
    """Round and rebalance one week of session durations.

    Args:
        sessions: Sessions of a single week
        rules: Long-session rules (defaults: no long day, 90 minute threshold)

    Returns:
        NormalizedDurations. ``final_total_minutes`` may differ from the target
        when no unlocked session can absorb the difference.
    """
    rules = rules or DurationRules()
    raw = [_raw_minutes(s.duration_minutes) for s in sessions]
    long_flags = [_is_long(s, minutes, rules) for s, minutes in zip(sessions, raw, strict=True)]
    durations = [
        round_to_increment(minutes, LONG_INCREMENT_MINUTES if is_long else SHORT_INCREMENT_MINUTES)
        for minutes, is_long in zip(raw, long_flags, strict=True)
    ]

    target_total = round_to_increment(sum(raw), SHORT_INCREMENT_MINUTES)
    gap = target_total - sum(durations)

    # Every step shrinks |gap| by >= 5, so this bound is never the reason we stop early.
    for _ in range(abs(gap) // SHORT_INCREMENT_MINUTES):
        if gap == 0:
            break
        adjustment = _pick_adjustment(sessions, durations, long_flags, gap, rules.long_session_threshold_minutes)
        if adjustment is None:
            break
        idx, step = adjustment
        durations[idx] += step
        gap -= step

    final_total = sum(durations)
    if final_total != target_total:
        logger.debug(
            "Week total left off target, no adjustable session",
            target_total=target_total,
            final_total=final_total,
            locked_count=sum(1 for s in sessions if s.locked),
        )

    return NormalizedDurations(
        durations=durations,
        long_flags=long_flags,
        target_total_minutes=target_total,
        final_total_minutes=final_total,
    )


def normalize_draft_sessions(
    sessions: Sequence[DraftSession],
    rules: DurationRules | None = None,
) -> dict[str, int]:
    """Normalize a whole plan week by week.

    Args:
        sessions: Draft sessions of a plan (any order)
        rules: Long-session rules

    Returns:
        Mapping of session id to normalized duration in minutes
    """
    by_week: dict[int, list[DraftSession]] = defaultdict(list)
    for session in sorted(sessions, key=lambda s: (s.week_index, s.ordinal)):
        by_week[session.week_index].append(session)

    result: dict[str, int] = {}
    for week_sessions in by_week.values():
        normalized = normalize_durations(
            [DurationInput(s.duration_minutes, s.locked, s.day_of_week) for s in week_sessions],
            rules,
        )
        for session, minutes in zip(week_sessions, normalized.durations, strict=True):
            result[session.id] = minutes
    return result
