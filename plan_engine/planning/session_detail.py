"""Structured session detail: schema, total-duration check and text rendering.

Detail JSON is authored upstream (coach or plan generator) in camelCase. The
materializer only consumes it through ``SessionDetailRenderer``.
"""

import re
from enum import StrEnum
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from plan_engine.constants import DETAIL_INCREMENT_MINUTES
from plan_engine.errors import ValidationError
from plan_engine.planning.durations import round_to_increment


class BlockType(StrEnum):
    WARMUP = "warmup"
    MAIN = "main"
    COOLDOWN = "cooldown"
    DRILL = "drill"
    STRENGTH = "strength"


class _DetailModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", frozen=True)


class BlockIntensity(_DetailModel):
    rpe: float | None = Field(default=None, ge=1, le=10)
    zone: Literal["Z1", "Z2", "Z3", "Z4", "Z5"] | None = None
    notes: str | None = Field(default=None, min_length=1, max_length=200)


class DetailBlock(_DetailModel):
    block_type: BlockType
    duration_minutes: int | None = Field(default=None, ge=0, le=10_000)
    distance_meters: int | None = Field(default=None, ge=0, le=1_000_000)
    intensity: BlockIntensity | None = None
    steps: str = Field(min_length=1, max_length=1_000)


class DetailTargets(_DetailModel):
    primary_metric: Literal["RPE", "ZONE"]
    notes: str = Field(min_length=1, max_length=500)


class DetailExplainability(_DetailModel):
    why_this: str = Field(min_length=1, max_length=400)
    why_today: str = Field(min_length=1, max_length=400)
    unlocks_next: str = Field(min_length=1, max_length=400)
    if_missed: str = Field(min_length=1, max_length=400)
    if_cooked: str = Field(min_length=1, max_length=400)


class DetailVariant(_DetailModel):
    label: Literal[
        "short-on-time",
        "standard",
        "longer-window",
        "trainer",
        "road",
        "heat-adjusted",
        "hills-adjusted",
        "fatigue-adjusted",
    ]
    when_to_use: str = Field(min_length=1, max_length=260)
    duration_minutes: int = Field(ge=5, le=10_000)
    adjustments: list[str] = Field(min_length=1, max_length=5)


class SessionDetail(_DetailModel):
    """Version 1 structured session detail."""

    objective: str = Field(min_length=1, max_length=240)
    purpose: str | None = Field(default=None, min_length=1, max_length=240)
    structure: list[DetailBlock] = Field(min_length=1, max_length=20)
    targets: DetailTargets
    cues: list[str] | None = Field(default=None, max_length=3)
    safety_notes: str | None = Field(default=None, min_length=1, max_length=800)
    explainability: DetailExplainability | None = None
    variants: list[DetailVariant] | None = Field(default=None, max_length=8)
    recipe_v2: dict[str, Any] | None = Field(default=None, alias="recipeV2")

    @model_validator(mode="after")
    def _check_block_order(self) -> "SessionDetail":
        kinds = [b.block_type for b in self.structure]
        if kinds.count(BlockType.WARMUP) > 1:
            raise ValueError("Only one warmup block is allowed.")
        if kinds.count(BlockType.COOLDOWN) > 1:
            raise ValueError("Only one cooldown block is allowed.")

        main_idx = next((i for i, k in enumerate(kinds) if k in (BlockType.MAIN, BlockType.STRENGTH)), None)
        if main_idx is None:
            raise ValueError("Session structure must include at least one main or strength block.")
        if BlockType.WARMUP in kinds and kinds.index(BlockType.WARMUP) > main_idx:
            raise ValueError("Warmup must appear before main work.")
        if BlockType.COOLDOWN in kinds:
            cooldown_idx = kinds.index(BlockType.COOLDOWN)
            if cooldown_idx < main_idx:
                raise ValueError("Cooldown must appear after main work.")
            if any(k != BlockType.COOLDOWN for k in kinds[cooldown_idx + 1 :]):
                raise ValueError("No work blocks are allowed after cooldown.")

        if self.targets.primary_metric == "RPE" and not any(b.intensity and b.intensity.rpe is not None for b in self.structure):
            raise ValueError("RPE primary metric requires at least one block with RPE.")
        if self.targets.primary_metric == "ZONE" and not any(b.intensity and b.intensity.zone for b in self.structure):
            raise ValueError("ZONE primary metric requires at least one block with zone.")
        return self


def parse_session_detail(raw: Any) -> SessionDetail:
    """Validate raw detail JSON.

    Raises:
        ValidationError: If the detail is missing or does not match the schema
    """
    if raw is None:
        raise ValidationError("Session detail is required.", code="INVALID_SESSION_DETAIL")
    try:
        return SessionDetail.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            "Session detail does not match the expected structure.",
            code="INVALID_SESSION_DETAIL",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def assert_detail_matches_total(
    detail: SessionDetail,
    total_minutes: int,
    increment_minutes: int = DETAIL_INCREMENT_MINUTES,
) -> None:
    """Check block durations sum to the session total in whole increments.

    Raises:
        ValidationError: If totals or increments do not line up
    """
    inc = max(1, increment_minutes)
    total = max(0, total_minutes)
    if total % inc:
        raise ValidationError(f"Total duration must be in {inc}-minute increments.", code="INVALID_SESSION_DETAIL")

    durations = [b.duration_minutes or 0 for b in detail.structure]
    if sum(durations) != total:
        raise ValidationError(
            f"Block durations must sum to {total} minutes (got {sum(durations)}).",
            code="INVALID_SESSION_DETAIL",
        )
    if any(d % inc for d in durations):
        raise ValidationError(f"Block durations must be in {inc}-minute increments.", code="INVALID_SESSION_DETAIL")


_DURATION_TOKEN_RE = re.compile(r"\(\s*\d+\s*min(?:s|utes)?\s*\)\.?|\b\d+\s*min(?:s|utes)?\b", re.IGNORECASE)
_OBJECTIVE_SUFFIX_RE = re.compile(r"\(\s*\d+\s*min\s*\)\.?\s*$", re.IGNORECASE)
_SPACES_RE = re.compile(r"\s+")


def strip_duration_tokens(text: str) -> str:
    return _SPACES_RE.sub(" ", _DURATION_TOKEN_RE.sub("", text)).strip()


def title_from_objective(objective: str) -> str:
    """Objective text without a trailing "(NN min)" suffix."""
    return _SPACES_RE.sub(" ", _OBJECTIVE_SUFFIX_RE.sub("", (objective or "").strip())).strip()


_OBJECTIVE_DURATION_RE = re.compile(r"\(\s*\d+\s*min\s*\)\.?", re.IGNORECASE)

# Guardrails applied when block minutes are fitted to a session total
_WARMUP_RANGE = (5, 20)
_COOLDOWN_RANGE = (5, 15)
_MIN_MAIN_MINUTES = 10
_SHORT_SESSION_MINUTES = 30


def _block_indexes(structure: list[DetailBlock]) -> tuple[int, int, int]:
    """First warmup, last cooldown and main block positions (-1 when absent)."""
    kinds = [b.block_type for b in structure]
    warmup = kinds.index(BlockType.WARMUP) if BlockType.WARMUP in kinds else -1
    cooldown = len(kinds) - 1 - kinds[::-1].index(BlockType.COOLDOWN) if BlockType.COOLDOWN in kinds else -1
    main = next((i for i, k in enumerate(kinds) if k == BlockType.MAIN), -1)
    if main < 0:
        main = next((i for i, k in enumerate(kinds) if k == BlockType.STRENGTH), -1)
    if main < 0:
        main = next((i for i, k in enumerate(kinds) if k not in (BlockType.WARMUP, BlockType.COOLDOWN)), 0)
    return warmup, cooldown, main


def _with_minutes(detail: SessionDetail, minutes: list[int]) -> SessionDetail:
    objective = _SPACES_RE.sub(" ", _OBJECTIVE_DURATION_RE.sub("", detail.objective)).strip() or "Session"
    structure = [
        block.model_copy(update={"duration_minutes": m if m > 0 else None})
        for block, m in zip(detail.structure, minutes, strict=True)
    ]
    return detail.model_copy(update={"objective": objective, "structure": structure})


def fit_detail_to_total(
    detail: SessionDetail,
    total_minutes: int,
    increment_minutes: int = DETAIL_INCREMENT_MINUTES,
) -> SessionDetail:
    """Round block minutes to whole increments and rebalance them onto a total.

    Main work absorbs the difference first; warmup and cooldown stay within their
    guardrails. Sessions under 30 minutes get a 5-minute warmup and cooldown with
    the rest in main work. A "(NN min)" suffix is dropped from the objective since
    the duration is no longer fixed.
    """
    inc = max(1, increment_minutes)
    total = max(0, min(10_000, total_minutes))
    warmup, cooldown, main = _block_indexes(detail.structure)
    minutes = [block.duration_minutes or 0 for block in detail.structure]

    if 0 < total < _SHORT_SESSION_MINUTES:
        fixed = 0
        for i in range(len(minutes)):
            if i in (warmup, cooldown):
                minutes[i] = inc
                fixed += inc
            elif i != main:
                minutes[i] = 0
        minutes[main] = max(0, total - fixed)
        return _with_minutes(detail, minutes)

    for i, m in enumerate(minutes):
        if m <= 0:
            continue
        rounded = max(inc, round_to_increment(m, inc))
        if i == warmup:
            rounded = min(max(rounded, _WARMUP_RANGE[0]), _WARMUP_RANGE[1])
        elif i == cooldown:
            rounded = min(max(rounded, _COOLDOWN_RANGE[0]), _COOLDOWN_RANGE[1])
        elif i == main:
            rounded = max(_MIN_MAIN_MINUTES, rounded)
        minutes[i] = rounded

    if warmup >= 0 and minutes[warmup] <= 0:
        minutes[warmup] = 10
    if cooldown >= 0 and minutes[cooldown] <= 0:
        minutes[cooldown] = 5
    if minutes[main] <= 0:
        minutes[main] = max(_MIN_MAIN_MINUTES, total - 15)

    def can_add(i: int) -> bool:
        if i < 0:
            return False
        if i == warmup:
            return minutes[i] < _WARMUP_RANGE[1]
        if i == cooldown:
            return minutes[i] < _COOLDOWN_RANGE[1]
        return True

    def can_take(i: int) -> bool:
        if i < 0:
            return False
        if i == warmup:
            return minutes[i] > _WARMUP_RANGE[0]
        if i == cooldown:
            return minutes[i] > _COOLDOWN_RANGE[0]
        if i == main:
            return minutes[i] > _MIN_MAIN_MINUTES
        return minutes[i] > inc

    delta = total - sum(minutes)
    while delta >= inc:
        target = next((i for i in (main, warmup, cooldown) if can_add(i)), -1)
        if target < 0:
            break
        minutes[target] += inc
        delta -= inc

    others = [i for i in range(len(minutes)) if i not in (main, warmup, cooldown)]
    while delta <= -inc:
        target = next((i for i in (main, warmup, cooldown, *others) if can_take(i)), -1)
        if target < 0:
            break
        minutes[target] = max(0, minutes[target] - inc)
        delta += inc

    # Whatever is left (a total off the increment grid) lands on main work
    if delta:
        minutes[main] = max(0, minutes[main] + delta)

    return _with_minutes(detail, minutes)


def reflow_session_detail(detail: SessionDetail, new_total_minutes: int) -> SessionDetail:
    """Move block minutes onto a new session total.

    Added time goes to main work. Removed time comes from main work (down to 10
    minutes), then warmup and cooldown (down to 5), then any other block. The
    result is then fitted to the total in whole increments.
    """
    total = max(0, min(10_000, new_total_minutes))
    warmup, cooldown, main = _block_indexes(detail.structure)
    minutes = [block.duration_minutes or 0 for block in detail.structure]
    delta = total - sum(minutes)

    if delta and not 0 < total < _SHORT_SESSION_MINUTES:
        if delta > 0:
            minutes[main] += delta
        else:
            remaining = -delta
            floors = [(main, _MIN_MAIN_MINUTES), (warmup, _WARMUP_RANGE[0]), (cooldown, _COOLDOWN_RANGE[0])]
            floors += [(i, 0) for i in range(len(minutes)) if i not in (main, warmup, cooldown)]
            for i, floor in floors:
                if i < 0 or remaining <= 0:
                    continue
                take = min(max(0, minutes[i] - floor), remaining)
                minutes[i] -= take
                remaining -= take
        detail = detail.model_copy(
            update={
                "structure": [
                    block.model_copy(update={"duration_minutes": m})
                    for block, m in zip(detail.structure, minutes, strict=True)
                ]
            }
        )

    return fit_detail_to_total(detail, total)


def render_workout_detail(detail: SessionDetail) -> str:
    """Render detail as the multi-line workout text shown on the calendar."""
    lines: list[str] = []
    objective = strip_duration_tokens(detail.objective)
    if objective:
        lines.append(objective)
    if detail.purpose and detail.purpose.strip():
        lines.append(detail.purpose.strip())

    block_lines = [
        f"{block.block_type.value.upper()}: {block.duration_minutes or 0} min - {block.steps.strip()}"
        for block in detail.structure
        if block.steps.strip()
    ]
    if block_lines:
        if lines:
            lines.append("")
        lines.extend(block_lines)

    why = detail.explainability
    if why:
        if lines:
            lines.append("")
        lines.append(f"WHY THIS: {why.why_this.strip()}")
        lines.append(f"WHY TODAY: {why.why_today.strip()}")
        lines.append(f"IF MISSED: {why.if_missed.strip()}")
        lines.append(f"IF COOKED: {why.if_cooked.strip()}")

    return "\n".join(lines).strip()


class DetailRenderer(Protocol):
    """Validator/renderer consumed by the materializer."""

    def validate(self, raw: Any, total_minutes: int) -> SessionDetail: ...

    def render(self, detail: SessionDetail) -> str: ...


class SessionDetailRenderer:
    """Default DetailRenderer backed by the version 1 schema."""

    def validate(self, raw: Any, total_minutes: int) -> SessionDetail:
        detail = parse_session_detail(raw)
        assert_detail_matches_total(detail, total_minutes)
        return detail

    def render(self, detail: SessionDetail) -> str:
        return render_workout_detail(detail)
