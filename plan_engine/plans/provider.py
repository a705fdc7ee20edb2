"""Published-plan provider.

Reads a plan, its sessions and the athlete's time zone, and returns the
desired state the materializer works from.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from plan_engine.config.settings import settings
from plan_engine.db.models import TrainingPlan, TrainingPlanSession, User
from plan_engine.errors import ConflictError, NotFoundError
from plan_engine.planning.types import DraftSession, PlanSetup, PlanStatus, PublishedPlan


def get_plan_row(db: Session, plan_id: str, *, athlete_id: str | None = None, coach_id: str | None = None) -> TrainingPlan:
    """Load a plan row, checking ownership when athlete/coach are given.

    Raises:
        NotFoundError: If the plan is missing or owned by someone else
    """
    plan = db.get(TrainingPlan, plan_id)
    if plan is None or (athlete_id and plan.athlete_id != athlete_id) or (coach_id and plan.coach_id != coach_id):
        raise NotFoundError("Training plan not found.", details={"plan_id": plan_id})
    return plan


def get_session_rows(db: Session, plan_id: str) -> list[TrainingPlanSession]:
    """Plan sessions ordered by week, then ordinal."""
    return list(
        db.execute(
            select(TrainingPlanSession)
            .where(TrainingPlanSession.plan_id == plan_id)
            .order_by(TrainingPlanSession.week_index, TrainingPlanSession.ordinal, TrainingPlanSession.id)
        ).scalars()
    )


def get_athlete_time_zone(db: Session, athlete_id: str) -> str:
    athlete = db.get(User, athlete_id)
    return (athlete.timezone if athlete else None) or settings.default_time_zone


def to_draft_session(row: TrainingPlanSession) -> DraftSession:
    return DraftSession(
        id=row.id,
        week_index=row.week_index,
        ordinal=row.ordinal,
        day_of_week=row.day_of_week % 7,
        discipline=row.discipline,
        type=row.type or "",
        duration_minutes=max(0, row.duration_minutes or 0),
        locked=row.locked,
        detail=row.detail_json,
        notes=row.notes,
    )


def load_plan(
    db: Session,
    plan_id: str,
    *,
    athlete_id: str | None = None,
    coach_id: str | None = None,
    require_status: PlanStatus | None = None,
) -> PublishedPlan:
    """Load the plan's desired state.

    Args:
        db: Database session
        plan_id: Plan identifier
        athlete_id: Optional owning athlete to enforce
        coach_id: Optional owning coach to enforce
        require_status: Status the plan must be in, checked before the setup is parsed

    Returns:
        PublishedPlan with the athlete's time zone threaded into its setup

    Raises:
        NotFoundError: If the plan is missing or not owned by the caller
        ConflictError: If the plan is not in require_status
        ValidationError: If the stored setup is malformed
    """
    plan = get_plan_row(db, plan_id, athlete_id=athlete_id, coach_id=coach_id)
    if require_status is not None and plan.status != require_status:
        raise ConflictError(
            f"Plan must be {require_status} (is {plan.status}).",
            code="PLAN_NOT_PUBLISHED" if require_status == PlanStatus.PUBLISHED else "PLAN_STATUS_CONFLICT",
            details={"plan_id": plan.id, "status": plan.status},
        )
    time_zone = get_athlete_time_zone(db, plan.athlete_id)

    return PublishedPlan(
        plan_id=plan.id,
        athlete_id=plan.athlete_id,
        coach_id=plan.coach_id,
        status=PlanStatus(plan.status),
        setup=PlanSetup.from_setup_json(plan.setup_json, time_zone),
        sessions=[to_draft_session(row) for row in get_session_rows(db, plan.id)],
    )
