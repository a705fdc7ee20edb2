"""Root conftest for all tests.

This file makes shared fixtures available across all test modules.
"""

import os
import uuid
from collections.abc import Callable
from contextlib import contextmanager
from typing import Any

# Settings are read at import time; keep tests off the local SQLite file.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker


# Enable foreign key constraints for SQLite
@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key constraints in SQLite connections."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Modules that import get_session directly and must see the test session
_GET_SESSION_MODULES = (
    "plan_engine.db.session",
    "plan_engine.calendar.materializer",
    "plan_engine.plans.editing",
    "plan_engine.plans.publish",
)


@pytest.fixture(scope="function")
def db_session(monkeypatch):
    """
    Provides a transactional in-memory SQLite DB session for tests.

    This fixture:
    - Creates an isolated in-memory SQLite database per test
    - Patches the engine getter to use it
    - Patches get_session() everywhere it is imported to yield the test session
    - Rolls the outer transaction back afterwards (no DELETE statements)
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
    )

    def mock_get_engine():
        return engine

    monkeypatch.setattr("plan_engine.db.session._get_engine", mock_get_engine)
    monkeypatch.setattr("plan_engine.db.session.get_engine", mock_get_engine)

    from plan_engine.db.models import Base

    Base.metadata.create_all(engine)

    connection = engine.connect()
    transaction = connection.begin()

    test_session_local = sessionmaker(bind=connection, autocommit=False, autoflush=False)
    session = test_session_local()

    @contextmanager
    def mock_get_session():
        yield session

    # Patch where it's imported/used, not just where it's defined
    for module_name in _GET_SESSION_MODULES:
        monkeypatch.setattr(f"{module_name}.get_session", mock_get_session)

    try:
        yield session
    finally:
        session.rollback()
        if transaction.is_active:
            transaction.rollback()
        session.close()
        connection.close()
        engine.dispose()


def build_detail(total_minutes: int, objective: str = "Steady aerobic run (45 min)") -> dict[str, Any]:
    """Valid camelCase session detail whose blocks sum to total_minutes."""
    if total_minutes >= 30:
        structure = [
            {"blockType": "warmup", "durationMinutes": 10, "steps": "Easy jog, build to steady."},
            {
                "blockType": "main",
                "durationMinutes": total_minutes - 20,
                "intensity": {"rpe": 5, "zone": "Z2"},
                "steps": "Hold steady effort.",
            },
            {"blockType": "cooldown", "durationMinutes": 10, "steps": "Easy jog."},
        ]
    else:
        structure = [
            {
                "blockType": "main",
                "durationMinutes": total_minutes,
                "intensity": {"rpe": 3},
                "steps": "Relaxed and easy.",
            }
        ]
    return {
        "objective": objective,
        "structure": structure,
        "targets": {"primaryMetric": "RPE", "notes": "Conversational effort throughout."},
    }


@pytest.fixture
def make_detail() -> Callable[..., dict[str, Any]]:
    """Factory for valid session detail JSON."""
    return build_detail


@pytest.fixture
def coach_id() -> str:
    return "coach-1"


@pytest.fixture
def make_plan(db_session, coach_id):
    """Factory creating an athlete, a plan and its sessions.

    Sessions are dicts overriding the defaults (week_index=0, day_of_week=1,
    duration_minutes=30, discipline="run", type="Easy Run"). A valid detail
    matching the duration is attached unless "detail_json" is given.

    Usage:
        plan = make_plan([{"day_of_week": 3, "duration_minutes": 45}])
    """
    from plan_engine.db.models import TrainingPlan, TrainingPlanSession, User

    def _make(
        sessions: list[dict[str, Any]],
        *,
        status: str = "published",
        setup: dict[str, Any] | None = None,
        time_zone: str = "UTC",
    ) -> TrainingPlan:
        athlete = User(id=f"athlete-{uuid.uuid4()}", timezone=time_zone)
        db_session.add(athlete)

        plan = TrainingPlan(
            athlete_id=athlete.id,
            coach_id=coach_id,
            status=status,
            setup_json=setup if setup is not None else {"weekStart": "monday", "startDate": "2026-03-02", "weeksToEvent": 4},
        )
        db_session.add(plan)
        db_session.flush()

        for ordinal, overrides in enumerate(sessions):
            values: dict[str, Any] = {
                "week_index": 0,
                "day_of_week": 1,
                "duration_minutes": 30,
                "discipline": "run",
                "type": "Easy Run",
                **overrides,
            }
            values.setdefault("detail_json", build_detail(values["duration_minutes"]))
            db_session.add(TrainingPlanSession(plan_id=plan.id, ordinal=ordinal, **values))

        db_session.flush()
        return plan

    return _make
