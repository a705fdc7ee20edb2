"""Tests for draft plan editing and duration write-back."""

import pytest
from sqlalchemy import select

from plan_engine.calendar.materializer import materialize
from plan_engine.db.models import CalendarEntry, TrainingPlanSession, TrainingPlanWeek
from plan_engine.errors import ConflictError, NotFoundError
from plan_engine.planning.session_detail import assert_detail_matches_total, parse_session_detail
from plan_engine.plans.editing import SessionEdit, WeekLockEdit, normalize_plan_durations, update_draft_plan

MONDAY, WEDNESDAY, SATURDAY = 1, 3, 6


def _sessions(db_session, plan_id: str) -> list[TrainingPlanSession]:
    return list(
        db_session.execute(
            select(TrainingPlanSession).where(TrainingPlanSession.plan_id == plan_id).order_by(TrainingPlanSession.ordinal)
        ).scalars()
    )


def _block_minutes(row: TrainingPlanSession) -> list[int]:
    return [block["durationMinutes"] for block in row.detail_json["structure"]]


def _entry(db_session, athlete_id: str) -> CalendarEntry:
    return db_session.execute(select(CalendarEntry).where(CalendarEntry.athlete_id == athlete_id)).scalar_one()


def _week(db_session, plan_id: str, week_index: int) -> TrainingPlanWeek | None:
    return db_session.execute(
        select(TrainingPlanWeek).where(TrainingPlanWeek.plan_id == plan_id, TrainingPlanWeek.week_index == week_index)
    ).scalar_one_or_none()


@pytest.fixture
def draft_plan(make_plan):
    return make_plan(
        [
            {"week_index": 0, "day_of_week": MONDAY, "duration_minutes": 30},
            {"week_index": 0, "day_of_week": WEDNESDAY, "duration_minutes": 45},
            {"week_index": 1, "day_of_week": MONDAY, "duration_minutes": 40},
        ],
        status="draft",
    )


class TestUpdateDraftPlan:
    def test_session_edit_updates_week_summary(self, db_session, coach_id, draft_plan):
        first = _sessions(db_session, draft_plan.id)[0]

        summaries = update_draft_plan(
            draft_plan.id,
            coach_id=coach_id,
            session_edits=[SessionEdit(session_id=first.id, duration_minutes=35, notes="Flat route")],
        )

        assert first.duration_minutes == 35
        assert first.notes == "Flat route"
        assert [(s.week_index, s.sessions_count, s.total_minutes) for s in summaries] == [(0, 2, 80), (1, 1, 40)]

    def test_duration_edit_reflows_detail(self, db_session, make_plan):
        plan = make_plan([{"duration_minutes": 40}])
        (session,) = _sessions(db_session, plan.id)

        update_draft_plan(plan.id, session_edits=[SessionEdit(session_id=session.id, duration_minutes=45)])

        assert session.duration_minutes == 45
        assert _block_minutes(session) == [10, 25, 10]
        assert_detail_matches_total(parse_session_detail(session.detail_json), 45)

    def test_edited_plan_materializes(self, db_session, make_plan):
        plan = make_plan([{"duration_minutes": 40}])
        (session,) = _sessions(db_session, plan.id)
        update_draft_plan(plan.id, session_edits=[SessionEdit(session_id=session.id, duration_minutes=45)])

        result = materialize(plan.id)

        assert result.upserted_count == 1
        assert _entry(db_session, plan.athlete_id).duration_minutes == 45

    def test_edit_without_duration_keeps_detail(self, db_session, draft_plan):
        first = _sessions(db_session, draft_plan.id)[0]
        before = first.detail_json

        update_draft_plan(draft_plan.id, session_edits=[SessionEdit(session_id=first.id, notes="Hills")])

        assert first.detail_json == before

    def test_unparseable_detail_is_left_alone(self, db_session, make_plan):
        plan = make_plan([{"duration_minutes": 40, "detail_json": {"objective": "Run"}}], status="draft")
        (session,) = _sessions(db_session, plan.id)

        update_draft_plan(plan.id, session_edits=[SessionEdit(session_id=session.id, duration_minutes=45)])

        assert session.duration_minutes == 45
        assert session.detail_json == {"objective": "Run"}

    def test_unset_fields_are_left_alone(self, db_session, draft_plan):
        first = _sessions(db_session, draft_plan.id)[0]

        update_draft_plan(draft_plan.id, session_edits=[SessionEdit(session_id=first.id, notes="Trail")])

        assert first.type == "Easy Run"
        assert first.duration_minutes == 30

    def test_week_lock_blocks_edits_in_the_same_request(self, db_session, draft_plan):
        first = _sessions(db_session, draft_plan.id)[0]

        with pytest.raises(ConflictError) as exc_info:
            update_draft_plan(
                draft_plan.id,
                week_locks=[WeekLockEdit(week_index=0, locked=True)],
                session_edits=[SessionEdit(session_id=first.id, duration_minutes=50)],
            )

        assert exc_info.value.code == "WEEK_LOCKED"
        assert first.duration_minutes == 30
        assert _week(db_session, draft_plan.id, 0) is None

    def test_locked_week_rejects_session_lock_toggle(self, db_session, draft_plan):
        update_draft_plan(draft_plan.id, week_locks=[WeekLockEdit(week_index=0, locked=True)])
        first = _sessions(db_session, draft_plan.id)[0]

        with pytest.raises(ConflictError) as exc_info:
            update_draft_plan(draft_plan.id, session_edits=[SessionEdit(session_id=first.id, locked=True)])

        assert exc_info.value.code == "WEEK_LOCKED"
        assert _week(db_session, draft_plan.id, 0).locked

    def test_unlocking_week_allows_edits_again(self, db_session, draft_plan):
        update_draft_plan(draft_plan.id, week_locks=[WeekLockEdit(week_index=0, locked=True)])
        first = _sessions(db_session, draft_plan.id)[0]

        update_draft_plan(
            draft_plan.id,
            week_locks=[WeekLockEdit(week_index=0, locked=False)],
            session_edits=[SessionEdit(session_id=first.id, duration_minutes=25)],
        )

        assert first.duration_minutes == 25

    def test_edits_in_other_weeks_are_allowed(self, db_session, draft_plan):
        update_draft_plan(draft_plan.id, week_locks=[WeekLockEdit(week_index=0, locked=True)])
        week_one = _sessions(db_session, draft_plan.id)[2]

        update_draft_plan(draft_plan.id, session_edits=[SessionEdit(session_id=week_one.id, type="Hills")])

        assert week_one.type == "Hills"

    def test_locked_session_rejects_content_edits(self, db_session, draft_plan):
        first = _sessions(db_session, draft_plan.id)[0]
        update_draft_plan(draft_plan.id, session_edits=[SessionEdit(session_id=first.id, locked=True)])

        with pytest.raises(ConflictError) as exc_info:
            update_draft_plan(draft_plan.id, session_edits=[SessionEdit(session_id=first.id, type="Tempo", locked=True)])

        assert exc_info.value.code == "SESSION_LOCKED"
        assert first.type == "Easy Run"

    def test_locked_session_can_be_unlocked(self, db_session, draft_plan):
        first = _sessions(db_session, draft_plan.id)[0]
        update_draft_plan(draft_plan.id, session_edits=[SessionEdit(session_id=first.id, locked=True)])

        update_draft_plan(draft_plan.id, session_edits=[SessionEdit(session_id=first.id, locked=False)])
        update_draft_plan(draft_plan.id, session_edits=[SessionEdit(session_id=first.id, type="Tempo")])

        assert not first.locked
        assert first.type == "Tempo"

    def test_unknown_session(self, db_session, draft_plan):
        with pytest.raises(NotFoundError):
            update_draft_plan(draft_plan.id, session_edits=[SessionEdit(session_id="missing", notes="x")])

    def test_wrong_coach(self, db_session, draft_plan):
        with pytest.raises(NotFoundError):
            update_draft_plan(draft_plan.id, coach_id="someone-else", week_locks=[WeekLockEdit(week_index=0, locked=True)])


class TestNormalizePlanDurations:
    def test_writes_back_rounded_durations(self, db_session, make_plan):
        plan = make_plan(
            [
                {"day_of_week": MONDAY, "duration_minutes": 32},
                {"day_of_week": WEDNESDAY, "duration_minutes": 32},
                {"week_index": 1, "day_of_week": SATURDAY, "duration_minutes": 92},
            ],
            status="draft",
            setup={"weekStart": "monday", "startDate": "2026-03-02", "weeksToEvent": 2, "longSessionDay": SATURDAY},
        )
        first, second, long_run = _sessions(db_session, plan.id)

        changed = normalize_plan_durations(plan.id)

        assert changed == {first.id: 35, second.id: 30, long_run.id: 90}
        assert (first.duration_minutes, second.duration_minutes, long_run.duration_minutes) == (35, 30, 90)
        assert _week(db_session, plan.id, 0).total_minutes == 65
        assert normalize_plan_durations(plan.id) == {}

    def test_sessions_in_locked_weeks_are_not_rebalanced(self, db_session, make_plan):
        plan = make_plan(
            [
                {"day_of_week": MONDAY, "duration_minutes": 32},
                {"day_of_week": WEDNESDAY, "duration_minutes": 32},
            ],
            status="draft",
        )
        update_draft_plan(plan.id, week_locks=[WeekLockEdit(week_index=0, locked=True)])

        normalize_plan_durations(plan.id)

        assert [s.duration_minutes for s in _sessions(db_session, plan.id)] == [30, 30]

    def test_rounded_durations_reflow_detail(self, db_session, make_plan):
        plan = make_plan([{"duration_minutes": 32}], status="draft")
        (session,) = _sessions(db_session, plan.id)

        normalize_plan_durations(plan.id)

        assert session.duration_minutes == 35
        assert _block_minutes(session) == [10, 15, 10]

    def test_normalized_long_session_materializes(self, db_session, make_plan):
        plan = make_plan([{"day_of_week": SATURDAY, "duration_minutes": 95}])
        (session,) = _sessions(db_session, plan.id)

        assert normalize_plan_durations(plan.id) == {session.id: 100}
        result = materialize(plan.id)

        assert result.upserted_count == 1
        assert _block_minutes(session) == [10, 80, 10]
        assert _entry(db_session, plan.athlete_id).duration_minutes == 100
