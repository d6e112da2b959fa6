"""
Tests for Coaching Engine
Category choice, local-hour gating and once-per-day semantics
"""

import pytest
from datetime import datetime, timezone

from actions.coaching_engine import FALLBACK_COACHING, choose_coaching_type
from exceptions import GenerationError
from services.message_generator import CoachingType


NINE_AM_NY = datetime(2026, 1, 15, 14, 5, tzinfo=timezone.utc)


class TestChooseCoachingType:

    @pytest.mark.unit
    @pytest.mark.parametrize("ratio,expected", [
        (1.0, CoachingType.STREAK),
        (0.8, CoachingType.MOTIVATION),
        (0.6, CoachingType.MOTIVATION),
        (0.49, CoachingType.MISSED_DOSE),
        (0.0, CoachingType.MISSED_DOSE),
    ])
    def test_thresholds(self, ratio, expected):
        assert choose_coaching_type(ratio) == expected


class TestPlans:

    @pytest.mark.unit
    def test_streak_plan_at_coaching_hour(self, coaching, test_schedule, make_record):
        for day in ("2026-01-13", "2026-01-14"):
            make_record(test_schedule, day, taken=True)

        plans = coaching.plans(NINE_AM_NY)

        assert len(plans) == 1
        assert plans[0].coaching_type == CoachingType.STREAK
        assert plans[0].title == "🔥 2 Day Streak!"
        assert plans[0].context == {"streak_days": 2}
        assert plans[0].local_date == "2026-01-15"

    @pytest.mark.unit
    def test_recovery_plan(self, coaching, test_schedule, make_record):
        for day, taken in (("2026-01-12", False), ("2026-01-13", False), ("2026-01-14", True)):
            make_record(test_schedule, day, taken=taken)

        plan = coaching.plans(NINE_AM_NY)[0]

        assert plan.coaching_type == CoachingType.MISSED_DOSE
        assert plan.title == "⚠️ Let's Get Back on Track"

    @pytest.mark.unit
    def test_other_hours_skipped(self, coaching, test_schedule, make_record):
        make_record(test_schedule, "2026-01-14", taken=True)

        assert coaching.plans(datetime(2026, 1, 15, 13, 5, tzinfo=timezone.utc)) == []

    @pytest.mark.unit
    def test_user_without_recent_records_skipped(self, coaching, test_schedule, make_record):
        make_record(test_schedule, "2026-01-09", taken=True)   # active this week, not in last 3 days

        assert coaching.plans(NINE_AM_NY) == []

    @pytest.mark.unit
    def test_once_per_local_day(self, coaching, test_schedule, make_record, test_store):
        make_record(test_schedule, "2026-01-14", taken=True)
        test_store.add_notification(
            test_schedule.user_id, None, "coaching", "💪 Daily Motivation", "hi", local_date="2026-01-15"
        )

        assert coaching.plans(NINE_AM_NY) == []

    @pytest.mark.unit
    def test_streak_counts_days_not_doses(self, coaching, test_user, make_schedule, make_record):
        morning = make_schedule(test_user, time="08:00")
        evening = make_schedule(test_user, medication_name="Lisinopril", time="20:00")
        for day in ("2026-01-12", "2026-01-13", "2026-01-14"):
            make_record(morning, day, taken=True)
            make_record(evening, day, taken=True)

        plan = coaching.plans(NINE_AM_NY)[0]

        assert plan.streak_days == 3
        assert plan.title == "🔥 3 Day Streak!"

    @pytest.mark.unit
    def test_candidates_follow_local_calendar(self, coaching, test_schedule, make_record):
        # 22:00 on Jan 15 in New York, already Jan 16 in UTC
        late_evening = datetime(2026, 1, 16, 3, 0, tzinfo=timezone.utc)
        make_record(test_schedule, "2026-01-08", taken=True)

        users = coaching.candidate_users(late_evening)

        assert [u.id for u in users] == [test_schedule.user_id]

    @pytest.mark.unit
    def test_failing_user_reported_and_skipped(self, coaching, make_user, make_schedule, make_record):
        first, second = make_user(), make_user()
        make_record(make_schedule(first), "2026-01-14", taken=True)
        make_record(make_schedule(second), "2026-01-14", taken=True)
        real_plan_for = coaching.plan_for

        def flaky(user, now=None):
            if user.id == first.id:
                raise RuntimeError("bad row")
            return real_plan_for(user, now)

        coaching.plan_for = flaky
        errors = []

        plans = coaching.plans(NINE_AM_NY, errors)

        assert [p.user_id for p in plans] == [second.id]
        assert errors == [{"type": "coaching", "error": "bad row", "user_id": first.id, "schedule_id": None}]


class TestRender:

    @pytest.mark.asyncio
    async def test_generated_text(self, coaching, test_schedule, make_record, fake_generator):
        make_record(test_schedule, "2026-01-14", taken=True)
        plan = coaching.plans(NINE_AM_NY)[0]

        message, ai_generated = await coaching.render(plan)

        assert message == "🌟 Generated coaching text"
        assert ai_generated is True
        fake_generator.generate_coaching.assert_awaited_once_with(
            plan.user_id, CoachingType.STREAK, {"streak_days": 1}
        )

    @pytest.mark.asyncio
    async def test_fallback_text(self, coaching, test_schedule, make_record, fake_generator):
        make_record(test_schedule, "2026-01-14", taken=True)
        fake_generator.generate_coaching.side_effect = GenerationError("no key")
        plan = coaching.plans(NINE_AM_NY)[0]

        message, ai_generated = await coaching.render(plan)

        assert message == FALLBACK_COACHING[CoachingType.STREAK]
        assert ai_generated is False
