"""
Coaching Engine
Daily motivation and coaching messages based on recent adherence
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from config import engine_config, settings
from models import NotificationType
from services.message_generator import CoachingType, MessageGenerator, message_generator
from services.store import Store, UserRow, store as default_store
from tools.streak_calculator import adherence_ratio
from tools.timezone_resolver import local_now, utc_now


logger = logging.getLogger(__name__)


FALLBACK_COACHING: Dict[CoachingType, str] = {
    CoachingType.MOTIVATION: "💪 You're doing great with your medication routine! Every dose counts towards your health goals.",
    CoachingType.MISSED_DOSE: "Don't worry about missing a dose - just take it now if it's not too late, and get back on track!",
    CoachingType.TIMING: "⏰ Try to take your medications at consistent times each day for the best results.",
    CoachingType.STREAK: "🌟 Amazing medication streak! Your consistency is paying off.",
    CoachingType.IMPROVEMENT: "📈 Your adherence has improved! Keep up the excellent work.",
}


@dataclass
class CoachingPlan:
    """What to send one user today"""
    user_id: int
    coaching_type: CoachingType
    adherence_rate: float
    local_date: str
    streak_days: int = 0

    @property
    def title(self) -> str:
        if self.coaching_type == CoachingType.STREAK:
            return f"🔥 {self.streak_days} Day Streak!"
        if self.coaching_type == CoachingType.MISSED_DOSE:
            return "⚠️ Let's Get Back on Track"
        return "💪 Daily Motivation"

    @property
    def context(self) -> Dict[str, Any]:
        if self.coaching_type == CoachingType.STREAK:
            return {"streak_days": self.streak_days}
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "type": self.coaching_type.value,
            "adherence_rate": round(self.adherence_rate * 100),
            "local_date": self.local_date,
            "title": self.title,
        }


def choose_coaching_type(ratio: float) -> CoachingType:
    """Pick the category for a recent adherence ratio in [0, 1]"""
    if ratio >= engine_config.COACHING_STREAK_RATIO:
        return CoachingType.STREAK
    if ratio >= engine_config.COACHING_MOTIVATION_RATIO:
        return CoachingType.MOTIVATION
    if ratio < engine_config.COACHING_RECOVERY_RATIO:
        return CoachingType.MISSED_DOSE
    return CoachingType.MOTIVATION


class CoachingEngine:
    """
    Decides who gets a coaching message this minute and renders it.

    A user qualifies at COACHING_HOUR on their own clock, when they have
    adherence records in the lookback window, and when no coaching
    notification exists yet for their local date.
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        generator: Optional[MessageGenerator] = None,
        coaching_hour: Optional[int] = None,
        lookback_days: Optional[int] = None
    ):
        self.store = store or default_store
        self.generator = generator or message_generator
        self.coaching_hour = coaching_hour if coaching_hour is not None else settings.COACHING_HOUR
        self.lookback_days = lookback_days if lookback_days is not None else settings.COACHING_LOOKBACK_DAYS

    def candidate_users(self, now: Optional[datetime] = None) -> List[UserRow]:
        """
        Users with any adherence activity in the last week of local dates.

        The window starts from the earliest local date any zone can be on
        (UTC-12), so it covers every user's own calendar; `plan_for` then
        narrows it to the user's local lookback.
        """
        instant = now or utc_now()
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        earliest_local = (instant.astimezone(timezone.utc) - timedelta(hours=12)).date()
        since = (earliest_local - timedelta(days=7)).isoformat()
        return self.store.list_active_users(since)

    def plan_for(self, user: UserRow, now: Optional[datetime] = None) -> Optional[CoachingPlan]:
        """
        Coaching plan for one user, or None when nothing should be sent now

        Raises:
            PersistenceError: if the store cannot be read
        """
        clock = local_now(user.timezone, now)
        if clock.hour != self.coaching_hour:
            return None

        if self.store.count_notifications(user.id, NotificationType.COACHING.value, clock.date) > 0:
            logger.debug(f"Coaching already sent to user {user.id} for {clock.date}")
            return None

        since = (date.fromisoformat(clock.date) - timedelta(days=self.lookback_days)).isoformat()
        recent = self.store.list_recent_adherence_for_user(user.id, since)
        ratio = adherence_ratio(recent)
        if ratio is None:
            return None

        coaching_type = choose_coaching_type(ratio)
        return CoachingPlan(
            user_id=user.id,
            coaching_type=coaching_type,
            adherence_rate=ratio,
            local_date=clock.date,
            streak_days=len({row.date for row in recent}) if coaching_type == CoachingType.STREAK else 0,
        )

    async def render(self, plan: CoachingPlan) -> tuple:
        """(message, ai_generated) for a plan, falling back to a static message"""
        try:
            text = await self.generator.generate_coaching(plan.user_id, plan.coaching_type, plan.context)
            if text and text.strip():
                return text.strip(), True
        except Exception as e:
            logger.warning(f"⚠️ Coaching generation failed for user {plan.user_id}: {e}")
        return FALLBACK_COACHING[plan.coaching_type], False

    def plans(self, now: Optional[datetime] = None, errors: Optional[List[Dict[str, Any]]] = None) -> List[CoachingPlan]:
        """Plans for every qualifying user; a failing user is reported and skipped"""
        plans = []
        for user in self.candidate_users(now):
            try:
                plan = self.plan_for(user, now)
            except Exception as e:
                logger.error(f"❌ Could not plan coaching for user {user.id}: {e}")
                if errors is not None:
                    errors.append({"type": "coaching", "error": str(e), "user_id": user.id, "schedule_id": None})
                continue
            if plan:
                plans.append(plan)
        return plans


coaching_engine = CoachingEngine()
