"""
Dose Detector
Classifies each daily schedule as due, missed, critically missed or satisfied
in its owner's local time
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from config import settings
from models import Frequency
from services.store import AdherenceRow, ScheduleRow, Store, store as default_store
from tools.timezone_resolver import LocalClock, local_now, time_to_minutes


logger = logging.getLogger(__name__)


class DoseStatus(str, Enum):
    """Where a dose stands right now"""
    UPCOMING = "upcoming"
    SATISFIED = "satisfied"
    DUE = "due"
    MISSED = "missed"
    CRITICALLY_MISSED = "critically_missed"


@dataclass
class DoseContext:
    """A schedule together with the user's clock and today's adherence state"""
    schedule: ScheduleRow
    clock: LocalClock
    overdue_minutes: int
    status: DoseStatus
    adherence: Optional[AdherenceRow] = None

    @property
    def user_id(self) -> int:
        return self.schedule.user_id

    @property
    def schedule_id(self) -> int:
        return self.schedule.id

    @property
    def medication_name(self) -> str:
        return self.schedule.medication_name

    @property
    def dosage(self) -> str:
        return self.schedule.dosage

    @property
    def schedule_time(self) -> str:
        return self.schedule.time

    @property
    def local_date(self) -> str:
        return self.clock.date

    @property
    def local_time(self) -> str:
        return self.clock.time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "schedule_id": self.schedule_id,
            "medication_name": self.medication_name,
            "dosage": self.dosage,
            "time": self.schedule_time,
            "frequency": self.schedule.frequency,
            "user_timezone": self.clock.timezone,
            "current_date": self.local_date,
            "current_time": self.local_time,
            "overdue_minutes": self.overdue_minutes,
            "status": self.status.value,
            "taken": self.adherence.taken if self.adherence else None,
            "notes": self.adherence.notes if self.adherence else None,
            "recorded_at": (
                self.adherence.created_at.isoformat()
                if self.adherence and self.adherence.created_at else None
            ),
        }


class DoseDetector:
    """
    Finds doses that need attention.

    Times are compared as minutes since midnight on the user's own clock.
    Thresholds are subtracted without wrapping past midnight, so a dose can
    only be missed once enough of *today* has elapsed.
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        reminder_threshold_minutes: Optional[int] = None,
        escalation_threshold_hours: Optional[int] = None
    ):
        self.store = store or default_store
        self.reminder_threshold_minutes = (
            reminder_threshold_minutes
            if reminder_threshold_minutes is not None
            else settings.REMINDER_THRESHOLD_MINUTES
        )
        self.escalation_threshold_hours = (
            escalation_threshold_hours
            if escalation_threshold_hours is not None
            else settings.ESCALATION_THRESHOLD_HOURS
        )

    @property
    def escalation_threshold_minutes(self) -> int:
        return self.escalation_threshold_hours * 60

    def _status_for(self, overdue: int, taken: bool) -> DoseStatus:
        if overdue < 0:
            return DoseStatus.UPCOMING
        if taken:
            return DoseStatus.SATISFIED
        if overdue >= self.escalation_threshold_minutes:
            return DoseStatus.CRITICALLY_MISSED
        if overdue >= self.reminder_threshold_minutes:
            return DoseStatus.MISSED
        return DoseStatus.DUE

    def classify(self, schedule: ScheduleRow, now: Optional[datetime] = None) -> DoseContext:
        """Classify one schedule against its owner's current local time"""
        clock = local_now(schedule.timezone, now)
        overdue = clock.minutes - time_to_minutes(schedule.time)

        adherence = None
        if overdue >= 0:
            # Only look up today's record once the dose time has come
            adherence = self.store.get_adherence_record(schedule.id, clock.date)

        taken = bool(adherence and adherence.taken)
        return DoseContext(
            schedule=schedule,
            clock=clock,
            overdue_minutes=overdue,
            status=self._status_for(overdue, taken),
            adherence=adherence,
        )

    def detect(
        self,
        threshold_minutes: int = 0,
        now: Optional[datetime] = None,
        errors: Optional[List[Dict[str, Any]]] = None
    ) -> List[DoseContext]:
        """
        Not-taken daily doses at least `threshold_minutes` past their time today.

        A schedule whose lookup fails is skipped and reported into `errors`
        when given; the remaining schedules are still classified.
        """
        schedules = self.store.list_schedules()
        flagged: List[DoseContext] = []

        for schedule in schedules:
            if schedule.frequency != Frequency.DAILY.value:
                logger.debug(
                    f"Skipping schedule {schedule.id}: frequency {schedule.frequency} not handled"
                )
                continue

            try:
                context = self.classify(schedule, now)
            except Exception as e:
                logger.error(f"❌ Could not classify schedule {schedule.id}: {e}")
                if errors is not None:
                    errors.append({
                        "type": "detection",
                        "error": str(e),
                        "user_id": schedule.user_id,
                        "schedule_id": schedule.id,
                    })
                continue

            if context.status in (DoseStatus.UPCOMING, DoseStatus.SATISFIED):
                continue

            if context.overdue_minutes >= threshold_minutes:
                logger.debug(
                    f"🔍 Schedule {schedule.id} for user {schedule.user_id}: "
                    f"scheduled={schedule.time}, current={context.local_time}, "
                    f"overdue={context.overdue_minutes}m, timezone={context.clock.timezone}"
                )
                flagged.append(context)

        return flagged

    def find_due_doses(self, now: Optional[datetime] = None, errors=None) -> List[DoseContext]:
        """Doses whose time has passed today and that are not marked taken"""
        return self.detect(0, now, errors)

    def find_missed_doses(self, now: Optional[datetime] = None, errors=None) -> List[DoseContext]:
        """Due doses overdue by at least the reminder threshold"""
        return self.detect(self.reminder_threshold_minutes, now, errors)

    def find_critically_missed_doses(self, now: Optional[datetime] = None, errors=None) -> List[DoseContext]:
        """Due doses overdue by at least the escalation threshold"""
        return self.detect(self.escalation_threshold_minutes, now, errors)


dose_detector = DoseDetector()
