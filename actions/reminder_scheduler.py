"""
Reminder Scheduler
Minute-aligned loop that runs detection, dispatch, coaching and escalation

One cycle at a time: an asyncio.Lock guards every cycle, ticks that arrive
while a cycle is running are skipped, and manual runs wait their turn.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional

from exceptions import CycleError
from models import NotificationType
from services.store import Store, store as default_store
from tools.timezone_resolver import utc_now
from actions.coaching_engine import CoachingEngine, CoachingPlan, coaching_engine as default_coaching
from actions.dose_detector import DoseContext, DoseDetector, dose_detector as default_detector
from actions.escalation_engine import EscalationEngine, escalation_engine as default_escalation
from actions.notification_dispatcher import DispatchResult, NotificationDispatcher


logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    """Lifecycle of the scheduler loop"""
    IDLE = "idle"
    ALIGNING = "aligning"
    RUNNING = "running"
    STOPPED = "stopped"


class Stage(str, Enum):
    REMINDER = "reminder"
    MISSED_DOSE = "missed_dose"
    COACHING = "coaching"
    ESCALATION = "escalation"


@dataclass
class ItemOutcome:
    """Result of one per-item operation inside a cycle"""
    stage: Stage
    success: bool
    user_id: Optional[int] = None
    schedule_id: Optional[int] = None
    skipped: bool = False
    error: Optional[str] = None

    def error_entry(self) -> Dict[str, Any]:
        return {
            "type": self.stage.value,
            "error": self.error,
            "user_id": self.user_id,
            "schedule_id": self.schedule_id,
        }


@dataclass
class CycleResult:
    """Aggregated counts for one cycle"""
    regular_reminders: int = 0
    missed_reminders: int = 0
    coaching_messages: int = 0
    escalations_checked: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def total_processed(self) -> int:
        return self.regular_reminders + self.missed_reminders + self.coaching_messages

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regular_reminders": self.regular_reminders,
            "missed_reminders": self.missed_reminders,
            "coaching_messages": self.coaching_messages,
            "escalations_checked": self.escalations_checked,
            "errors": self.errors,
            "total_processed": self.total_processed,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


def seconds_until_next_minute(now: Optional[datetime] = None) -> float:
    """Seconds until the next wall-clock minute boundary, in (0, 60]"""
    now = now or utc_now()
    return 60.0 - (now.second + now.microsecond / 1_000_000)


class ReminderScheduler:
    """
    Owns the background task that runs a cycle every minute

    Args:
        detector: finds due and missed doses
        dispatcher: stores and delivers notifications
        coaching: plans and renders daily coaching
        escalation: escalation policy pass
        store: used for once-per-day checks
    """

    def __init__(
        self,
        detector: Optional[DoseDetector] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        coaching: Optional[CoachingEngine] = None,
        escalation: Optional[EscalationEngine] = None,
        store: Optional[Store] = None
    ):
        self.store = store or default_store
        self.detector = detector or default_detector
        self.dispatcher = dispatcher or NotificationDispatcher(store=self.store)
        self.coaching = coaching or default_coaching
        self.escalation = escalation or default_escalation

        self.state = SchedulerState.IDLE
        self.last_result: Optional[CycleResult] = None
        self.cycles_run = 0
        self.skipped_ticks = 0

        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def cycle_in_progress(self) -> bool:
        return self._lock is not None and self._lock.locked()

    def _cycle_lock(self) -> asyncio.Lock:
        """Single-flight lock for the running event loop, created on first use"""
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    # ==================== LIFECYCLE ====================

    async def start(self) -> "ReminderScheduler":
        """Start the loop; a loop that is already running is stopped first"""
        if self.is_running and self._task.get_loop() is asyncio.get_running_loop():
            logger.info("🔁 Scheduler already running, restarting")
            await self.stop()

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event))
        logger.info("✅ Reminder scheduler started (every minute)")
        return self

    async def stop(self):
        """Stop accepting ticks; a cycle already running is allowed to finish"""
        task = self._task
        if task is not None and task.get_loop() is not asyncio.get_running_loop():
            # Left over from an event loop that is no longer running
            task = None

        if task is not None:
            self._stop_event.set()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._task = None
        self.state = SchedulerState.STOPPED
        logger.info("🛑 Reminder scheduler stopped")

    async def _run(self, stop_event: asyncio.Event):
        lock = self._cycle_lock()
        while not stop_event.is_set():
            self.state = SchedulerState.ALIGNING
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=seconds_until_next_minute())
                break
            except asyncio.TimeoutError:
                pass

            if lock.locked():
                self.skipped_ticks += 1
                logger.warning("⏭️ Previous cycle still running, skipping this tick")
                continue

            async with lock:
                self.state = SchedulerState.RUNNING
                try:
                    await self._cycle()
                except Exception:
                    # Never let one cycle take the loop down
                    logger.exception("❌ Scheduler cycle failed")
                finally:
                    self.state = SchedulerState.IDLE

    async def run_cycle_once(self, now: Optional[datetime] = None) -> CycleResult:
        """Run one cycle now, waiting for any cycle already in flight"""
        async with self._cycle_lock():
            previous = self.state
            self.state = SchedulerState.RUNNING
            try:
                return await self._cycle(now)
            finally:
                self.state = previous

    # ==================== CYCLE ====================

    async def _run_item(
        self,
        stage: Stage,
        work: Awaitable,
        user_id: Optional[int] = None,
        schedule_id: Optional[int] = None
    ) -> ItemOutcome:
        """Await one unit of work, turning any failure into a tagged outcome"""
        try:
            outcome = await work
        except Exception as e:
            error = CycleError(stage.value, e, user_id=user_id)
            logger.error(f"❌ {error}")
            return ItemOutcome(stage, False, user_id, schedule_id, error=str(e))

        if isinstance(outcome, ItemOutcome):
            return outcome
        return ItemOutcome(stage, True, user_id, schedule_id)

    async def _notify_dose(self, stage: Stage, context: DoseContext) -> ItemOutcome:
        notification_type = NotificationType(stage.value)
        already_sent = self.store.count_notifications(
            context.user_id,
            notification_type.value,
            context.local_date,
            schedule_id=context.schedule_id,
        )
        if already_sent:
            return ItemOutcome(stage, True, context.user_id, context.schedule_id, skipped=True)

        result: DispatchResult = await self.dispatcher.dispatch(context, notification_type)
        return ItemOutcome(stage, result.success, context.user_id, context.schedule_id, error=result.error)

    async def _coach(self, plan: CoachingPlan) -> ItemOutcome:
        message, ai_generated = await self.coaching.render(plan)
        result = await self.dispatcher.dispatch_coaching(
            plan.user_id,
            plan.title,
            message,
            ai_generated,
            local_date=plan.local_date,
        )
        return ItemOutcome(Stage.COACHING, result.success, plan.user_id, error=result.error)

    def _collect(self, outcomes: List[ItemOutcome], errors: List[Dict[str, Any]]) -> int:
        """Record failures and return the number of notifications sent"""
        sent = 0
        for outcome in outcomes:
            if not outcome.success:
                errors.append(outcome.error_entry())
            elif not outcome.skipped:
                sent += 1
        return sent

    async def _dose_stage(self, stage: Stage, contexts: List[DoseContext], errors) -> int:
        outcomes = [
            await self._run_item(stage, self._notify_dose(stage, ctx), ctx.user_id, ctx.schedule_id)
            for ctx in contexts
        ]
        return self._collect(outcomes, errors)

    def _stage_failed(self, stage: Stage, e: Exception, errors: List[Dict[str, Any]]):
        logger.error(f"❌ {CycleError(stage.value, e)}")
        errors.append({"type": stage.value, "error": str(e), "user_id": None, "schedule_id": None})

    async def _cycle(self, now: Optional[datetime] = None) -> CycleResult:
        now = now or utc_now()
        result = CycleResult(started_at=utc_now())
        errors = result.errors
        logger.info("⏰ Processing medication reminders...")

        # 1. due reminders
        try:
            due = self.detector.find_due_doses(now, errors)
            result.regular_reminders = await self._dose_stage(Stage.REMINDER, due, errors)
        except Exception as e:
            self._stage_failed(Stage.REMINDER, e, errors)

        # 2. missed doses
        try:
            missed = self.detector.find_missed_doses(now, errors)
            result.missed_reminders = await self._dose_stage(Stage.MISSED_DOSE, missed, errors)
        except Exception as e:
            self._stage_failed(Stage.MISSED_DOSE, e, errors)

        # 3. daily coaching
        try:
            plans = self.coaching.plans(now, errors)
            outcomes = [
                await self._run_item(Stage.COACHING, self._coach(plan), plan.user_id)
                for plan in plans
            ]
            result.coaching_messages = self._collect(outcomes, errors)
        except Exception as e:
            self._stage_failed(Stage.COACHING, e, errors)

        # 4. escalation
        try:
            summary = await self.escalation.check_for_escalations(now)
            result.escalations_checked = summary.candidates
            errors.extend(summary.errors)
        except Exception as e:
            self._stage_failed(Stage.ESCALATION, e, errors)

        result.finished_at = utc_now()
        self.last_result = result
        self.cycles_run += 1

        logger.info(
            f"✅ Processed {result.regular_reminders} regular reminders, "
            f"{result.missed_reminders} missed dose reminders, "
            f"{result.coaching_messages} coaching messages, "
            f"{result.escalations_checked} escalation candidates"
        )
        if errors:
            logger.warning(f"⚠️ Cycle finished with {len(errors)} errors")
        return result

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "running": self.is_running,
            "cycle_in_progress": self.cycle_in_progress,
            "cycles_run": self.cycles_run,
            "skipped_ticks": self.skipped_ticks,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }


# ==================== OPERATIONAL SURFACE ====================

reminder_scheduler = ReminderScheduler()


async def start_scheduler(scheduler: Optional[ReminderScheduler] = None) -> ReminderScheduler:
    """Start the scheduler loop and return its handle"""
    scheduler = scheduler or reminder_scheduler
    return await scheduler.start()


async def stop_scheduler(handle: Optional[ReminderScheduler]):
    if handle is not None:
        await handle.stop()


async def run_cycle_once(scheduler: Optional[ReminderScheduler] = None) -> CycleResult:
    scheduler = scheduler or reminder_scheduler
    return await scheduler.run_cycle_once()
