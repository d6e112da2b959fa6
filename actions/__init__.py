"""
Actions Module
Engines for dose detection, dispatch, coaching, escalation and scheduling
"""

from .dose_detector import (
    DoseStatus,
    DoseContext,
    DoseDetector,
    dose_detector
)

from .notification_dispatcher import (
    DispatchResult,
    NotificationDispatcher,
    FALLBACK_TEMPLATES,
    fallback_message
)

from .coaching_engine import (
    CoachingPlan,
    CoachingEngine,
    coaching_engine,
    choose_coaching_type,
    FALLBACK_COACHING
)

from .escalation_engine import (
    EscalationThresholds,
    EscalationAlert,
    EscalationSummary,
    EscalationEngine,
    escalation_engine,
    compose_alert
)

from .reminder_scheduler import (
    SchedulerState,
    ItemOutcome,
    CycleResult,
    ReminderScheduler,
    reminder_scheduler,
    seconds_until_next_minute,
    start_scheduler,
    stop_scheduler,
    run_cycle_once
)


__all__ = [
    # Dose detector
    "DoseStatus",
    "DoseContext",
    "DoseDetector",
    "dose_detector",
    # Notification dispatcher
    "DispatchResult",
    "NotificationDispatcher",
    "FALLBACK_TEMPLATES",
    "fallback_message",
    # Coaching engine
    "CoachingPlan",
    "CoachingEngine",
    "coaching_engine",
    "choose_coaching_type",
    "FALLBACK_COACHING",
    # Escalation engine
    "EscalationThresholds",
    "EscalationAlert",
    "EscalationSummary",
    "EscalationEngine",
    "escalation_engine",
    "compose_alert",
    # Scheduler
    "SchedulerState",
    "ItemOutcome",
    "CycleResult",
    "ReminderScheduler",
    "reminder_scheduler",
    "seconds_until_next_minute",
    "start_scheduler",
    "stop_scheduler",
    "run_cycle_once",
]
