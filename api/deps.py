"""
API Dependencies
Engine components handed to the endpoints; overridden in tests
"""

from actions.dose_detector import DoseDetector, dose_detector
from actions.escalation_engine import EscalationEngine, escalation_engine
from actions.notification_dispatcher import NotificationDispatcher
from actions.reminder_scheduler import ReminderScheduler, reminder_scheduler
from services.store import Store, store


def get_store() -> Store:
    return store


def get_detector() -> DoseDetector:
    return dose_detector


def get_scheduler() -> ReminderScheduler:
    return reminder_scheduler


def get_dispatcher() -> NotificationDispatcher:
    """The dispatcher the running scheduler uses"""
    return reminder_scheduler.dispatcher


def get_escalation_engine() -> EscalationEngine:
    return escalation_engine

