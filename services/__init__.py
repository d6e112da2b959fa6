"""
Services Module
Store access and message generation for the reminder engine
"""

from services.store import (
    Store,
    ScheduleRow,
    UserRow,
    AdherenceRow,
    ContactRow,
    store,
)
from services.message_generator import (
    MessageGenerator,
    ReminderOptions,
    UserStatus,
    CoachingType,
    message_generator,
)


__all__ = [
    # Service classes
    "Store",
    "MessageGenerator",
    # Value types
    "ScheduleRow",
    "UserRow",
    "AdherenceRow",
    "ContactRow",
    "ReminderOptions",
    "UserStatus",
    "CoachingType",
    # Singleton instances
    "store",
    "message_generator",
]
