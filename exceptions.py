"""
Exceptions raised inside the reminder engine
"""

from typing import Optional


class ReminderEngineError(Exception):
    """Base class for reminder engine errors"""


class ConfigurationError(ReminderEngineError):
    """Bad or missing configuration, e.g. an unknown timezone"""


class GenerationError(ReminderEngineError):
    """The message generator failed, timed out, or has no key configured"""


class DeliveryError(ReminderEngineError):
    """A delivery channel failed to send"""

    def __init__(self, channel: str, message: str):
        super().__init__(f"{channel}: {message}")
        self.channel = channel


class PersistenceError(ReminderEngineError):
    """A store read or write failed"""


class ScheduleNotFoundError(ReminderEngineError):
    """The schedule does not exist or belongs to another user"""


class CycleError(ReminderEngineError):
    """An exception escaped a per-item boundary inside a scheduler cycle"""

    def __init__(self, stage: str, cause: Exception, user_id: Optional[int] = None):
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.cause = cause
        self.user_id = user_id
