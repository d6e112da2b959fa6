"""
Timezone Resolver
Turns "now" into a user's local date and clock time
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import settings
from exceptions import ConfigurationError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalClock:
    """A user's wall clock at one instant"""
    date: str   # YYYY-MM-DD
    time: str   # HH:MM
    hour: int
    timezone: str

    @property
    def minutes(self) -> int:
        return time_to_minutes(self.time)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """
    Resolve an IANA identifier, falling back to the default zone.

    Never raises: a missing or unknown identifier is logged as a
    configuration warning and the default zone is returned instead.
    """
    default = settings.DEFAULT_TIMEZONE
    if not name:
        return ZoneInfo(default)

    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        # Area names like "America" resolve to tzdata directories
        error = ConfigurationError(f"Invalid timezone {name!r}: {e}")
        logger.warning("%s; falling back to %s", error, default)
        return ZoneInfo(default)


def local_now(tz_name: Optional[str], now: Optional[datetime] = None) -> LocalClock:
    """Local date and HH:MM for `now` (defaults to the current instant)"""
    tz = resolve_timezone(tz_name)
    instant = now or utc_now()
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)

    local = instant.astimezone(tz)
    return LocalClock(
        date=local.strftime("%Y-%m-%d"),
        time=local.strftime("%H:%M"),
        hour=local.hour,
        timezone=tz.key,
    )


def local_now_minus(
    tz_name: Optional[str],
    minutes: int,
    now: Optional[datetime] = None
) -> LocalClock:
    """Local clock `minutes` before now, in the same zone"""
    instant = now or utc_now()
    return local_now(tz_name, instant - timedelta(minutes=minutes))


def time_to_minutes(value: Optional[str]) -> int:
    """Convert HH:MM to minutes since midnight; malformed input counts as 0"""
    if not value or not isinstance(value, str):
        return 0

    parts = value.split(":")
    try:
        hours = int(parts[0]) if parts[0] else 0
        minutes = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    except ValueError:
        return 0
    return hours * 60 + minutes


def format_time_12h(value: str) -> str:
    """'20:30' -> '8:30 PM'"""
    total = time_to_minutes(value)
    hour, minute = divmod(total, 60)
    suffix = "PM" if hour >= 12 else "AM"
    hour12 = hour % 12 or 12
    return f"{hour12}:{minute:02d} {suffix}"
