"""
Tools Package
Pure helpers and delivery channels used by the reminder engine
"""

from .timezone_resolver import (
    LocalClock,
    utc_now,
    resolve_timezone,
    local_now,
    local_now_minus,
    time_to_minutes,
    format_time_12h
)

from .streak_calculator import (
    StreakRun,
    StreakStats,
    group_by_date,
    calculate_streaks,
    count_consecutive_missed,
    adherence_ratio
)

from .delivery_channels import (
    ChannelKind,
    Recipient,
    OutboundMessage,
    ChannelResult,
    DeliveryChannel,
    ConsoleChannel,
    EmailChannel,
    SmsChannel,
    default_channels
)


__all__ = [
    # Timezone resolver
    "LocalClock",
    "utc_now",
    "resolve_timezone",
    "local_now",
    "local_now_minus",
    "time_to_minutes",
    "format_time_12h",
    # Streak calculator
    "StreakRun",
    "StreakStats",
    "group_by_date",
    "calculate_streaks",
    "count_consecutive_missed",
    "adherence_ratio",
    # Delivery channels
    "ChannelKind",
    "Recipient",
    "OutboundMessage",
    "ChannelResult",
    "DeliveryChannel",
    "ConsoleChannel",
    "EmailChannel",
    "SmsChannel",
    "default_channels",
]
