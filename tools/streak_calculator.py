"""
Streak Calculator
Adherence streaks and consecutive-miss counts over adherence history.

Everything here is pure: callers fetch the records, these functions only
look at each record's ``date`` and ``taken`` values. Records may be ORM rows,
dataclasses or plain dicts.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

from config import engine_config


DateLike = Union[str, date, datetime]


@dataclass
class StreakRun:
    """A maximal run of consecutive successful days"""
    length: int
    end_date: str    # most recent day of the run
    start_date: str  # oldest day of the run

    def to_dict(self) -> Dict[str, Any]:
        return {
            "length": self.length,
            "end_date": self.end_date,
            "start_date": self.start_date
        }


@dataclass
class StreakStats:
    """Streak statistics for a window of adherence history"""
    current_streak: int = 0
    longest_streak: int = 0
    total_records: int = 0
    streak_history: List[StreakRun] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "total_records": self.total_records,
            "streak_history": [run.to_dict() for run in self.streak_history]
        }


def _get(record: Any, name: str) -> Any:
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def group_by_date(records: Iterable[Any]) -> Dict[date, bool]:
    """
    Collapse records to one outcome per calendar date.

    A date succeeds only when every record on it was taken, so a day with
    two medications and one missed dose is a failure.
    """
    outcomes: Dict[date, bool] = defaultdict(lambda: True)
    for record in records:
        day = _as_date(_get(record, "date"))
        outcomes[day] = outcomes[day] and bool(_get(record, "taken"))
    return dict(outcomes)


def _day_sequence(outcomes: Dict[date, bool], today: Optional[date]) -> List[tuple]:
    """(date, success) from newest to oldest with gaps filled as failures"""
    if today is not None:
        outcomes = {d: ok for d, ok in outcomes.items() if d <= today}
    if not outcomes:
        return []

    newest = today if today is not None else max(outcomes)
    oldest = min(outcomes)

    days = []
    cursor = newest
    while cursor >= oldest:
        days.append((cursor, outcomes.get(cursor, False)))
        cursor -= timedelta(days=1)
    return days


def calculate_streaks(
    records: Iterable[Any],
    today: Optional[DateLike] = None,
    history_limit: int = engine_config.STREAK_HISTORY_LIMIT
) -> StreakStats:
    """
    Current and longest streak plus the top runs.

    Args:
        records: adherence records with ``date`` and ``taken``
        today: the caller's local date; days from here back to the oldest
            record that have no record count as failures, today included.
            Defaults to the most recent record date.
        history_limit: how many runs to keep in ``streak_history``

    Returns:
        StreakStats
    """
    records = list(records)
    if not records:
        return StreakStats()

    today_date = _as_date(today) if today is not None else None
    days = _day_sequence(group_by_date(records), today_date)

    current_streak = 0
    longest_streak = 0
    running = 0
    run_end: Optional[date] = None
    runs: List[StreakRun] = []

    for index, (day, success) in enumerate(days):
        if success:
            if running == 0:
                run_end = day
            running += 1
            longest_streak = max(longest_streak, running)
            if index == running - 1:
                # Still inside the run that started at the most recent day
                current_streak = running
        else:
            if running > 0:
                runs.append(StreakRun(
                    length=running,
                    end_date=run_end.isoformat(),
                    start_date=days[index - 1][0].isoformat()
                ))
            running = 0

    if running > 0:
        runs.append(StreakRun(
            length=running,
            end_date=run_end.isoformat(),
            start_date=days[-1][0].isoformat()
        ))

    # Longest first; among equal lengths the more recent run wins
    runs.sort(key=lambda run: (run.length, run.end_date), reverse=True)

    return StreakStats(
        current_streak=current_streak,
        longest_streak=longest_streak,
        total_records=len(records),
        streak_history=runs[:history_limit]
    )


def count_consecutive_missed(
    records: Iterable[Any],
    today: DateLike,
    lookback_days: int = 7
) -> int:
    """
    Number of most recent consecutive days without a fully taken dose.

    Walks back from ``today`` for at most ``lookback_days`` days and stops at
    the first successful day. Days with no record count as missed.
    """
    outcomes = group_by_date(records)
    cursor = _as_date(today)

    missed = 0
    for _ in range(lookback_days):
        if outcomes.get(cursor, False):
            break
        missed += 1
        cursor -= timedelta(days=1)
    return missed


def adherence_ratio(records: Iterable[Any]) -> Optional[float]:
    """Share of records marked taken, or None when there are no records"""
    records = list(records)
    if not records:
        return None
    taken = sum(1 for record in records if _get(record, "taken"))
    return taken / len(records)
