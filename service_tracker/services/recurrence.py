"""
Recurrence and due-status math.

Everything here works on calendar dates: datetimes are truncated to their
date before any arithmetic, so results never carry a fractional day and are
unaffected by daylight-saving shifts.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Optional

import pandas as pd

from service_tracker.models import DueBucket, DueStatus

DATE_FMT = "%Y-%m-%d"

DUE_WINDOWS = {
    "today": 0,
    "week": 7,
    "month": 30,
}


def parse_date(value: Any) -> Optional[date]:
    """Coerce a date-like value to a ``date``; None when absent or unparseable."""
    if value is None or value is pd.NaT:
        return None
    # pd.Timestamp is a datetime subclass
    if isinstance(value, datetime):
        return _local_date(value)
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    try:
        return datetime.strptime(s, DATE_FMT).date()
    except ValueError:
        pass
    # full ISO timestamps, e.g. from a date picker, keep only their date
    if "T" not in s:
        return None
    try:
        return _local_date(datetime.fromisoformat(s.replace("Z", "+00:00")))
    except ValueError:
        return None


def _local_date(value: datetime) -> date:
    """Calendar date of a datetime; offset-aware values are read in local time."""
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if value.tzinfo is not None:
        value = value.astimezone()
    return value.date()


def parse_interval(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    s = str(value).strip()
    if not s:
        return None
    try:
        return int(s)
    except ValueError:
        return None


def next_service_date(last_service_date: Any, interval_days: Any) -> Optional[date]:
    last = parse_date(last_service_date)
    interval = parse_interval(interval_days)
    if last is None or interval is None or interval <= 0:
        return None
    return last + timedelta(days=interval)


def days_until(next_date: Any, now: Any) -> int:
    due = parse_date(next_date)
    today = parse_date(now)
    if due is None or today is None:
        raise ValueError(f"Cannot compare {next_date!r} with {now!r}")
    return (due - today).days


def bucket_for(days_remaining: int, soon_days: int = 7) -> DueBucket:
    if days_remaining < 0:
        return DueBucket.OVERDUE
    if days_remaining == 0:
        return DueBucket.DUE_TODAY
    if days_remaining <= soon_days:
        return DueBucket.DUE_SOON
    return DueBucket.SCHEDULED


def classify(next_date: Any, now: Any, soon_days: int = 7) -> DueStatus:
    """Place a next-service date into exactly one due bucket relative to ``now``."""
    days = days_until(next_date, now)
    return DueStatus(bucket=bucket_for(days, soon_days), days_remaining=days)


def is_within(days_remaining: int, window_days: int) -> bool:
    """Window membership. Windows overlap: an overdue unit is in every window."""
    return days_remaining <= window_days


def window_days(name: str) -> int:
    try:
        return DUE_WINDOWS[name]
    except KeyError:
        raise ValueError(
            f"Unknown due window '{name}', expected one of {', '.join(DUE_WINDOWS)}"
        ) from None
