"""
callrank/utils/dates.py
UTC period labels shared by daily rollups and the sync engine.
Both sides must agree on the labels or the day/week deltas drift.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

DAY_MS = 24 * 60 * 60 * 1000
LABEL_FORMAT = '%Y-%m-%d'


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return utc_now()
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def day_label(now: Optional[datetime] = None) -> str:
    return _as_utc(now).strftime(LABEL_FORMAT)


def week_start_label(now: Optional[datetime] = None) -> str:
    """Monday of the current UTC week."""
    current = _as_utc(now)
    monday = current - timedelta(days=current.weekday())
    return monday.strftime(LABEL_FORMAT)


def day_label_for_ms(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime(LABEL_FORMAT)


def is_representable_ms(timestamp_ms: int) -> bool:
    """True when the timestamp maps to a calendar date (and so a day label)."""
    try:
        datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return False
    return True


def start_of_day_ms(now: Optional[datetime] = None) -> int:
    current = _as_utc(now)
    midnight = current.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


def weekly_cutoff_ms(now: Optional[datetime] = None) -> int:
    """00:00 UTC seven days ago."""
    return start_of_day_ms(now) - 7 * DAY_MS


def days_back_labels(days: int, now: Optional[datetime] = None) -> List[str]:
    """Labels for the last `days` days, oldest first, today last."""
    current = _as_utc(now)
    return [
        (current - timedelta(days=offset)).strftime(LABEL_FORMAT)
        for offset in range(days - 1, -1, -1)
    ]


def shift_label(label: str, days: int) -> str:
    """The day label `days` days after `label` (negative goes back)."""
    shifted = datetime.strptime(label, LABEL_FORMAT) + timedelta(days=days)
    return shifted.strftime(LABEL_FORMAT)
