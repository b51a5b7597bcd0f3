"""
callrank/models/counters.py
Shared-counter document and local sync checkpoint.

Remote document shape (all keys optional on read):
  {
    "total_users":        int,
    "total_global_calls": int,
    "today":  {"date": "YYYY-MM-DD", "calls": int, "active_users": int},
    "week":   {"week_start": "YYYY-MM-DD", "calls": int, "active_users": int},
    "contributors": {identity: {"last_total", "synced_today", "synced_week",
                                "day_label", "week_label"}}
  }

A payload that does not have this shape is read as a fresh zeroed state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class PeriodBucket:
    """Day or week bucket. label is the date (today) or week_start (week)."""
    label:        str = ''
    calls:        int = 0
    active_users: int = 0


@dataclass
class SyncCheckpoint:
    """What this installation has already contributed. Advanced only after a commit."""
    last_total:   int = 0
    synced_today: int = 0
    synced_week:  int = 0
    day_label:    str = ''
    week_label:   str = ''

    def synced_today_for(self, today_label: str) -> int:
        return self.synced_today if self.day_label == today_label else 0

    def synced_week_for(self, week_label: str) -> int:
        return self.synced_week if self.week_label == week_label else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'last_total':   self.last_total,
            'synced_today': self.synced_today,
            'synced_week':  self.synced_week,
            'day_label':    self.day_label,
            'week_label':   self.week_label,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional['SyncCheckpoint']:
        if not isinstance(data, dict):
            return None
        try:
            return cls(
                last_total   = _non_negative(data.get('last_total', 0)),
                synced_today = _non_negative(data.get('synced_today', 0)),
                synced_week  = _non_negative(data.get('synced_week', 0)),
                day_label    = str(data.get('day_label', '') or ''),
                week_label   = str(data.get('week_label', '') or ''),
            )
        except (TypeError, ValueError):
            return None


@dataclass
class GlobalCounterState:
    total_users:        int                       = 0
    total_global_calls: int                       = 0
    today:              PeriodBucket              = field(default_factory=PeriodBucket)
    week:               PeriodBucket              = field(default_factory=PeriodBucket)
    contributors:       Dict[str, SyncCheckpoint] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_users':        self.total_users,
            'total_global_calls': self.total_global_calls,
            'today': {
                'date':         self.today.label,
                'calls':        self.today.calls,
                'active_users': self.today.active_users,
            },
            'week': {
                'week_start':   self.week.label,
                'calls':        self.week.calls,
                'active_users': self.week.active_users,
            },
            'contributors': {
                identity: cp.to_dict() for identity, cp in self.contributors.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'GlobalCounterState':
        """Parse a remote payload. Absent or malformed payloads give a zeroed state."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            logger.warning(f"Malformed counter payload ({type(data).__name__}) — using zeroed state")
            return cls()
        try:
            today = data.get('today') or {}
            week  = data.get('week') or {}
            if not isinstance(today, dict) or not isinstance(week, dict):
                raise ValueError('period buckets must be objects')

            contributors: Dict[str, SyncCheckpoint] = {}
            raw_contributors = data.get('contributors') or {}
            if isinstance(raw_contributors, dict):
                for identity, raw in raw_contributors.items():
                    cp = SyncCheckpoint.from_dict(raw)
                    if cp is not None:
                        contributors[str(identity)] = cp

            return cls(
                total_users        = _non_negative(data.get('total_users', 0)),
                total_global_calls = _non_negative(data.get('total_global_calls', 0)),
                today = PeriodBucket(
                    label        = str(today.get('date', '') or ''),
                    calls        = _non_negative(today.get('calls', 0)),
                    active_users = _non_negative(today.get('active_users', 0)),
                ),
                week = PeriodBucket(
                    label        = str(week.get('week_start', '') or ''),
                    calls        = _non_negative(week.get('calls', 0)),
                    active_users = _non_negative(week.get('active_users', 0)),
                ),
                contributors = contributors,
            )
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Malformed counter payload: {e} — using zeroed state")
            return cls()


def _non_negative(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError('boolean is not a counter')
    return max(int(value or 0), 0)
