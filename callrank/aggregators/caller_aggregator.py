"""
callrank/aggregators/caller_aggregator.py
Per-caller accumulation.

Folds call records into one CallerAccumulator per canonical key. The
accumulators live in an AccumulatorTable (dict keyed by canonical key);
nothing else holds references to them during a pass.

ORDER INDEPENDENCE:
  Counters and durations are sums; first/last call are min/max.
  Name, photo and raw number come from the most recent record that
  carried one, ties broken by the larger value. Any permutation of the
  same records therefore gives identical accumulators.

FILTER:
  A record whose number is neither valid (>= 3 digits) nor private is
  dropped, as is a record whose timestamp has no calendar date.
  Private callers collapse to the PRIVATE key.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from callrank.models.record import (
    ALL_TIME, INCOMING, MISSED_TYPES, OUTGOING, WEEKLY,
    DailyRollup, RawCallRecord,
)
from callrank.utils.dates import day_label_for_ms, is_representable_ms, weekly_cutoff_ms
from callrank.utils.phone_numbers import (
    canonical_key, is_private_number, is_valid_phone_number,
)

logger = logging.getLogger(__name__)

# (timestamp_ms, value), compared as a tuple
Stamped = Tuple[int, str]


@dataclass
class CallerAccumulator:
    """Running totals for one canonical key during one aggregation pass."""
    canonical_key:  str
    type_counts:    Dict[str, int]    = field(default_factory=dict)
    total_calls:    int               = 0
    total_duration: int               = 0
    first_call_ms:  Optional[int]     = None
    last_call_ms:   Optional[int]     = None
    phone_number:   Optional[Stamped] = None
    contact_name:   Optional[Stamped] = None
    photo_uri:      Optional[Stamped] = None

    @property
    def incoming_calls(self) -> int:
        return self.type_counts.get(INCOMING, 0)

    @property
    def outgoing_calls(self) -> int:
        return self.type_counts.get(OUTGOING, 0)

    @property
    def missed_calls(self) -> int:
        return sum(self.type_counts.get(t, 0) for t in MISSED_TYPES)

    @property
    def raw_number(self) -> str:
        return self.phone_number[1] if self.phone_number else self.canonical_key

    @property
    def caller_name(self) -> Optional[str]:
        return self.contact_name[1] if self.contact_name else None

    @property
    def caller_photo(self) -> Optional[str]:
        return self.photo_uri[1] if self.photo_uri else None

    def add(self, record: RawCallRecord) -> None:
        self.type_counts[record.call_type] = self.type_counts.get(record.call_type, 0) + 1
        self.total_calls    += 1
        self.total_duration += max(record.duration_sec, 0)

        ts = record.timestamp_ms
        if self.first_call_ms is None or ts < self.first_call_ms:
            self.first_call_ms = ts
        if self.last_call_ms is None or ts > self.last_call_ms:
            self.last_call_ms = ts

        self.phone_number = _latest(self.phone_number, ts, record.phone_number)
        self.contact_name = _latest(self.contact_name, ts, record.contact_name)
        self.photo_uri    = _latest(self.photo_uri, ts, record.photo_uri)


class AccumulatorTable:
    """Keyed container of accumulators for one pass."""

    def __init__(self, seed: Optional[Iterable[CallerAccumulator]] = None):
        self._rows: Dict[str, CallerAccumulator] = {}
        for acc in seed or []:
            self._rows[acc.canonical_key] = copy.deepcopy(acc)

    def get_or_create(self, key: str) -> CallerAccumulator:
        acc = self._rows.get(key)
        if acc is None:
            acc = CallerAccumulator(canonical_key=key)
            self._rows[key] = acc
        return acc

    def get(self, key: str) -> Optional[CallerAccumulator]:
        return self._rows.get(key)

    def keys(self) -> List[str]:
        return sorted(self._rows)

    def __contains__(self, key: str) -> bool:
        return key in self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[CallerAccumulator]:
        for key in sorted(self._rows):
            yield self._rows[key]


# ── FILTERS ──────────────────────────────────────────────────

def should_keep(record: RawCallRecord) -> bool:
    if not is_representable_ms(record.timestamp_ms):
        logger.debug(f"Dropping record {record.record_id}: timestamp out of range")
        return False
    number = record.phone_number or ''
    return is_valid_phone_number(number) or is_private_number(number)


def filter_time_range(
    records:    Iterable[RawCallRecord],
    time_range: str = ALL_TIME,
    now:        Optional[datetime] = None,
) -> List[RawCallRecord]:
    """WEEKLY keeps records from 00:00 UTC seven days ago onward."""
    if time_range == WEEKLY:
        cutoff = weekly_cutoff_ms(now)
        return [r for r in records if r.timestamp_ms >= cutoff]
    if time_range != ALL_TIME:
        raise ValueError(f"Unknown time range: {time_range}")
    return list(records)


# ── AGGREGATION ──────────────────────────────────────────────

def aggregate(
    records: Iterable[RawCallRecord],
    seed:    Optional[Iterable[CallerAccumulator]] = None,
) -> AccumulatorTable:
    """
    Fold records into a table of per-caller accumulators.

    Args:
        records: Any iterable of RawCallRecord. None is treated as empty.
        seed:    Accumulators from a previous pass to continue from.
                 They are copied, never mutated.
    """
    table   = AccumulatorTable(seed)
    kept    = 0
    dropped = 0

    for record in records or []:
        if not should_keep(record):
            dropped += 1
            continue
        table.get_or_create(canonical_key(record.phone_number or '')).add(record)
        kept += 1

    logger.info(f"Aggregated {kept} calls into {len(table)} callers ({dropped} dropped)")
    return table


def daily_rollups(
    records: Iterable[RawCallRecord],
    seed:    Optional[Dict[str, DailyRollup]] = None,
) -> Dict[str, DailyRollup]:
    """Fold the same filtered records into UTC day buckets."""
    days: Dict[str, DailyRollup] = {
        label: copy.copy(rollup) for label, rollup in (seed or {}).items()
    }
    for record in records or []:
        if not should_keep(record):
            continue
        label  = day_label_for_ms(record.timestamp_ms)
        rollup = days.get(label)
        if rollup is None:
            rollup = days[label] = DailyRollup(day=label)
        rollup.total_calls    += 1
        rollup.total_duration += max(record.duration_sec, 0)
        if record.call_type == INCOMING:
            rollup.incoming_calls += 1
        elif record.call_type == OUTGOING:
            rollup.outgoing_calls += 1
        elif record.call_type in MISSED_TYPES:
            rollup.missed_calls += 1
    return days


def _latest(current: Optional[Stamped], ts: int, value: Optional[str]) -> Optional[Stamped]:
    if not value:
        return current
    candidate = (ts, value)
    if current is None or candidate > current:
        return candidate
    return current
