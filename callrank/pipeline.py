"""
callrank/pipeline.py
Wires record source → aggregation → enrichment → ranking, the local
store, and the optional backend sync.

Two independent paths share only the local daily totals:
  statistics:  refresh() — never touches the network
  sync:        sync()    — failures are reported, never raised into refresh()

global_stats() only reads the shared counters; it never writes them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from callrank.aggregators.caller_aggregator import (
    AccumulatorTable, aggregate, daily_rollups, filter_time_range,
)
from callrank.aggregators.enricher import ContactEnricher
from callrank.aggregators.ranking import apply_rankings, calculate_summary
from callrank.contacts.base import ContactLookup
from callrank.models.counters import PeriodBucket
from callrank.models.record import (
    ALL_TIME, WEEKLY, CallerStatistic, CallSummary, RawCallRecord,
)
from callrank.parsers.call_parser import parse_call_directory
from callrank.store.sqlite_store import StatsStore
from callrank.sync.delta_engine import (
    SyncDeltaEngine, SyncResult, local_totals,
)
from callrank.utils.dates import (
    day_label, days_back_labels, shift_label, utc_now, week_start_label,
)

logger = logging.getLogger(__name__)

RecordSource = Callable[[], Iterable[RawCallRecord]]


@dataclass
class RankingResult:
    time_range: str
    stats:      List[CallerStatistic]
    summary:    CallSummary


@dataclass
class RefreshReport:
    records_read: int = 0
    new_records:  int = 0
    rankings:     Dict[str, RankingResult] = field(default_factory=dict)


@dataclass
class GlobalStats:
    """Shared counters next to this installation's own counts."""
    available:          bool         = False
    total_users:        int          = 0
    total_global_calls: int          = 0
    today:              PeriodBucket = field(default_factory=PeriodBucket)
    week:               PeriodBucket = field(default_factory=PeriodBucket)
    average_today:      int          = 0     # calls per active user today
    average_week:       int          = 0     # calls per active user this week
    your_today:         int          = 0
    your_week:          int          = 0


def per_user_average(bucket: PeriodBucket) -> int:
    return bucket.calls // bucket.active_users if bucket.active_users > 0 else 0


def build_rankings(
    records:    Iterable[RawCallRecord],
    lookup:     Optional[ContactLookup] = None,
    time_range: str = ALL_TIME,
    now:        Optional[datetime] = None,
) -> RankingResult:
    """Single in-memory pass: filter → aggregate → enrich → rank → summarize."""
    table = aggregate(filter_time_range(records, time_range, now))
    return rank_table(table, lookup, time_range)


def rank_table(
    table:      AccumulatorTable,
    lookup:     Optional[ContactLookup] = None,
    time_range: str = ALL_TIME,
) -> RankingResult:
    stats = apply_rankings(ContactEnricher(lookup).enrich(table))
    return RankingResult(time_range=time_range, stats=stats, summary=calculate_summary(stats))


def directory_source(calls_dir: Path) -> RecordSource:
    return lambda: parse_call_directory(Path(calls_dir))


class CallStatsService:
    """
    Usage:
        service = CallStatsService(directory_source(Path("backups")), StatsStore(Path("callrank.db")))
        report  = service.refresh()
        result  = service.sync()
    """

    def __init__(
        self,
        source:  RecordSource,
        store:   StatsStore,
        lookup:  Optional[ContactLookup] = None,
        engine:  Optional[SyncDeltaEngine] = None,
        clock:   Callable[[], datetime] = utc_now,
    ):
        self.source = source
        self.store  = store
        self.lookup = lookup
        self.engine = engine
        self.clock  = clock

    # ── SOURCE ───────────────────────────────────────────────
    def _read_source(self) -> List[RawCallRecord]:
        try:
            return list(self.source() or [])
        except Exception as e:
            logger.warning(f"Record source unavailable — treating as empty: {e}")
            return []

    # ── STATISTICS PATH ──────────────────────────────────────
    def refresh(self, full_refresh: bool = False) -> RefreshReport:
        """
        Fold records not yet in the ledger into the stored accumulators and
        daily rollups, then rebuild and store both ranked snapshots.
        Records may arrive in any order; each record id is folded once.
        """
        if full_refresh:
            self.store.clear_and_reset()

        now     = self.clock()
        records = self._read_source()
        folded  = self.store.folded_record_ids()
        unseen: Dict[str, RawCallRecord] = {}
        for r in records:
            if r.record_id not in folded:
                unseen.setdefault(r.record_id, r)
        new = list(unseen.values())

        if new:
            table   = aggregate(new, seed=self.store.load_accumulators())
            rollups = daily_rollups(new, seed=self.store.load_daily())
            self.store.fold_records(list(table), list(rollups.values()), unseen.keys())
        else:
            table = AccumulatorTable(self.store.load_accumulators())

        all_time = rank_table(table, self.lookup, ALL_TIME)
        weekly   = build_rankings(records, self.lookup, WEEKLY, now)
        self.store.save_statistics(all_time.stats, ALL_TIME)
        self.store.save_statistics(weekly.stats, WEEKLY)

        logger.info(
            f"Refresh: {len(records)} records read, {len(new)} new, "
            f"{all_time.summary.unique_callers} callers all-time"
        )
        return RefreshReport(
            records_read = len(records),
            new_records  = len(new),
            rankings     = {ALL_TIME: all_time, WEEKLY: weekly},
        )

    def rankings(self, time_range: str = ALL_TIME) -> RankingResult:
        stats = self.store.load_statistics(time_range)
        return RankingResult(time_range=time_range, stats=stats, summary=calculate_summary(stats))

    # ── ACTIVITY SERIES ──────────────────────────────────────
    def daily_call_counts(self, days: int = 35) -> List[int]:
        """Calls per day for the last `days` days, oldest first, today last."""
        labels = days_back_labels(days, self.clock())
        by_day = {r.day: r.total_calls for r in self.store.daily_since(labels[0])} if labels else {}
        return [by_day.get(label, 0) for label in labels]

    def weekly_call_counts(self) -> List[int]:
        """Calls for each day of the current UTC week, Monday first."""
        now    = self.clock()
        monday = week_start_label(now)
        labels = [label for label in days_back_labels(7, now) if label >= monday]
        by_day = {r.day: r.total_calls for r in self.store.daily_since(monday)}
        counts = [by_day.get(label, 0) for label in labels]
        return counts + [0] * (7 - len(counts))

    def last_week_call_counts(self) -> List[int]:
        """Calls for each day of the previous UTC week, Monday first."""
        monday = shift_label(week_start_label(self.clock()), -7)
        labels = [shift_label(monday, offset) for offset in range(7)]
        by_day = {
            r.day: r.total_calls for r in self.store.daily_since(monday) if r.day <= labels[-1]
        }
        return [by_day.get(label, 0) for label in labels]

    # ── SYNC PATH ────────────────────────────────────────────
    def sync(self) -> Optional[SyncResult]:
        if self.engine is None:
            return None
        totals = local_totals(self.store.daily_since(''), self.clock())
        return self.engine.sync(totals)

    def global_stats(self) -> GlobalStats:
        """
        Shared counters for the current UTC day and week beside this
        installation's own counts. Buckets still labelled with an earlier
        period read as empty. available is False when sync is off or the
        backend cannot be read.
        """
        now   = self.clock()
        mine  = local_totals(self.store.daily_since(''), now)
        state = self.engine.read_global() if self.engine is not None else None
        if state is None:
            return GlobalStats(your_today=mine.today, your_week=mine.week)

        today_label = day_label(now)
        week_label  = week_start_label(now)
        today = state.today if state.today.label == today_label else PeriodBucket(label=today_label)
        week  = state.week if state.week.label == week_label else PeriodBucket(label=week_label)
        return GlobalStats(
            available          = True,
            total_users        = state.total_users,
            total_global_calls = state.total_global_calls,
            today              = today,
            week               = week,
            average_today      = per_user_average(today),
            average_week       = per_user_average(week),
            your_today         = mine.today,
            your_week          = mine.week,
        )
