"""
callrank/sync/delta_engine.py
Contributes local call counts to the shared counter document without
double-counting across runs, days or weeks.

STATE MACHINE:
  IDLE → COMPUTING_DELTA → NOOP                     → IDLE
                         → SUBMITTING → COMMITTED   → IDLE
                                      → FAILED      → IDLE

CHECKPOINT RULES:
  - The local checkpoint records what this installation has already
    contributed (cumulative total, today's and this week's counts, and
    the day/week labels those counts belong to).
  - Stale labels mean nothing has been contributed yet for the new period.
  - The checkpoint is written only after the remote store confirms the
    commit. A failed or unreachable backend leaves it untouched, so the
    same (or a larger) delta is recomputed next time.

LOST CHECKPOINT WRITES:
  The same transaction that adds the deltas also stores this identity's
  new checkpoint under "contributors" in the shared document. If the
  process dies after the commit but before the local checkpoint write,
  the next merge sees the remote marker ahead of the local checkpoint and
  computes its deltas from the marker instead, so nothing is added twice.
  Markers last updated before the previous week are pruned on each merge,
  which bounds the document to the identities active in the last two
  weeks. An identity whose checkpoint write was lost and which then stays
  idle past that window loses the protection for that one commit.

CONCURRENCY:
  One sync per engine at a time. A second caller gets status BUSY
  instead of waiting. The remote merge is pure and may be re-run by the
  store on conflict.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional

from callrank.backend.base import (
    DEFAULT_MAX_RETRIES, BackendError, CounterStore, TransactionConflict,
)
from callrank.models.counters import GlobalCounterState, PeriodBucket, SyncCheckpoint
from callrank.models.record import DailyRollup
from callrank.utils.dates import day_label, shift_label, utc_now, week_start_label

logger = logging.getLogger(__name__)

# Engine states
IDLE            = 'IDLE'
COMPUTING_DELTA = 'COMPUTING_DELTA'
SUBMITTING      = 'SUBMITTING'

# Result statuses
NOOP      = 'NOOP'
COMMITTED = 'COMMITTED'
FAILED    = 'FAILED'
DISABLED  = 'DISABLED'
BUSY      = 'BUSY'


@dataclass(frozen=True)
class SyncSettings:
    """Kill switch and identity. Passed in explicitly, never read from globals."""
    enabled:     bool = False
    identity:    str  = ''
    max_retries: int  = DEFAULT_MAX_RETRIES


@dataclass(frozen=True)
class LocalTotals:
    total: int = 0
    today: int = 0
    week:  int = 0


@dataclass(frozen=True)
class Deltas:
    total: int = 0
    today: int = 0
    week:  int = 0

    @property
    def is_zero(self) -> bool:
        return self.total == 0 and self.today == 0 and self.week == 0


@dataclass
class SyncResult:
    status:     str
    deltas:     Deltas                   = field(default_factory=Deltas)
    checkpoint: Optional[SyncCheckpoint] = None
    error:      str                      = ''

    @property
    def committed(self) -> bool:
        return self.status == COMMITTED


# ── PURE FUNCTIONS ───────────────────────────────────────────

def compute_deltas(
    checkpoint:  SyncCheckpoint,
    totals:      LocalTotals,
    today_label: str,
    week_label:  str,
) -> Deltas:
    """Never negative. Stale day/week labels count as nothing synced yet."""
    return Deltas(
        total = max(0, totals.total - checkpoint.last_total),
        today = max(0, totals.today - checkpoint.synced_today_for(today_label)),
        week  = max(0, totals.week  - checkpoint.synced_week_for(week_label)),
    )


def next_checkpoint(totals: LocalTotals, today_label: str, week_label: str) -> SyncCheckpoint:
    return SyncCheckpoint(
        last_total   = totals.total,
        synced_today = totals.today,
        synced_week  = totals.week,
        day_label    = today_label,
        week_label   = week_label,
    )


def reconcile(
    local:       SyncCheckpoint,
    remote:      Optional[SyncCheckpoint],
    today_label: str,
    week_label:  str,
) -> SyncCheckpoint:
    """
    Effective checkpoint: the further-advanced of the local one and the
    marker stored remotely for this identity, per counter.
    """
    if remote is None:
        return local
    return SyncCheckpoint(
        last_total   = max(local.last_total, remote.last_total),
        synced_today = max(local.synced_today_for(today_label), remote.synced_today_for(today_label)),
        synced_week  = max(local.synced_week_for(week_label), remote.synced_week_for(week_label)),
        day_label    = today_label,
        week_label   = week_label,
    )


def build_merge(
    identity:    str,
    checkpoint:  SyncCheckpoint,
    totals:      LocalTotals,
    today_label: str,
    week_label:  str,
    applied:     Optional[Dict[str, Deltas]] = None,
) -> Callable[[Optional[Dict[str, Any]]], Dict[str, Any]]:
    """
    Pure (current document) -> new document function for CounterStore.transact.
    `applied['deltas']` receives the deltas of the latest invocation.
    """

    def merge(current: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        state  = GlobalCounterState.from_dict(current)
        marker = state.contributors.get(identity)
        base   = reconcile(checkpoint, marker, today_label, week_label)
        deltas = compute_deltas(base, totals, today_label, week_label)

        is_new_user = marker is None and checkpoint.last_total == 0

        today = state.today
        if today.label != today_label:
            today = PeriodBucket(label=today_label)
        week = state.week
        if week.label != week_label:
            week = PeriodBucket(label=week_label)

        oldest_kept  = shift_label(week_label, -7)
        contributors = {
            other: cp for other, cp in state.contributors.items()
            if cp.week_label >= oldest_kept
        }
        contributors[identity] = next_checkpoint(totals, today_label, week_label)

        merged = GlobalCounterState(
            total_users        = state.total_users + (1 if is_new_user else 0),
            total_global_calls = state.total_global_calls + deltas.total,
            today = PeriodBucket(
                label        = today_label,
                calls        = today.calls + deltas.today,
                active_users = today.active_users + (1 if deltas.today > 0 else 0),
            ),
            week = PeriodBucket(
                label        = week_label,
                calls        = week.calls + deltas.week,
                active_users = week.active_users + (1 if deltas.week > 0 else 0),
            ),
            contributors = contributors,
        )
        if applied is not None:
            applied['deltas'] = deltas
        return merged.to_dict()

    return merge


def local_totals(rollups: Iterable[DailyRollup], now: Optional[datetime] = None) -> LocalTotals:
    """Cumulative, today's and this week's call counts from UTC daily rollups."""
    today_label = day_label(now)
    week_label  = week_start_label(now)
    total = today = week = 0
    for r in rollups:
        total += r.total_calls
        if r.day == today_label:
            today += r.total_calls
        if week_label <= r.day <= today_label:
            week += r.total_calls
    return LocalTotals(total=total, today=today, week=week)


# ── ENGINE ───────────────────────────────────────────────────

class SyncDeltaEngine:
    """
    Usage:
        engine = SyncDeltaEngine(settings, store=FirebaseCounterStore(url), checkpoints=stats_store)
        result = engine.sync(LocalTotals(total=120, today=4, week=31))

    checkpoints is anything with load_checkpoint() and save_checkpoint(cp),
    normally the local StatsStore. store=None means no backend.
    """

    def __init__(
        self,
        settings:    SyncSettings,
        store:       Optional[CounterStore],
        checkpoints,
        clock:       Callable[[], datetime] = utc_now,
    ):
        self.settings    = settings
        self.store       = store
        self.checkpoints = checkpoints
        self.clock       = clock
        self.state       = IDLE
        self._guard      = threading.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self.settings.enabled and self.settings.identity and self.store is not None)

    def sync(self, totals: LocalTotals) -> SyncResult:
        if not self.enabled:
            logger.debug("Backend sync disabled — local-only mode")
            return SyncResult(status=DISABLED)

        if not self._guard.acquire(blocking=False):
            logger.info("Sync already in progress — skipped")
            return SyncResult(status=BUSY)
        try:
            return self._run(totals)
        finally:
            self._set_state(IDLE)
            self._guard.release()

    def read_global(self) -> Optional[GlobalCounterState]:
        """Current shared counters, or None when sync is off or the backend is unreachable."""
        if not self.enabled:
            return None
        if not self.store.is_available():
            logger.warning("Counter backend not reachable — global stats skipped")
            return None
        try:
            return GlobalCounterState.from_dict(self.store.read())
        except BackendError as e:
            logger.warning(f"Global stats read failed: {e}")
            return None

    def _run(self, totals: LocalTotals) -> SyncResult:
        self._set_state(COMPUTING_DELTA)
        now         = self.clock()
        today_label = day_label(now)
        week_label  = week_start_label(now)
        checkpoint  = self.checkpoints.load_checkpoint()
        deltas      = compute_deltas(checkpoint, totals, today_label, week_label)

        if deltas.is_zero:
            logger.info("Nothing new to contribute")
            return SyncResult(status=NOOP, deltas=deltas, checkpoint=checkpoint)

        self._set_state(SUBMITTING)
        applied: Dict[str, Deltas] = {}
        merge = build_merge(
            self.settings.identity, checkpoint, totals, today_label, week_label, applied,
        )
        try:
            self.store.transact(merge, max_retries=self.settings.max_retries)
        except TransactionConflict as e:
            logger.warning(f"Sync failed — conflict retries exhausted: {e}")
            return SyncResult(status=FAILED, deltas=deltas, checkpoint=checkpoint, error=str(e))
        except BackendError as e:
            logger.warning(f"Sync failed — backend unavailable: {e}")
            return SyncResult(status=FAILED, deltas=deltas, checkpoint=checkpoint, error=str(e))

        new_checkpoint = next_checkpoint(totals, today_label, week_label)
        applied_deltas = applied.get('deltas', deltas)
        try:
            self.checkpoints.save_checkpoint(new_checkpoint)
        except Exception as e:
            # the remote marker already holds new_checkpoint, so the next merge reconciles to it
            logger.error(f"Counters committed but local checkpoint write failed: {e}")
            return SyncResult(
                status     = FAILED,
                deltas     = applied_deltas,
                checkpoint = checkpoint,
                error      = f"checkpoint write failed: {e}",
            )

        try:
            self.store.write_user(self.settings.identity, {
                'total_calls':  totals.total,
                'last_updated': int(now.timestamp() * 1000),
            })
        except BackendError as e:
            logger.warning(f"Per-user summary write failed (counters committed): {e}")

        logger.info(
            f"Sync committed: +{applied_deltas.total} total, "
            f"+{applied_deltas.today} today, +{applied_deltas.week} week"
        )
        return SyncResult(status=COMMITTED, deltas=applied_deltas, checkpoint=new_checkpoint)

    def _set_state(self, state: str) -> None:
        logger.debug(f"Sync state: {self.state} → {state}")
        self.state = state
