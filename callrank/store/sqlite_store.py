"""
callrank/store/sqlite_store.py
Local durable store (SQLite).

SCHEMA DESIGN NOTES:
- caller_stats holds raw accumulators by canonical key so an incremental
  refresh can continue the fold from where the last one stopped
- caller_rankings holds the latest enriched + ranked snapshot per time range
  (what the CLI and API read)
- daily_stats holds per-day rollups (UTC day labels)
- folded_records is the ledger of record ids already folded into
  caller_stats and daily_stats, so records arriving out of order are
  folded exactly once
- sync_metadata is a plain key → value table: schema version and the
  sync checkpoint
- All timestamps are INTEGER milliseconds (Unix epoch * 1000)

Writes run in one transaction each; on failure they roll back and re-raise.
fold_records() writes accumulators, rollups and ledger together.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set

from callrank.aggregators.caller_aggregator import CallerAccumulator
from callrank.models.counters import SyncCheckpoint
from callrank.models.record import MOST_CALLED, MOST_TALKED, CallerStatistic, DailyRollup

logger = logging.getLogger(__name__)

SCHEMA_VERSION = '1.0'

# Checkpoint keys in sync_metadata
CP_LAST_TOTAL   = 'last_total'
CP_SYNCED_TODAY = 'synced_today'
CP_SYNCED_WEEK  = 'synced_week'
CP_DAY_LABEL    = 'last_day_str'
CP_WEEK_LABEL   = 'last_week_str'

ORDER_BY = {
    MOST_CALLED: 'rank_by_count ASC',
    MOST_TALKED: 'rank_by_duration ASC',
}


class StatsStore:

    def __init__(self, db_path: Path = Path('callrank.db')):
        self.db_path = Path(db_path)
        with self._transaction() as conn:
            _create_schema(conn)

    # ── INTERNAL ─────────────────────────────────────────────
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"SQLite write failed: {e}")
            raise
        finally:
            conn.close()

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    # ── FOLD ─────────────────────────────────────────────────
    def fold_records(
        self,
        accumulators: List[CallerAccumulator],
        rollups:      List[DailyRollup],
        record_ids:   Iterable[str],
    ) -> None:
        """
        Persist one incremental fold: updated accumulators, updated daily
        rollups and the ids of the records they now include. A failure
        leaves all three as they were.
        """
        acc_rows   = [_accumulator_row(acc) for acc in accumulators]
        daily_rows = [_daily_row(r) for r in rollups]
        id_rows    = [(rid,) for rid in record_ids]
        with self._transaction() as conn:
            if acc_rows:
                conn.executemany("""
                    INSERT OR REPLACE INTO caller_stats
                    (canonical_key, type_counts, total_calls, total_duration,
                     first_call_ms, last_call_ms, phone_number, phone_number_ms,
                     contact_name, contact_name_ms, photo_uri, photo_uri_ms)
                    VALUES (?,?,?,?,?,?,?,?,?,?,?,?)
                """, acc_rows)
            if daily_rows:
                conn.executemany("""
                    INSERT OR REPLACE INTO daily_stats
                    (day, total_calls, total_duration, incoming_calls, outgoing_calls, missed_calls)
                    VALUES (?,?,?,?,?,?)
                """, daily_rows)
            if id_rows:
                conn.executemany(
                    "INSERT OR IGNORE INTO folded_records (record_id) VALUES (?)", id_rows,
                )
        logger.debug(
            f"Folded {len(id_rows)} records: {len(acc_rows)} accumulator rows, "
            f"{len(daily_rows)} daily rows"
        )

    def folded_record_ids(self) -> Set[str]:
        with self._reader() as conn:
            rows = conn.execute("SELECT record_id FROM folded_records").fetchall()
        return {r['record_id'] for r in rows}

    # ── ACCUMULATORS ─────────────────────────────────────────
    def load_accumulators(self) -> List[CallerAccumulator]:
        with self._reader() as conn:
            rows = conn.execute("SELECT * FROM caller_stats ORDER BY canonical_key").fetchall()
        return [_accumulator_from_row(r) for r in rows]

    # ── RANKED SNAPSHOTS ─────────────────────────────────────
    def save_statistics(self, stats: List[CallerStatistic], time_range: str) -> None:
        """Replace the ranked snapshot for one time range."""
        rows = [
            (time_range, s.canonical_key, s.phone_number, s.display_name,
             s.contact_id, s.photo_uri, s.total_calls, s.incoming_calls,
             s.outgoing_calls, s.missed_calls, s.total_duration,
             s.average_duration, s.first_call_ms, s.last_call_ms,
             s.rank_by_count, s.rank_by_duration)
            for s in stats
        ]
        with self._transaction() as conn:
            conn.execute("DELETE FROM caller_rankings WHERE time_range = ?", (time_range,))
            conn.executemany("""
                INSERT INTO caller_rankings
                (time_range, canonical_key, phone_number, display_name,
                 contact_id, photo_uri, total_calls, incoming_calls,
                 outgoing_calls, missed_calls, total_duration,
                 average_duration, first_call_ms, last_call_ms,
                 rank_by_count, rank_by_duration)
                VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
            """, rows)
        logger.debug(f"Wrote {len(rows)} {time_range} ranking rows")

    def load_statistics(
        self,
        time_range: str,
        category:   str = MOST_CALLED,
        limit:      Optional[int] = None,
        offset:     int = 0,
    ) -> List[CallerStatistic]:
        if category not in ORDER_BY:
            raise ValueError(f"Unknown ranking category: {category}")
        sql = f"SELECT * FROM caller_rankings WHERE time_range = ? ORDER BY {ORDER_BY[category]}"
        params: list = [time_range]
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params += [int(limit), max(int(offset), 0)]
        with self._reader() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_statistic_from_row(r) for r in rows]

    def get_statistic(self, time_range: str, canonical_key: str) -> Optional[CallerStatistic]:
        with self._reader() as conn:
            row = conn.execute(
                "SELECT * FROM caller_rankings WHERE time_range = ? AND canonical_key = ?",
                (time_range, canonical_key),
            ).fetchone()
        return _statistic_from_row(row) if row else None

    # ── DAILY ROLLUPS ────────────────────────────────────────
    def load_daily(self) -> Dict[str, DailyRollup]:
        return {r.day: r for r in self.daily_since('')}

    def daily_since(self, day: str) -> List[DailyRollup]:
        with self._reader() as conn:
            rows = conn.execute(
                "SELECT * FROM daily_stats WHERE day >= ? ORDER BY day ASC", (day,)
            ).fetchall()
        return [
            DailyRollup(
                day            = r['day'],
                total_calls    = r['total_calls'],
                total_duration = r['total_duration'],
                incoming_calls = r['incoming_calls'],
                outgoing_calls = r['outgoing_calls'],
                missed_calls   = r['missed_calls'],
            )
            for r in rows
        ]

    # ── METADATA ─────────────────────────────────────────────
    def get_metadata(self, key: str) -> Optional[str]:
        with self._reader() as conn:
            row = conn.execute("SELECT value FROM sync_metadata WHERE key = ?", (key,)).fetchone()
        return row['value'] if row else None

    def set_metadata(self, key: str, value) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sync_metadata (key, value) VALUES (?, ?)",
                (key, str(value)),
            )

    # ── SYNC CHECKPOINT ──────────────────────────────────────
    def load_checkpoint(self) -> SyncCheckpoint:
        with self._reader() as conn:
            rows = conn.execute(
                "SELECT key, value FROM sync_metadata WHERE key IN (?,?,?,?,?)",
                (CP_LAST_TOTAL, CP_SYNCED_TODAY, CP_SYNCED_WEEK, CP_DAY_LABEL, CP_WEEK_LABEL),
            ).fetchall()
        values = {r['key']: r['value'] for r in rows}
        checkpoint = SyncCheckpoint.from_dict({
            'last_total':   values.get(CP_LAST_TOTAL, 0),
            'synced_today': values.get(CP_SYNCED_TODAY, 0),
            'synced_week':  values.get(CP_SYNCED_WEEK, 0),
            'day_label':    values.get(CP_DAY_LABEL, ''),
            'week_label':   values.get(CP_WEEK_LABEL, ''),
        })
        if checkpoint is None:
            logger.warning("Stored sync checkpoint unreadable — starting from zero")
            return SyncCheckpoint()
        return checkpoint

    def save_checkpoint(self, checkpoint: SyncCheckpoint) -> None:
        """All five keys in one transaction."""
        with self._transaction() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO sync_metadata (key, value) VALUES (?, ?)",
                [
                    (CP_LAST_TOTAL,   str(checkpoint.last_total)),
                    (CP_SYNCED_TODAY, str(checkpoint.synced_today)),
                    (CP_SYNCED_WEEK,  str(checkpoint.synced_week)),
                    (CP_DAY_LABEL,    checkpoint.day_label),
                    (CP_WEEK_LABEL,   checkpoint.week_label),
                ],
            )

    # ── RESET ────────────────────────────────────────────────
    def clear_and_reset(self) -> None:
        """
        Drop local statistics and the folded-record ledger.
        The sync checkpoint is kept: it records what was already contributed.
        """
        with self._transaction() as conn:
            conn.execute("DELETE FROM caller_stats")
            conn.execute("DELETE FROM caller_rankings")
            conn.execute("DELETE FROM daily_stats")
            conn.execute("DELETE FROM folded_records")
        logger.info("Local statistics cleared")


# ── SCHEMA ───────────────────────────────────────────────────

def _create_schema(conn: sqlite3.Connection) -> None:
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS caller_stats (
            canonical_key    TEXT PRIMARY KEY,
            type_counts      TEXT,    -- JSON object {call_type: count}
            total_calls      INTEGER DEFAULT 0,
            total_duration   INTEGER DEFAULT 0,
            first_call_ms    INTEGER,
            last_call_ms     INTEGER,
            phone_number     TEXT,
            phone_number_ms  INTEGER,
            contact_name     TEXT,
            contact_name_ms  INTEGER,
            photo_uri        TEXT,
            photo_uri_ms     INTEGER
        );

        CREATE TABLE IF NOT EXISTS caller_rankings (
            time_range       TEXT    NOT NULL,
            canonical_key    TEXT    NOT NULL,
            phone_number     TEXT,
            display_name     TEXT,
            contact_id       TEXT,
            photo_uri        TEXT,
            total_calls      INTEGER DEFAULT 0,
            incoming_calls   INTEGER DEFAULT 0,
            outgoing_calls   INTEGER DEFAULT 0,
            missed_calls     INTEGER DEFAULT 0,
            total_duration   INTEGER DEFAULT 0,
            average_duration INTEGER DEFAULT 0,
            first_call_ms    INTEGER,
            last_call_ms     INTEGER,
            rank_by_count    INTEGER,
            rank_by_duration INTEGER,
            PRIMARY KEY (time_range, canonical_key)
        );

        CREATE TABLE IF NOT EXISTS daily_stats (
            day              TEXT PRIMARY KEY,   -- YYYY-MM-DD (UTC)
            total_calls      INTEGER DEFAULT 0,
            total_duration   INTEGER DEFAULT 0,
            incoming_calls   INTEGER DEFAULT 0,
            outgoing_calls   INTEGER DEFAULT 0,
            missed_calls     INTEGER DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS folded_records (
            record_id        TEXT PRIMARY KEY    -- "{timestamp_ms}:{number}"
        );

        CREATE TABLE IF NOT EXISTS sync_metadata (
            key              TEXT PRIMARY KEY,
            value            TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_rank_count    ON caller_rankings(time_range, rank_by_count);
        CREATE INDEX IF NOT EXISTS idx_rank_duration ON caller_rankings(time_range, rank_by_duration);
    """)
    conn.execute(
        "INSERT OR IGNORE INTO sync_metadata (key, value) VALUES ('schema_version', ?)",
        (SCHEMA_VERSION,),
    )


# ── ROW MAPPING ──────────────────────────────────────────────

def _stamped_cols(stamped):
    return (stamped[1], stamped[0]) if stamped else (None, None)


def _accumulator_row(acc: CallerAccumulator) -> tuple:
    return (
        acc.canonical_key, json.dumps(acc.type_counts, sort_keys=True),
        acc.total_calls, acc.total_duration, acc.first_call_ms, acc.last_call_ms,
        *_stamped_cols(acc.phone_number),
        *_stamped_cols(acc.contact_name),
        *_stamped_cols(acc.photo_uri),
    )


def _daily_row(r: DailyRollup) -> tuple:
    return (r.day, r.total_calls, r.total_duration,
            r.incoming_calls, r.outgoing_calls, r.missed_calls)


def _stamped_from(row: sqlite3.Row, col: str):
    value = row[col]
    return (row[col + '_ms'], value) if value is not None else None


def _accumulator_from_row(row: sqlite3.Row) -> CallerAccumulator:
    try:
        type_counts = json.loads(row['type_counts'] or '{}')
    except json.JSONDecodeError:
        type_counts = {}
    return CallerAccumulator(
        canonical_key  = row['canonical_key'],
        type_counts    = {str(k): int(v) for k, v in type_counts.items()},
        total_calls    = row['total_calls'],
        total_duration = row['total_duration'],
        first_call_ms  = row['first_call_ms'],
        last_call_ms   = row['last_call_ms'],
        phone_number   = _stamped_from(row, 'phone_number'),
        contact_name   = _stamped_from(row, 'contact_name'),
        photo_uri      = _stamped_from(row, 'photo_uri'),
    )


def _statistic_from_row(row: sqlite3.Row) -> CallerStatistic:
    fields = CallerStatistic.__dataclass_fields__
    return CallerStatistic(**{k: row[k] for k in row.keys() if k in fields})


def statistic_to_dict(stat: CallerStatistic) -> dict:
    return asdict(stat)
