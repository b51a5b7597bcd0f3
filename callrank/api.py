"""
callrank/api.py
─────────────────────────────────────────────────────────────────────────────
callrank — Dual-mode API layer

TWO USAGE MODES:
  1. Importable module:
         from callrank.api import CallRankAPI
         api = CallRankAPI(db_path=Path("callrank.db"))
         top = api.get_rankings(category="MOST_TALKED", limit=10)

  2. FastAPI HTTP server:
         python -m callrank.api                   # default: port 8766
         python -m callrank.api --port 9000
         uvicorn callrank.api:app --port 8766

ENDPOINTS:
  GET  /health            — server status and db existence
  GET  /rankings          — ranked callers for a time range and category
  GET  /callers/{key}     — single caller by canonical key (or PRIVATE)
  GET  /summary           — aggregate totals for a time range
  GET  /activity          — calls per day (last N days), this week and last week
  GET  /global            — shared counters and per-user averages (if sync enabled)
  POST /refresh           — re-read the call log and rebuild rankings
  POST /sync              — contribute anonymous counts (if enabled in config)

PRIVACY NOTE:
  The server binds to 127.0.0.1 only. The only outbound request this
  module can trigger is POST /sync, and only when backend sync is enabled.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from callrank.config import (
    counter_store_from_config, load_config, sync_settings_from_config,
)
from callrank.contacts.json_lookup import JsonContactLookup
from callrank.models.record import ALL_TIME, MOST_CALLED, MOST_TALKED, WEEKLY
from callrank.pipeline import CallStatsService, directory_source
from callrank.store.sqlite_store import StatsStore, statistic_to_dict
from callrank.sync.delta_engine import SyncDeltaEngine

logger = logging.getLogger(__name__)

VERSION = '1.0.0'

TIME_RANGES = (ALL_TIME, WEEKLY)
CATEGORIES  = (MOST_CALLED, MOST_TALKED)


# ═══════════════════════════════════════════════════════════════════════════
# IMPORTABLE CLASS
# ═══════════════════════════════════════════════════════════════════════════

class CallRankAPI:
    """
    Pure-Python API wrapper around callrank.db.
    No HTTP layer required — import and call directly.
    """

    def __init__(self, db_path: Path = Path("callrank.db"), config: Optional[Dict[str, Any]] = None):
        self.db_path = Path(db_path)
        self.config  = config if config is not None else load_config(Path.cwd())
        self._store: Optional[StatsStore] = None
        self._engine: Optional[SyncDeltaEngine] = None

    # ── INTERNAL ──────────────────────────────────────────────────────────

    @property
    def store(self) -> StatsStore:
        if self._store is None:
            self._store = StatsStore(self.db_path)
        return self._store

    @property
    def engine(self) -> SyncDeltaEngine:
        # one engine per API instance so its in-flight guard covers every request
        if self._engine is None:
            self._engine = SyncDeltaEngine(
                settings    = sync_settings_from_config(self.config),
                store       = counter_store_from_config(self.config),
                checkpoints = self.store,
            )
        return self._engine

    def _service(self, calls_dir: Optional[Path] = None) -> CallStatsService:
        calls_dir = calls_dir or Path(self.config.get("calls_dir") or ".")
        contacts  = self.config.get("contacts_file")
        lookup    = JsonContactLookup.from_file(Path(contacts)) if contacts else None
        return CallStatsService(directory_source(calls_dir), self.store, lookup=lookup, engine=self.engine)

    def _db_exists(self) -> bool:
        return self.db_path.exists()

    @staticmethod
    def _check(time_range: str, category: str = MOST_CALLED) -> None:
        if time_range not in TIME_RANGES:
            raise ValueError(f"time_range must be one of {TIME_RANGES}")
        if category not in CATEGORIES:
            raise ValueError(f"category must be one of {CATEGORIES}")

    # ── QUERIES ───────────────────────────────────────────────────────────

    def get_rankings(
        self,
        time_range: str = ALL_TIME,
        category:   str = MOST_CALLED,
        limit:      int = 50,
        offset:     int = 0,
    ) -> List[Dict[str, Any]]:
        """Ranked callers. limit is capped at 500."""
        time_range, category = time_range.upper(), category.upper()
        self._check(time_range, category)
        if not self._db_exists():
            return []
        stats = self.store.load_statistics(
            time_range, category, limit=min(int(limit), 500), offset=offset,
        )
        return [statistic_to_dict(s) for s in stats]

    def get_caller(self, key: str, time_range: str = ALL_TIME) -> Optional[Dict[str, Any]]:
        time_range = time_range.upper()
        self._check(time_range)
        if not self._db_exists():
            return None
        stat = self.store.get_statistic(time_range, key)
        return statistic_to_dict(stat) if stat else None

    def get_summary(self, time_range: str = ALL_TIME) -> Dict[str, Any]:
        time_range = time_range.upper()
        self._check(time_range)
        return asdict(self._service().rankings(time_range).summary)

    def get_activity(self, days: int = 35) -> Dict[str, Any]:
        service = self._service()
        return {
            "daily":     service.daily_call_counts(max(1, min(int(days), 366))),
            "week":      service.weekly_call_counts(),
            "last_week": service.last_week_call_counts(),
        }

    def get_global(self) -> Dict[str, Any]:
        """Shared counters beside local counts. available is False when sync is off or unreachable."""
        return asdict(self._service().global_stats())

    # ── ACTIONS ───────────────────────────────────────────────────────────

    def run_refresh(self, calls_dir: Optional[Path] = None, full_refresh: bool = False) -> Dict[str, Any]:
        """
        Re-read the call log and rebuild rankings.
        Raises ValueError if calls_dir does not exist.
        """
        if calls_dir is not None and not Path(calls_dir).is_dir():
            raise ValueError(f"calls_dir not found: {calls_dir}")
        report = self._service(calls_dir).refresh(full_refresh=full_refresh)
        return {
            "records_read": report.records_read,
            "new_records":  report.new_records,
            "summaries": {
                time_range: asdict(result.summary)
                for time_range, result in report.rankings.items()
            },
        }

    def run_sync(self) -> Dict[str, Any]:
        result = self._service().sync()
        if result is None:
            return {"status": "DISABLED"}
        return {
            "status":     result.status,
            "deltas":     asdict(result.deltas),
            "checkpoint": result.checkpoint.to_dict() if result.checkpoint else None,
            "error":      result.error,
        }


# ═══════════════════════════════════════════════════════════════════════════
# FASTAPI APP
# ═══════════════════════════════════════════════════════════════════════════

class RefreshRequest(BaseModel):
    calls_dir:    Optional[str] = None
    full_refresh: bool          = False


def _build_app(db_path: Path = Path("callrank.db"), config: Optional[Dict[str, Any]] = None) -> FastAPI:
    _app = FastAPI(
        title       = "callrank API",
        description = "Per-contact call rankings and summaries",
        version     = VERSION,
    )
    _api = CallRankAPI(db_path=db_path, config=config)

    @_app.get("/health", summary="Health check")
    def health():
        return {
            "status":       "ok",
            "db_exists":    _api.db_path.exists(),
            "db_path":      str(_api.db_path),
            "sync_enabled": _api.engine.enabled,
            "version":      VERSION,
        }

    @_app.get("/rankings", summary="Ranked callers")
    def get_rankings(
        time_range: str = Query(ALL_TIME,    description="ALL_TIME or WEEKLY"),
        category:   str = Query(MOST_CALLED, description="MOST_CALLED or MOST_TALKED"),
        limit:      int = Query(50, ge=1, le=500),
        offset:     int = Query(0,  ge=0),
    ):
        try:
            data = _api.get_rankings(time_range, category, limit=limit, offset=offset)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        return {"count": len(data), "callers": data}

    @_app.get("/callers/{key}", summary="Single caller")
    def get_caller(key: str, time_range: str = Query(ALL_TIME)):
        try:
            data = _api.get_caller(key, time_range)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        if data is None:
            raise HTTPException(status_code=404, detail=f"Caller not found: {key}")
        return data

    @_app.get("/summary", summary="Aggregate totals")
    def get_summary(time_range: str = Query(ALL_TIME)):
        try:
            return _api.get_summary(time_range)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    @_app.get("/activity", summary="Calls per day")
    def get_activity(days: int = Query(35, ge=1, le=366)):
        return _api.get_activity(days)

    @_app.get("/global", summary="Shared counters and averages")
    def get_global():
        return _api.get_global()

    @_app.post("/refresh", summary="Re-read the call log")
    def refresh(req: RefreshRequest):
        try:
            return _api.run_refresh(
                calls_dir    = Path(req.calls_dir) if req.calls_dir else None,
                full_refresh = req.full_refresh,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    @_app.post("/sync", summary="Contribute anonymous counts")
    def sync():
        return _api.run_sync()

    return _app


# Module-level app instance for uvicorn callrank.api:app
app = _build_app()


# ═══════════════════════════════════════════════════════════════════════════
# CLI ENTRYPOINT: python -m callrank.api
# ═══════════════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(
        prog        = "callrank.api",
        description = "callrank API server — serves rankings on localhost",
    )
    parser.add_argument("--port", type=int, default=8766,
                        help="Port to bind (default: 8766)")
    parser.add_argument("--db",   type=str, default="callrank.db",
                        help="Path to callrank.db (default: callrank.db)")
    parser.add_argument("--host", type=str, default="127.0.0.1",
                        help="Host to bind — DO NOT change to 0.0.0.0 on shared networks")
    args = parser.parse_args()

    logging.basicConfig(
        level  = logging.INFO,
        format = '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    )
    uvicorn.run(
        _build_app(db_path=Path(args.db)),
        host      = args.host,
        port      = args.port,
        log_level = "info",
    )
