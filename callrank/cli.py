"""
callrank/cli.py
Command-line interface for callrank.
Works on Windows, Linux, Mac, and Android Termux.

USAGE:
  python -m callrank.cli --calls-dir ./backups
  python -m callrank.cli --calls-dir ./backups --range weekly --category most-talked
  python -m callrank.cli --calls-dir ./backups --contacts contacts.json --top 20
  python -m callrank.cli --calls-dir ./backups --sync
  python -m callrank.cli --calls-dir ./backups --global

EXAMPLES:
  # Rank everyone in the backup, all time
  python -m callrank.cli --calls-dir "C:/Drive/SMSBackup"

  # Termux
  python -m callrank.cli --calls-dir /sdcard/SMSBackup --db /sdcard/callrank.db
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from callrank.config import (
    counter_store_from_config, ensure_config, sync_settings_from_config,
)
from callrank.contacts.json_lookup import JsonContactLookup
from callrank.models.record import ALL_TIME, MOST_CALLED, MOST_TALKED, WEEKLY
from callrank.aggregators.ranking import sort_by_category
from callrank.pipeline import CallStatsService, directory_source
from callrank.store.sqlite_store import StatsStore
from callrank.sync.delta_engine import COMMITTED, SyncDeltaEngine
from callrank.utils.durations import fmt_average, fmt_short

logger = logging.getLogger(__name__)

GREEN  = '\033[92m'
YELLOW = '\033[93m'
RED    = '\033[91m'
CYAN   = '\033[96m'
RESET  = '\033[0m'
BOLD   = '\033[1m'

RANGES     = {'weekly': WEEKLY, 'all': ALL_TIME}
CATEGORIES = {'most-called': MOST_CALLED, 'most-talked': MOST_TALKED}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog        = 'callrank',
        description = 'callrank — who calls you most, who you talk to longest',
        formatter_class = argparse.RawDescriptionHelpFormatter,
        epilog = """
PRIVACY:
  All statistics are computed locally. Backend sync is off unless
  backend_enabled and backend_url are set in callrank_config.json, and
  only anonymous call counts are ever sent.
        """
    )
    parser.add_argument(
        '--calls-dir', '-d',
        type = Path,
        help = 'Directory containing calls-*.xml files (default: from config / auto-detect)',
    )
    parser.add_argument(
        '--db', '-o',
        type = Path,
        help = 'Local SQLite database path (default: callrank.db)',
    )
    parser.add_argument(
        '--contacts', '-c',
        type = Path,
        help = 'Contacts JSON file for display names',
    )
    parser.add_argument(
        '--range', '-r',
        choices = sorted(RANGES),
        default = 'all',
        help    = 'Time range to display (default: all)',
    )
    parser.add_argument(
        '--category',
        choices = sorted(CATEGORIES),
        default = 'most-called',
        help    = 'Ranking to display (default: most-called)',
    )
    parser.add_argument(
        '--top', '-n',
        type    = int,
        default = 10,
        help    = 'Number of callers to show (default: 10)',
    )
    parser.add_argument(
        '--sync', '-s',
        action = 'store_true',
        help   = 'Contribute anonymous counts to the shared backend (if enabled in config)',
    )
    parser.add_argument(
        '--global', '-g',
        dest   = 'show_global',
        action = 'store_true',
        help   = 'Compare your calls today and this week with the shared per-user average',
    )
    parser.add_argument(
        '--full-refresh',
        action = 'store_true',
        help   = 'Discard stored statistics and re-read the whole call log',
    )
    parser.add_argument(
        '--verbose', '-v',
        action = 'store_true',
        help   = 'Enable debug logging',
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    # ── LOGGING SETUP ────────────────────────────────────────
    logging.basicConfig(
        level   = logging.DEBUG if args.verbose else logging.INFO,
        format  = '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt = '%H:%M:%S',
    )

    config    = ensure_config(Path.cwd())
    calls_dir = args.calls_dir or (Path(config['calls_dir']) if config.get('calls_dir') else None)
    if calls_dir is None:
        _print(f"{RED}Error: no call log directory. Pass --calls-dir.{RESET}")
        return 1
    if not calls_dir.exists():
        _print(f"{RED}Error: Directory not found: {calls_dir}{RESET}")
        return 1

    db_path       = args.db or Path(config.get('db_path') or 'callrank.db')
    contacts_file = args.contacts or (Path(config['contacts_file']) if config.get('contacts_file') else None)

    _banner()
    _print(f"Source directory : {CYAN}{calls_dir}{RESET}")
    _print(f"Database         : {CYAN}{db_path}{RESET}")
    _print("")

    store   = StatsStore(db_path)
    lookup  = JsonContactLookup.from_file(contacts_file) if contacts_file else None
    engine  = SyncDeltaEngine(
        settings    = sync_settings_from_config(config),
        store       = counter_store_from_config(config),
        checkpoints = store,
    )
    service = CallStatsService(directory_source(calls_dir), store, lookup=lookup, engine=engine)

    # ── REFRESH ──────────────────────────────────────────────
    _step("Reading call log...")
    t0     = time.time()
    report = service.refresh(full_refresh=args.full_refresh)
    _ok(f"{report.records_read} calls read, {report.new_records} new, in {_elapsed(t0)}")

    if report.records_read == 0 and not store.load_accumulators():
        _print(f"\n{YELLOW}No call records found in {calls_dir}{RESET}")
        _print("Check that files are named calls-*.xml")
        return 1

    # ── DISPLAY ──────────────────────────────────────────────
    time_range = RANGES[args.range]
    category   = CATEGORIES[args.category]
    result     = report.rankings[time_range]
    ranked     = sort_by_category(result.stats, category)

    title = 'Most Called' if category == MOST_CALLED else 'Most Talked'
    _print(f"\n{BOLD}{title} — {'Weekly' if time_range == WEEKLY else 'All Time'}{RESET}")
    for stat in ranked[:max(args.top, 0)]:
        rank = stat.rank_by_count if category == MOST_CALLED else stat.rank_by_duration
        _print(
            f"  {rank:>3}. {stat.display_name[:32]:<32} "
            f"{stat.total_calls:>5} calls  {fmt_short(stat.total_duration):>8}"
        )

    summary = result.summary
    _print(f"\n{BOLD}{GREEN}✓ Summary{RESET}")
    _print(f"  Callers    : {summary.unique_callers:,}")
    _print(f"  Calls      : {summary.total_calls:,}")
    _print(f"  Incoming   : {summary.total_incoming:,}")
    _print(f"  Outgoing   : {summary.total_outgoing:,}")
    _print(f"  Missed     : {summary.total_missed:,}")
    _print(f"  Talk time  : {fmt_short(summary.total_duration)}")
    _print(f"  Average    : {fmt_average(summary.total_duration, summary.total_incoming + summary.total_outgoing)}")

    # ── SYNC ─────────────────────────────────────────────────
    if args.sync:
        _step("Contributing anonymous counts...")
        sync_result = service.sync()
        if sync_result is not None and sync_result.status == COMMITTED:
            d = sync_result.deltas
            _ok(f"+{d.total} total, +{d.today} today, +{d.week} this week")
        elif sync_result is not None:
            _print(f"  {YELLOW}⚠ Sync {sync_result.status.lower()}{RESET}"
                   + (f": {sync_result.error}" if sync_result.error else ''))


    # ── GLOBAL ───────────────────────────────────────────────
    if args.show_global:
        stats = service.global_stats()
        if not stats.available:
            _print(f"\n  {YELLOW}⚠ Global stats unavailable (sync disabled or backend unreachable){RESET}")
        else:
            _print(f"\n{BOLD}You vs. Average{RESET}")
            _print(f"  Users      : {stats.total_users:,}")
            _print(f"  All calls  : {stats.total_global_calls:,}")
            _print(f"  Today      : you {stats.your_today:,}  average {stats.average_today:,}")
            _print(f"  This week  : you {stats.your_week:,}  average {stats.average_week:,}")

    return 0


# ── PRINT HELPERS ────────────────────────────────────────────

def _banner():
    _print(f"""
{BOLD}{CYAN}
  callrank — call log rankings
{RESET}""")

def _step(msg):  _print(f"  {CYAN}→{RESET} {msg}")
def _ok(msg):    _print(f"  {GREEN}✓{RESET} {msg}")
def _print(msg): print(msg)

def _elapsed(t0: float) -> str:
    s = time.time() - t0
    return f"{s:.1f}s" if s < 60 else f"{int(s//60)}m {int(s%60)}s"


if __name__ == '__main__':
    sys.exit(main())
