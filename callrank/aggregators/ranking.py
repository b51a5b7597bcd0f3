"""
callrank/aggregators/ranking.py
Dual dense ranking and summary totals over enriched caller statistics.

TIE-BREAK (part of the ranking contract):
  rank_by_count:    total_calls desc, then total_duration desc, then canonical_key asc
  rank_by_duration: total_duration desc, then total_calls desc, then canonical_key asc
  Canonical keys are unique after enrichment, so both orders are total
  and ranks are reproducible across runs. Ranks are 1..N with no gaps.
"""

from dataclasses import replace
from typing import Dict, List

from callrank.models.record import MOST_CALLED, MOST_TALKED, CallerStatistic, CallSummary


def _count_order(stat: CallerStatistic):
    return (-stat.total_calls, -stat.total_duration, stat.canonical_key)


def _duration_order(stat: CallerStatistic):
    return (-stat.total_duration, -stat.total_calls, stat.canonical_key)


def rank_by_count(stats: List[CallerStatistic]) -> List[CallerStatistic]:
    return [
        replace(stat, rank_by_count=i)
        for i, stat in enumerate(sorted(stats, key=_count_order), start=1)
    ]


def rank_by_duration(stats: List[CallerStatistic]) -> List[CallerStatistic]:
    return [
        replace(stat, rank_by_duration=i)
        for i, stat in enumerate(sorted(stats, key=_duration_order), start=1)
    ]


def apply_rankings(stats: List[CallerStatistic]) -> List[CallerStatistic]:
    """Both ranks on every statistic. Returned in rank_by_count order."""
    duration_ranks: Dict[str, int] = {
        s.canonical_key: s.rank_by_duration for s in rank_by_duration(stats)
    }
    return [
        replace(s, rank_by_duration=duration_ranks[s.canonical_key])
        for s in rank_by_count(stats)
    ]


def sort_by_category(stats: List[CallerStatistic], category: str) -> List[CallerStatistic]:
    """Ranked statistics in display order for MOST_CALLED or MOST_TALKED."""
    if category == MOST_CALLED:
        return sorted(stats, key=lambda s: s.rank_by_count)
    if category == MOST_TALKED:
        return sorted(stats, key=lambda s: s.rank_by_duration)
    raise ValueError(f"Unknown ranking category: {category}")


def calculate_summary(stats: List[CallerStatistic]) -> CallSummary:
    return CallSummary(
        total_calls    = sum(s.total_calls for s in stats),
        total_duration = sum(s.total_duration for s in stats),
        unique_callers = len(stats),
        total_incoming = sum(s.incoming_calls for s in stats),
        total_outgoing = sum(s.outgoing_calls for s in stats),
        total_missed   = sum(s.missed_calls for s in stats),
    )
