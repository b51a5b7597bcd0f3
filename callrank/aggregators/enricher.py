"""
callrank/aggregators/enricher.py
Attaches a display identity to each accumulator.

DISPLAY NAME PRIORITY (first applicable wins):
  1. Contact lookup display name, when the lookup matched
  2. "Private Number" for the PRIVATE key
  3. Caller name carried on the call log, unless it is just the number
  4. The number formatted for display

Lookups are cached by canonical key for one enrich() call, misses
included. A lookup that raises degrades only that caller's identity.

After enrichment, callers that resolved to the same contact id (one
person, several numbers) are merged into one statistic.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Dict, List, Optional

from callrank.aggregators.caller_aggregator import AccumulatorTable, CallerAccumulator
from callrank.contacts.base import ContactLookup, NullContactLookup
from callrank.models.record import PRIVATE_KEY, CallerStatistic, ContactInfo
from callrank.utils.phone_numbers import format_for_display

logger = logging.getLogger(__name__)

PRIVATE_DISPLAY_NAME = 'Private Number'

_MISS = object()


class ContactEnricher:

    def __init__(self, lookup: Optional[ContactLookup] = None):
        self.lookup = lookup or NullContactLookup()
        self._cache: Dict[str, object] = {}
        self._lock = threading.Lock()
        self.lookup_calls = 0
        self.lookup_failures = 0

    # ── LOOKUP WITH CACHE ────────────────────────────────────
    def resolve(self, key: str, phone_number: str) -> Optional[ContactInfo]:
        if key == PRIVATE_KEY:
            return None
        with self._lock:
            cached = self._cache.get(key, _MISS)
        if cached is not _MISS:
            return cached  # type: ignore[return-value]

        info: Optional[ContactInfo] = None
        failed = False
        try:
            info = self.lookup.lookup(phone_number)
        except Exception as e:
            failed = True
            logger.warning(f"Contact lookup failed for one caller: {type(e).__name__}: {e}")

        with self._lock:
            self.lookup_calls += 1
            self.lookup_failures += int(failed)
            self._cache[key] = info
        return info

    # ── ENRICHMENT ───────────────────────────────────────────
    def enrich(self, table: AccumulatorTable) -> List[CallerStatistic]:
        """One unranked CallerStatistic per contact (or per key when unmatched)."""
        with self._lock:
            self._cache = {}
            self.lookup_calls = 0
            self.lookup_failures = 0

        stats = [self._to_statistic(acc) for acc in table]
        merged = merge_by_contact_id(stats)

        logger.info(
            f"Enriched {len(table)} callers → {len(merged)} statistics "
            f"({self.lookup_failures} lookup failures)"
        )
        return merged

    def _to_statistic(self, acc: CallerAccumulator) -> CallerStatistic:
        raw  = acc.raw_number
        info = self.resolve(acc.canonical_key, raw)

        return CallerStatistic(
            canonical_key    = acc.canonical_key,
            phone_number     = raw,
            display_name     = display_name_for(acc, info),
            contact_id       = info.contact_id if info else None,
            photo_uri        = (info.photo_uri if info else None) or acc.caller_photo,
            total_calls      = acc.total_calls,
            incoming_calls   = acc.incoming_calls,
            outgoing_calls   = acc.outgoing_calls,
            missed_calls     = acc.missed_calls,
            total_duration   = acc.total_duration,
            average_duration = _average(acc.total_duration, acc.incoming_calls + acc.outgoing_calls),
            first_call_ms    = acc.first_call_ms or 0,
            last_call_ms     = acc.last_call_ms or 0,
        )


def display_name_for(acc: CallerAccumulator, info: Optional[ContactInfo]) -> str:
    if info is not None and info.display_name:
        return info.display_name
    if acc.canonical_key == PRIVATE_KEY:
        return PRIVATE_DISPLAY_NAME
    name = acc.caller_name
    if name and name.strip() and name != acc.raw_number:
        return name
    return format_for_display(acc.raw_number)


def merge_by_contact_id(stats: List[CallerStatistic]) -> List[CallerStatistic]:
    """Merge statistics that share a contact id; unmatched ones pass through."""
    groups: Dict[str, List[CallerStatistic]] = defaultdict(list)
    passthrough: List[CallerStatistic] = []
    for stat in stats:
        if stat.contact_id is None:
            passthrough.append(stat)
        else:
            groups[stat.contact_id].append(stat)

    merged = [
        entries[0] if len(entries) == 1 else _merge(entries)
        for entries in groups.values()
    ]
    return merged + passthrough


def _merge(entries: List[CallerStatistic]) -> CallerStatistic:
    primary = min(entries, key=lambda s: (-s.total_calls, s.canonical_key))
    incoming = sum(s.incoming_calls for s in entries)
    outgoing = sum(s.outgoing_calls for s in entries)
    duration = sum(s.total_duration for s in entries)
    return CallerStatistic(
        canonical_key    = primary.canonical_key,
        phone_number     = primary.phone_number,
        display_name     = primary.display_name,
        contact_id       = primary.contact_id,
        photo_uri        = primary.photo_uri,
        total_calls      = sum(s.total_calls for s in entries),
        incoming_calls   = incoming,
        outgoing_calls   = outgoing,
        missed_calls     = sum(s.missed_calls for s in entries),
        total_duration   = duration,
        average_duration = _average(duration, incoming + outgoing),
        first_call_ms    = min(s.first_call_ms for s in entries),
        last_call_ms     = max(s.last_call_ms for s in entries),
    )


def _average(total_duration: int, connected_calls: int) -> int:
    return total_duration // connected_calls if connected_calls > 0 else 0
