"""
tests/test_aggregator.py
Per-caller accumulation, filtering, time ranges and daily rollups.
"""

import itertools
import random
from datetime import datetime, timezone

import pytest

from callrank.aggregators.caller_aggregator import (
    AccumulatorTable, CallerAccumulator, aggregate, daily_rollups,
    filter_time_range, should_keep,
)
from callrank.models.record import (
    ALL_TIME, BLOCKED, INCOMING, MISSED, OUTGOING, PRIVATE_KEY, REJECTED,
    VOICEMAIL, WEEKLY, RawCallRecord,
)

NOW = datetime(2025, 1, 22, 15, 30, tzinfo=timezone.utc)   # Wednesday
DAY = 24 * 60 * 60 * 1000
NOW_MS = int(NOW.timestamp() * 1000)


def _rec(number, call_type=INCOMING, duration=0, ts=1_700_000_000_000, name=None, photo=None):
    return RawCallRecord(
        record_id    = f"{ts}:{number}",
        phone_number = number,
        call_type    = call_type,
        timestamp_ms = ts,
        duration_sec = duration,
        contact_name = name,
        photo_uri    = photo,
    )


def _snapshot(table):
    return [
        (a.canonical_key, a.total_calls, a.total_duration, sorted(a.type_counts.items()),
         a.first_call_ms, a.last_call_ms, a.phone_number, a.contact_name, a.photo_uri)
        for a in table
    ]


# ── AGGREGATION ──────────────────────────────────────────────

class TestAggregate:

    def test_formatting_variants_fold_together(self):
        table = aggregate([
            _rec('5551234567', INCOMING, 30),
            _rec('(555) 123-4567', OUTGOING, 45, ts=1_700_000_001_000),
        ])
        assert len(table) == 1
        acc = table.get('5551234567')
        assert acc.total_calls == 2
        assert acc.total_duration == 75
        assert acc.incoming_calls == 1
        assert acc.outgoing_calls == 1

    def test_private_numbers_collapse(self):
        table = aggregate([_rec('-1'), _rec(''), _rec('Blocked')])
        assert table.keys() == [PRIVATE_KEY]
        assert table.get(PRIVATE_KEY).total_calls == 3

    def test_invalid_numbers_dropped(self):
        table = aggregate([_rec('12'), _rec('#*'), _rec('611')])
        assert table.keys() == ['611']

    def test_none_records_is_empty(self):
        assert len(aggregate(None)) == 0

    def test_missed_groups_missed_voicemail_rejected(self):
        table = aggregate([
            _rec('5551234567', MISSED),
            _rec('5551234567', VOICEMAIL),
            _rec('5551234567', REJECTED),
            _rec('5551234567', BLOCKED),
        ])
        acc = table.get('5551234567')
        assert acc.missed_calls == 3
        assert acc.total_calls == 4
        assert acc.total_calls >= acc.incoming_calls + acc.outgoing_calls + acc.missed_calls

    def test_first_last_and_latest_identity(self):
        table = aggregate([
            _rec('5551234567', ts=3000, name='New Name', photo='p2'),
            _rec('+15551234567', ts=1000, name='Old Name', photo='p1'),
            _rec('555-123-4567', ts=2000),
        ])
        acc = table.get('5551234567')
        assert acc.first_call_ms == 1000
        assert acc.last_call_ms == 3000
        assert acc.caller_name == 'New Name'
        assert acc.caller_photo == 'p2'
        assert acc.raw_number == '5551234567'

    def test_negative_duration_counts_as_zero(self):
        table = aggregate([_rec('5551234567', duration=-5)])
        assert table.get('5551234567').total_duration == 0

    def test_order_independent(self):
        records = [
            _rec('5551234567', INCOMING, 30, ts=1000, name='A'),
            _rec('(555) 123-4567', OUTGOING, 45, ts=2000, name='B'),
            _rec('-1', MISSED, 0, ts=1500),
            _rec('611', OUTGOING, 10, ts=1000),
            _rec('5559876543', INCOMING, 5, ts=1000, name='C'),
            _rec('5559876543', INCOMING, 5, ts=1000, name='D'),
        ]
        expected = _snapshot(aggregate(records))
        for perm in itertools.permutations(records):
            assert _snapshot(aggregate(perm)) == expected

    def test_seed_not_mutated(self):
        seed = [CallerAccumulator(canonical_key='5551234567', total_calls=2, type_counts={INCOMING: 2})]
        table = aggregate([_rec('5551234567', INCOMING)], seed=seed)
        assert table.get('5551234567').total_calls == 3
        assert seed[0].total_calls == 2

    def test_incremental_equals_single_pass(self):
        rng = random.Random(7)
        records = [
            _rec(rng.choice(['5551234567', '611', '-1', '5550001111']),
                 rng.choice([INCOMING, OUTGOING, MISSED]),
                 rng.randint(0, 600), ts=1000 + i)
            for i in range(40)
        ]
        first = aggregate(records[:15])
        second = aggregate(records[15:], seed=list(first))
        assert _snapshot(second) == _snapshot(aggregate(records))


class TestAccumulatorTable:

    def test_get_or_create_reuses(self):
        table = AccumulatorTable()
        assert table.get_or_create('611') is table.get_or_create('611')
        assert '611' in table
        assert len(table) == 1

    def test_iterates_in_key_order(self):
        table = AccumulatorTable()
        for key in ['9', '1', '5']:
            table.get_or_create(key)
        assert [a.canonical_key for a in table] == ['1', '5', '9']


# ── FILTERS ──────────────────────────────────────────────────

class TestFilters:

    def test_should_keep(self):
        assert should_keep(_rec('611'))
        assert should_keep(_rec('-2'))
        assert not should_keep(_rec('12'))

    def test_out_of_range_timestamp_dropped(self):
        assert not should_keep(_rec('5551234567', ts=10 ** 17))
        table = aggregate([_rec('5551234567', ts=10 ** 17), _rec('5551234567')])
        assert table.get('5551234567').total_calls == 1

    def test_weekly_cutoff_is_start_of_day_seven_days_back(self):
        midnight = int(datetime(2025, 1, 22, tzinfo=timezone.utc).timestamp() * 1000)
        inside  = _rec('611', ts=midnight - 7 * DAY)
        outside = _rec('611', ts=midnight - 7 * DAY - 1)
        kept = filter_time_range([inside, outside], WEEKLY, NOW)
        assert kept == [inside]

    def test_all_time_keeps_everything(self):
        records = [_rec('611', ts=0), _rec('611', ts=NOW_MS)]
        assert filter_time_range(records, ALL_TIME, NOW) == records

    def test_unknown_range(self):
        with pytest.raises(ValueError):
            filter_time_range([], 'MONTHLY', NOW)


# ── DAILY ROLLUPS ────────────────────────────────────────────

class TestDailyRollups:

    def test_utc_day_buckets(self):
        jan21 = int(datetime(2025, 1, 21, 23, 59, tzinfo=timezone.utc).timestamp() * 1000)
        jan22 = int(datetime(2025, 1, 22, 0, 1, tzinfo=timezone.utc).timestamp() * 1000)
        days = daily_rollups([
            _rec('611', INCOMING, 10, ts=jan21),
            _rec('611', OUTGOING, 20, ts=jan22),
            _rec('611', MISSED, 0, ts=jan22),
            _rec('12', INCOMING, 99, ts=jan22),
        ])
        assert sorted(days) == ['2025-01-21', '2025-01-22']
        d = days['2025-01-22']
        assert (d.total_calls, d.total_duration, d.incoming_calls, d.outgoing_calls, d.missed_calls) == (2, 20, 0, 1, 1)
        assert days['2025-01-21'].incoming_calls == 1

    def test_seed_continued(self):
        first = daily_rollups([_rec('611', ts=0)])
        second = daily_rollups([_rec('611', ts=1000)], seed=first)
        assert second['1970-01-01'].total_calls == 2
        assert first['1970-01-01'].total_calls == 1

    def test_out_of_range_timestamp_skipped(self):
        days = daily_rollups([_rec('5551234567', ts=10 ** 17), _rec('5551234567', ts=NOW_MS)])
        assert list(days) == ['2025-01-22']
        assert days['2025-01-22'].total_calls == 1
