"""
tests/test_enricher.py
Display identity fallback, lookup caching, failure isolation and
merging of several numbers that belong to one contact.
"""

from typing import Optional

from callrank.aggregators.caller_aggregator import aggregate
from callrank.aggregators.enricher import (
    PRIVATE_DISPLAY_NAME, ContactEnricher, display_name_for,
)
from callrank.contacts.base import ContactLookup
from callrank.contacts.json_lookup import JsonContactLookup
from callrank.models.record import (
    INCOMING, MISSED, OUTGOING, PRIVATE_KEY, ContactInfo, RawCallRecord,
)


def _rec(number, call_type=INCOMING, duration=0, ts=1000, name=None, photo=None):
    return RawCallRecord(
        record_id    = f"{ts}:{number}",
        phone_number = number,
        call_type    = call_type,
        timestamp_ms = ts,
        duration_sec = duration,
        contact_name = name,
        photo_uri    = photo,
    )


class CountingLookup(ContactLookup):

    def __init__(self, contacts=None, fail_on=()):
        self.contacts = contacts or {}
        self.fail_on  = set(fail_on)
        self.calls    = []

    def lookup(self, phone_number: str) -> Optional[ContactInfo]:
        self.calls.append(phone_number)
        if phone_number in self.fail_on:
            raise RuntimeError('address book locked')
        return self.contacts.get(phone_number)


JANE = ContactInfo(contact_id='42', display_name='Jane Doe', photo_uri='content://photo/42')


# ── DISPLAY NAME FALLBACK ────────────────────────────────────

class TestDisplayName:

    def test_lookup_name_wins(self):
        acc = aggregate([_rec('5551234567', name='Log Name')]).get('5551234567')
        assert display_name_for(acc, JANE) == 'Jane Doe'

    def test_private_label(self):
        acc = aggregate([_rec('-1', name='Whoever')]).get(PRIVATE_KEY)
        assert display_name_for(acc, None) == PRIVATE_DISPLAY_NAME

    def test_log_name_used_when_no_contact(self):
        acc = aggregate([_rec('5551234567', name='Log Name')]).get('5551234567')
        assert display_name_for(acc, None) == 'Log Name'

    def test_log_name_equal_to_number_ignored(self):
        acc = aggregate([_rec('5551234567', name='5551234567')]).get('5551234567')
        assert display_name_for(acc, None) == '(555) 123-4567'

    def test_blank_log_name_ignored(self):
        acc = aggregate([_rec('611', name='   ')]).get('611')
        assert display_name_for(acc, None) == '611'


# ── LOOKUP CACHE ─────────────────────────────────────────────

class TestLookupCache:

    def test_one_lookup_per_key(self):
        lookup = CountingLookup({'5551234567': JANE})
        enricher = ContactEnricher(lookup)
        table = aggregate([_rec('5551234567'), _rec('(555) 123-4567', ts=2000), _rec('611')])
        enricher.enrich(table)
        enricher.resolve('5551234567', '5551234567')
        assert len(lookup.calls) == 2
        assert enricher.lookup_calls == 2

    def test_miss_is_cached(self):
        lookup = CountingLookup()
        enricher = ContactEnricher(lookup)
        assert enricher.resolve('611', '611') is None
        assert enricher.resolve('611', '611') is None
        assert lookup.calls == ['611']

    def test_private_never_looked_up(self):
        lookup = CountingLookup()
        ContactEnricher(lookup).enrich(aggregate([_rec('-1'), _rec('Unknown')]))
        assert lookup.calls == []

    def test_cache_reset_between_passes(self):
        lookup = CountingLookup()
        enricher = ContactEnricher(lookup)
        table = aggregate([_rec('611')])
        enricher.enrich(table)
        enricher.enrich(table)
        assert len(lookup.calls) == 2


# ── FAILURE ISOLATION ────────────────────────────────────────

class TestLookupFailure:

    def test_failure_degrades_one_caller_only(self):
        lookup = CountingLookup({'5551234567': JANE}, fail_on={'5559990000'})
        enricher = ContactEnricher(lookup)
        stats = enricher.enrich(aggregate([
            _rec('5551234567'),
            _rec('5559990000', name='Log Only'),
        ]))
        names = {s.canonical_key: s.display_name for s in stats}
        assert names == {'5551234567': 'Jane Doe', '5559990000': 'Log Only'}
        assert enricher.lookup_failures == 1

    def test_default_lookup_is_null(self):
        stats = ContactEnricher().enrich(aggregate([_rec('5551234567')]))
        assert stats[0].display_name == '(555) 123-4567'
        assert stats[0].contact_id is None


# ── STATISTIC FIELDS ─────────────────────────────────────────

class TestStatistic:

    def test_average_over_connected_calls(self):
        stats = ContactEnricher().enrich(aggregate([
            _rec('611', INCOMING, 100),
            _rec('611', OUTGOING, 51, ts=2000),
            _rec('611', MISSED, 0, ts=3000),
        ]))
        assert stats[0].average_duration == 75
        assert stats[0].missed_calls == 1

    def test_only_missed_average_zero(self):
        stats = ContactEnricher().enrich(aggregate([_rec('611', MISSED)]))
        assert stats[0].average_duration == 0

    def test_contact_photo_preferred(self):
        lookup = CountingLookup({'5551234567': JANE})
        stats = ContactEnricher(lookup).enrich(aggregate([_rec('5551234567', photo='log-photo')]))
        assert stats[0].photo_uri == 'content://photo/42'


# ── MERGE BY CONTACT ─────────────────────────────────────────

class TestMergeByContact:

    def test_numbers_of_one_contact_merged(self):
        lookup = JsonContactLookup.from_dict({'contacts': [
            {'id': '42', 'name': 'Jane Doe', 'numbers': ['555-123-4567', '555-765-4321']},
        ]})
        stats = ContactEnricher(lookup).enrich(aggregate([
            _rec('5551234567', INCOMING, 10, ts=1000),
            _rec('5557654321', OUTGOING, 20, ts=2000),
            _rec('5557654321', OUTGOING, 30, ts=3000),
            _rec('611', OUTGOING, 5, ts=4000),
        ]))
        assert len(stats) == 2
        jane = next(s for s in stats if s.contact_id == '42')
        assert jane.canonical_key == '5557654321'
        assert jane.display_name == 'Jane Doe'
        assert jane.total_calls == 3
        assert jane.total_duration == 60
        assert jane.incoming_calls == 1
        assert jane.outgoing_calls == 2
        assert jane.average_duration == 20
        assert jane.first_call_ms == 1000
        assert jane.last_call_ms == 3000
