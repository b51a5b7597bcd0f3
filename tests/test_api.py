"""
tests/test_api.py
─────────────────────────────────────────────────────────────────────────────
Tests for callrank.api — CallRankAPI class and the FastAPI endpoints.

Coverage:
  - rankings: empty DB, category order, limit/offset, bad parameters
  - get_caller: found / not found / PRIVATE
  - summary, activity series and global stats
  - run_refresh: bad path, real XML directory
  - run_sync: kill switch off
  - HTTP layer through fastapi.testclient (needs httpx)

All tests use a temporary SQLite DB and synthetic XML.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from callrank.api import CallRankAPI, _build_app
from callrank.backend.memory_store import InMemoryCounterStore
from callrank.config import DEFAULT_CONFIG
from callrank.utils.dates import day_label, week_start_label


# ── HELPERS ──────────────────────────────────────────────────────────────────

def _ms(days_ago: int) -> int:
    when = datetime.now(timezone.utc) - timedelta(days=days_ago)
    return int(when.timestamp() * 1000)


def _write_calls(directory: Path) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / 'calls-test.xml').write_text(f"""<?xml version='1.0' encoding='UTF-8' standalone='yes' ?>
<calls count="5">
  <call number="+16125550001" duration="60"  date="{_ms(40)}" type="1" contact_name="Ann" />
  <call number="6125550001"   duration="30"  date="{_ms(1)}"  type="2" contact_name="Ann" />
  <call number="+16125550002" duration="900" date="{_ms(2)}"  type="1" contact_name="Ben" />
  <call number="-2"           duration="0"   date="{_ms(3)}"  type="3" />
  <call number="+16125550003" duration="0"   date="{_ms(50)}" type="3" />
</calls>
""", encoding='utf-8')
    return directory


@pytest.fixture
def calls_dir(tmp_path):
    return _write_calls(tmp_path / 'backups')


@pytest.fixture
def api(tmp_path, calls_dir):
    config = dict(DEFAULT_CONFIG, calls_dir=str(calls_dir), user_id='test-device')
    return CallRankAPI(db_path=tmp_path / 'callrank.db', config=config)


@pytest.fixture
def refreshed(api):
    api.run_refresh()
    return api


# ── QUERIES ──────────────────────────────────────────────────────────────────

class TestRankings:

    def test_empty_db(self, api):
        assert api.get_rankings() == []

    def test_most_called(self, refreshed):
        rows = refreshed.get_rankings('ALL_TIME', 'MOST_CALLED')
        assert [r['display_name'] for r in rows][:1] == ['Ann']
        assert [r['rank_by_count'] for r in rows] == [1, 2, 3, 4]

    def test_most_talked(self, refreshed):
        rows = refreshed.get_rankings('ALL_TIME', 'MOST_TALKED')
        assert rows[0]['display_name'] == 'Ben'

    def test_weekly(self, refreshed):
        keys = {r['canonical_key'] for r in refreshed.get_rankings('WEEKLY')}
        assert keys == {'6125550001', '6125550002', 'PRIVATE'}

    def test_lower_case_accepted(self, refreshed):
        assert len(refreshed.get_rankings('all_time', 'most_called')) == 4

    def test_limit_offset(self, refreshed):
        rows = refreshed.get_rankings(limit=2, offset=1)
        assert [r['rank_by_count'] for r in rows] == [2, 3]

    def test_bad_range(self, refreshed):
        with pytest.raises(ValueError):
            refreshed.get_rankings('MONTHLY')

    def test_bad_category(self, refreshed):
        with pytest.raises(ValueError):
            refreshed.get_rankings('ALL_TIME', 'LOUDEST')


class TestCaller:

    def test_found(self, refreshed):
        ann = refreshed.get_caller('6125550001')
        assert ann['total_calls'] == 2
        assert ann['total_duration'] == 90
        assert ann['average_duration'] == 45

    def test_private(self, refreshed):
        private = refreshed.get_caller('PRIVATE')
        assert private['display_name'] == 'Private Number'
        assert private['missed_calls'] == 1

    def test_not_found(self, refreshed):
        assert refreshed.get_caller('0000000000') is None


class TestSummaryAndActivity:

    def test_summary(self, refreshed):
        summary = refreshed.get_summary()
        assert summary['total_calls'] == 5
        assert summary['unique_callers'] == 4
        assert summary['total_missed'] == 2

    def test_activity(self, refreshed):
        activity = refreshed.get_activity(days=7)
        assert len(activity['daily']) == 7
        assert sum(activity['daily']) == 3
        assert len(activity['week']) == 7
        assert len(activity['last_week']) == 7

    def test_global_when_sync_disabled(self, refreshed):
        body = refreshed.get_global()
        assert body['available'] is False
        assert body['total_users'] == 0
        assert body['your_today'] == 0

    def test_global_with_backend(self, tmp_path, calls_dir):
        config = dict(DEFAULT_CONFIG, calls_dir=str(calls_dir), user_id='test-device',
                      backend_enabled=True, backend_url='https://example-db.firebaseio.com')
        counters = InMemoryCounterStore(document={
            'total_users':        3,
            'total_global_calls': 90,
            'today': {'date': day_label(), 'calls': 10, 'active_users': 4},
            'week':  {'week_start': week_start_label(), 'calls': 21, 'active_users': 3},
        })
        with patch('callrank.api.counter_store_from_config', return_value=counters):
            api = CallRankAPI(db_path=tmp_path / 'callrank.db', config=config)
            body = api.get_global()
        assert body['available'] is True
        assert body['total_users'] == 3
        assert body['average_today'] == 2
        assert body['average_week'] == 7
        assert body['today']['calls'] == 10


# ── ACTIONS ──────────────────────────────────────────────────────────────────

class TestActions:

    def test_refresh_bad_path(self, api, tmp_path):
        with pytest.raises(ValueError):
            api.run_refresh(calls_dir=tmp_path / 'nope')

    def test_refresh_report(self, api):
        report = api.run_refresh()
        assert report['records_read'] == 5
        assert report['new_records'] == 5
        assert report['summaries']['ALL_TIME']['total_calls'] == 5

    def test_sync_disabled(self, refreshed):
        assert refreshed.run_sync()['status'] == 'DISABLED'


# ── HTTP ─────────────────────────────────────────────────────────────────────

@pytest.fixture
def client(tmp_path, calls_dir):
    config = dict(DEFAULT_CONFIG, calls_dir=str(calls_dir), user_id='test-device')
    return TestClient(_build_app(db_path=tmp_path / 'callrank.db', config=config))


class TestHttp:

    def test_health(self, client):
        body = client.get('/health').json()
        assert body['status'] == 'ok'
        assert body['sync_enabled'] is False

    def test_refresh_then_rankings(self, client):
        assert client.post('/refresh', json={}).status_code == 200
        body = client.get('/rankings', params={'category': 'MOST_TALKED', 'limit': 2}).json()
        assert body['count'] == 2
        assert body['callers'][0]['display_name'] == 'Ben'

    def test_bad_range_is_400(self, client):
        assert client.get('/rankings', params={'time_range': 'MONTHLY'}).status_code == 400

    def test_unknown_caller_is_404(self, client):
        client.post('/refresh', json={})
        assert client.get('/callers/0000000000').status_code == 404

    def test_refresh_bad_dir_is_400(self, client, tmp_path):
        resp = client.post('/refresh', json={'calls_dir': str(tmp_path / 'missing')})
        assert resp.status_code == 400

    def test_summary_and_sync(self, client):
        client.post('/refresh', json={'full_refresh': True})
        assert client.get('/summary').json()['total_calls'] == 5
        assert client.post('/sync').json()['status'] == 'DISABLED'

    def test_global_endpoint(self, client):
        body = client.get('/global').json()
        assert body['available'] is False
        assert set(body['today']) == {'label', 'calls', 'active_users'}
