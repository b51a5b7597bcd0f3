"""
tests/test_config.py
Config persistence, first-run identity and the backend kill switch.
"""

import json
from unittest.mock import patch

from callrank.backend.firebase_store import FirebaseCounterStore
from callrank.config import (
    DEFAULT_CONFIG, counter_store_from_config, ensure_config, load_config,
    save_config, sync_settings_from_config,
)


class TestLoadSave:

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_config(tmp_path) == DEFAULT_CONFIG

    def test_round_trip(self, tmp_path):
        save_config({**DEFAULT_CONFIG, 'calls_dir': '/data/calls'}, tmp_path)
        assert load_config(tmp_path)['calls_dir'] == '/data/calls'

    def test_unknown_keys_merged_over_defaults(self, tmp_path):
        (tmp_path / 'callrank_config.json').write_text(json.dumps({'db_path': 'x.db'}), encoding='utf-8')
        config = load_config(tmp_path)
        assert config['db_path'] == 'x.db'
        assert config['backend_enabled'] is False

    def test_corrupt_file_gives_defaults(self, tmp_path):
        (tmp_path / 'callrank_config.json').write_text('{not json', encoding='utf-8')
        assert load_config(tmp_path) == DEFAULT_CONFIG

    def test_non_object_gives_defaults(self, tmp_path):
        (tmp_path / 'callrank_config.json').write_text('[1, 2]', encoding='utf-8')
        assert load_config(tmp_path) == DEFAULT_CONFIG


class TestEnsureConfig:

    def test_assigns_and_persists_identity(self, tmp_path):
        with patch('callrank.config.auto_detect_calls_dir', return_value=None):
            first = ensure_config(tmp_path)
            second = ensure_config(tmp_path)
        assert len(first['user_id']) == 32
        assert second['user_id'] == first['user_id']

    def test_auto_detected_calls_dir(self, tmp_path):
        with patch('callrank.config.auto_detect_calls_dir', return_value=tmp_path / 'SMSBackup'):
            config = ensure_config(tmp_path)
        assert config['calls_dir'] == str(tmp_path / 'SMSBackup')


class TestKillSwitch:

    def test_disabled_by_default(self):
        settings = sync_settings_from_config(dict(DEFAULT_CONFIG, user_id='abc'))
        assert not settings.enabled
        assert counter_store_from_config(dict(DEFAULT_CONFIG)) is None

    def test_enabled_needs_url(self):
        config = dict(DEFAULT_CONFIG, backend_enabled=True, user_id='abc')
        assert not sync_settings_from_config(config).enabled

    def test_enabled(self):
        config = dict(
            DEFAULT_CONFIG,
            backend_enabled  = True,
            backend_url      = 'https://example-db.firebaseio.com',
            user_id          = 'abc',
            sync_max_retries = 5,
        )
        settings = sync_settings_from_config(config)
        assert settings.enabled
        assert settings.identity == 'abc'
        assert settings.max_retries == 5
        store = counter_store_from_config(config)
        assert isinstance(store, FirebaseCounterStore)
        assert store.global_url == 'https://example-db.firebaseio.com/callrank-stats/global_stats.json'
