"""Tests for the settings store and previously-imported page tracking."""

import json

from orchestrator import ImportStateStore, SettingsStore


class TestSettingsStore:
    def test_round_trip_through_file(self, tmp_path):
        path = tmp_path / 'state.json'
        store = SettingsStore(str(path))
        store.set('refresh_token', 'abc')

        assert json.loads(path.read_text(encoding='utf-8')) == {'refresh_token': 'abc'}
        assert SettingsStore(str(path)).get('refresh_token') == 'abc'

    def test_set_none_removes_key(self, tmp_path):
        store = SettingsStore(str(tmp_path / 'state.json'))
        store.set('refresh_token', 'abc')
        store.set('refresh_token', None)

        assert store.get('refresh_token') is None
        assert 'refresh_token' not in store.data

    def test_corrupt_file_is_set_aside(self, tmp_path):
        path = tmp_path / 'state.json'
        path.write_text('{not json', encoding='utf-8')

        store = SettingsStore(str(path))

        assert store.data == {}
        assert (tmp_path / 'state.json.corrupt').read_text(encoding='utf-8') == '{not json'

    def test_no_temp_files_left_behind(self, tmp_path):
        store = SettingsStore(str(tmp_path / 'state.json'))
        store.set('a', 1)
        store.set('b', 2)

        assert sorted(p.name for p in tmp_path.iterdir()) == ['state.json']


class TestImportStateStore:
    def test_mark_imported_persists_immediately(self, tmp_path):
        path = tmp_path / 'state.json'
        state = ImportStateStore(SettingsStore(str(path)))

        state.mark_imported('p2')
        state.mark_imported('p1')
        state.mark_imported('p1')

        assert state.has('p1') and state.has('p2')
        assert not state.has('p3')
        assert len(state) == 2
        assert json.loads(path.read_text(encoding='utf-8')) == {'previously_imported_ids': ['p1', 'p2']}

    def test_state_survives_restart(self, tmp_path):
        path = str(tmp_path / 'state.json')
        ImportStateStore(SettingsStore(path)).mark_imported('p1')

        assert ImportStateStore(SettingsStore(path)).has('p1')
