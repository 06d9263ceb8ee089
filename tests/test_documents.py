import importlib
import json

import pytest


pytestmark = pytest.mark.asyncio


async def test_missing_file_starts_empty(tmp_path):
    docs = importlib.import_module('storage.documents')
    store = docs.DocumentStore(str(tmp_path / 'state.json'))
    state = store.find_current_state()
    assert state.revision == 0
    assert state.get_service_data('libraries', 'Radarr') is None


async def test_save_bumps_revision_and_persists(tmp_path):
    docs = importlib.import_module('storage.documents')
    path = tmp_path / 'data' / 'state.json'
    store = docs.DocumentStore(str(path))
    state = store.find_current_state()
    state.set_service_data('libraries', 'Radarr', [{'id': 1}])
    await store.save(state)
    on_disk = json.loads(path.read_text())
    assert on_disk['revision'] == 1
    assert on_disk['libraries']['Radarr']['data'] == [{'id': 1}]
    assert store.find_current_state().get_service_data('libraries', 'Radarr') == [{'id': 1}]


async def test_stale_revision_raises_conflict(tmp_path):
    docs = importlib.import_module('storage.documents')
    store = docs.DocumentStore(str(tmp_path / 'state.json'))
    first = store.find_current_state()
    second = store.find_current_state()
    first.set('loops', 'a', {'last_ran': 1})
    await store.save(first)
    second.set('loops', 'b', {'last_ran': 2})
    with pytest.raises(docs.StoreConflictError):
        await store.save(second)


async def test_save_with_retry_rebases_only_changed_keys(tmp_path):
    docs = importlib.import_module('storage.documents')
    store = docs.DocumentStore(str(tmp_path / 'state.json'))
    mine = store.find_current_state()
    theirs = store.find_current_state()

    theirs.set_service_data('download_queues', 'Sonarr', [{'id': 7}])
    await store.save(theirs)

    mine.set_service_data('download_queues', 'Radarr', [{'id': 3}])
    saved = await store.save_with_retry(mine, 'test', delay=0)
    assert saved is not None

    latest = store.find_current_state()
    assert latest.revision == 2
    # Both writers' changes survive
    assert latest.get_service_data('download_queues', 'Sonarr') == [{'id': 7}]
    assert latest.get_service_data('download_queues', 'Radarr') == [{'id': 3}]


async def test_save_with_retry_gives_up(tmp_path, monkeypatch):
    docs = importlib.import_module('storage.documents')
    store = docs.DocumentStore(str(tmp_path / 'state.json'))

    async def always_conflict(state):
        raise docs.StoreConflictError('busy')

    monkeypatch.setattr(store, 'save', always_conflict)
    state = store.find_current_state()
    state.set('loops', 'x', {})
    assert await store.save_with_retry(state, 'x', max_retries=2, delay=0) is None


async def test_loop_state_keeps_first_ran(tmp_path):
    docs = importlib.import_module('storage.documents')
    store = docs.DocumentStore(str(tmp_path / 'state.json'))
    assert store.get_loop_state('remove_blocked') is None
    await store.update_loop_state('remove_blocked')
    first = store.get_loop_state('remove_blocked')
    await store.update_loop_state('remove_blocked')
    second = store.get_loop_state('remove_blocked')
    assert second['first_ran'] == first['first_ran']
    assert second['last_ran'] >= first['last_ran']
