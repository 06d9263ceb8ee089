import asyncio
import importlib
import json

import pytest


def _write(path, data):
    with open(path, 'w') as f:
        f.write(data)


@pytest.fixture
def env(monkeypatch, tmp_path):
    cfg_path = tmp_path / 'config.yaml'
    data_path = tmp_path / 'data' / 'state.json'
    _write(cfg_path, 'general:\n  dry_run: true\n')
    monkeypatch.setenv('CONFIG_PATH', str(cfg_path))
    monkeypatch.setenv('DATA_PATH', str(data_path))
    return data_path


def test_cli_status_on_empty_store(env, capsys):
    cli = importlib.import_module('cli')
    cli.main(['status'])
    out = json.loads(capsys.readouterr().out)
    assert out['data_path'] == str(env)
    assert out['revision'] == 0
    assert out['loops'] == {}
    assert out['policy_overrides'] == {}


def test_cli_reenable_clears_override(env, capsys):
    docs = importlib.import_module('storage.documents')
    store = docs.DocumentStore(str(env))
    state = store.find_current_state()
    state.set('policy_overrides', 'remove_missing', {'disabled': True, 'reason': 'Radarr: trakt'})
    asyncio.run(store.save(state))

    cli = importlib.import_module('cli')
    cli.main(['reenable', 'remove_missing'])
    assert capsys.readouterr().out.strip() == 'Re-enabled remove_missing'
    assert docs.DocumentStore(str(env)).find_current_state().get('policy_overrides', 'remove_missing') is None


def test_cli_reenable_without_override(env, capsys):
    cli = importlib.import_module('cli')
    cli.main(['reenable', 'remove_missing'])
    assert capsys.readouterr().out.strip() == 'remove_missing has no override'


def test_cli_classify(env, capsys, tmp_path):
    cli = importlib.import_module('cli')
    item_path = tmp_path / 'item.json'
    item = {
        'id': 10,
        'title': 'Some.Movie.2020',
        'trackedDownloadState': 'importBlocked',
        'statusMessages': [{'title': 'Some.Movie.2020.mkv', 'messages': ['Sample file detected']}],
    }
    _write(item_path, json.dumps(item))
    cli.main(['classify', str(item_path)])
    out = json.loads(capsys.readouterr().out)
    assert out['blocked'] is True
    assert out['outcome'] == 'deleted'
    assert out['messages'] == ['Sample file detected']


def test_cli_once_rejects_unknown_loop(env, capsys):
    cli = importlib.import_module('cli')
    with pytest.raises(SystemExit) as exc:
        cli.main(['once', 'no_such_loop'])
    assert exc.value.code == 1
    assert 'Unknown loop no_such_loop' in capsys.readouterr().out
