import asyncio
import importlib

import pytest


pytestmark = pytest.mark.asyncio


async def test_request_manager_respects_max_concurrent(monkeypatch):
    svc = importlib.import_module('integrations.services')
    mgr = svc.RequestManager(max_concurrent=1)

    inflight = 0
    max_inflight = 0

    async def fake_make(session, url, api_key, **kw):
        nonlocal inflight, max_inflight
        inflight += 1
        max_inflight = max(max_inflight, inflight)
        await asyncio.sleep(0)
        inflight -= 1
        return {'status': 204}

    monkeypatch.setattr(svc, 'make_api_request', fake_make)

    async def call_one():
        await mgr.request(object(), 'Sonarr', 'http://x', 'k')

    await asyncio.gather(call_one(), call_one(), call_one())
    assert max_inflight == 1


async def test_request_manager_passes_options(monkeypatch):
    svc = importlib.import_module('integrations.services')
    opts = svc.RequestOptions(request_timeout=3, retry_attempts=0, retry_backoff=0.5)
    mgr = svc.RequestManager(opts)
    seen = {}

    async def fake_make(session, url, api_key, **kw):
        seen.update(kw)
        return []

    monkeypatch.setattr(svc, 'make_api_request', fake_make)
    await mgr.request(object(), 'Radarr', 'http://x', 'k', method='post', json_data={'name': 'x'})
    assert seen['request_timeout'] == 3
    assert seen['retry_attempts'] == 0
    assert seen['method'] == 'post'
    assert seen['json_data'] == {'name': 'x'}


async def test_request_options_from_settings():
    svc = importlib.import_module('integrations.services')
    opts = svc.RequestOptions.from_settings({'general': {'request_timeout': 7, 'retry_attempts': 1, 'retry_backoff': 0.2, 'debug_logging': True}})
    assert opts.request_timeout == 7
    assert opts.retry_attempts == 1
    assert opts.debug_logging is True
