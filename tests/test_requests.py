import asyncio

import aiohttp
import pytest
from aioresponses import aioresponses

from integrations.services import make_api_request


pytestmark = pytest.mark.asyncio


async def _call(url, method='get', payload=None, api_key='dummy'):
    async with aiohttp.ClientSession() as session:
        return await make_api_request(
            session,
            url,
            api_key=api_key,
            method=method,
            json_data=payload,
            retry_backoff=0,
        )


async def test_make_api_request_success_json():
    url = "http://radarr.local/api/v3/queue"
    with aioresponses() as m:
        m.get(url, payload={"records": []})
        resp = await _call(url)
        assert resp == {"records": []}


async def test_make_api_request_sends_api_key_header():
    url = "http://radarr.local/api/v3/movie"
    with aioresponses() as m:
        m.get(url, payload=[])
        await _call(url, api_key='secret')
        (key, calls), = m.requests.items()
        assert calls[0].kwargs['headers']['X-Api-Key'] == 'secret'


async def test_make_api_request_without_api_key_sends_no_header():
    url = "https://mdblist.com/lists/someone/list/json"
    with aioresponses() as m:
        m.get(url, payload=[])
        await _call(url, api_key=None)
        (key, calls), = m.requests.items()
        assert 'X-Api-Key' not in calls[0].kwargs['headers']


async def test_make_api_request_success_no_content():
    url = "http://radarr.local/api/v3/queue/5"
    with aioresponses() as m:
        m.delete(url, status=204)
        resp = await _call(url, method='delete')
        assert resp == {"status": 204}


async def test_make_api_request_retries_then_success():
    url = "http://sonarr.local/api/v3/series"
    with aioresponses() as m:
        m.get(url, status=500)
        m.get(url, payload={"ok": True})
        resp = await _call(url)
        assert resp == {"ok": True}


async def test_make_api_request_retries_rate_limited():
    url = "http://sonarr.local/api/v3/command"
    with aioresponses() as m:
        m.get(url, status=429)
        m.get(url, payload=[])
        resp = await _call(url)
        assert resp == []


async def test_make_api_request_non_retriable_error():
    url = "http://radarr.local/api/v3/missing"
    with aioresponses() as m:
        m.get(url, status=404)
        resp = await _call(url)
        assert resp is None


async def test_make_api_request_gives_up_after_retries():
    url = "http://radarr.local/api/v3/down"
    with aioresponses() as m:
        m.get(url, status=503)
        m.get(url, status=503)
        m.get(url, status=503)
        resp = await _call(url)
        assert resp is None


async def test_make_api_request_timeout_retries():
    url = "http://radarr.local/api/v3/timeout"
    with aioresponses() as m:
        m.get(url, exception=asyncio.TimeoutError())
        m.get(url, payload={"ok": True})
        resp = await _call(url)
        assert resp == {"ok": True}
