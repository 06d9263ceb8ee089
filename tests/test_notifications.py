import importlib
import json

import pytest


pytestmark = pytest.mark.asyncio


class FakeResp:
    def __init__(self, status=204):
        self.status = status


class FakeSession:
    def __init__(self, status=204):
        self.calls = []
        self.status = status

    async def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers})
        return FakeResp(status=self.status)


@pytest.fixture(autouse=True)
def reset_queues():
    notif = importlib.import_module('integrations.notifications')
    notif.notify_queues.clear()
    notif.notify_dests.clear()
    yield
    notif.notify_queues.clear()
    notif.notify_dests.clear()


def _config(*dests):
    return {'notifications': {'destinations': list(dests)}}


async def test_routing_by_event_and_reason():
    notif = importlib.import_module('integrations.notifications')
    session = FakeSession()
    config = _config(
        {'name': 'all', 'type': 'discord', 'url': 'http://discord', 'events': ['*']},
        {'name': 'deletes', 'type': 'slack', 'url': 'http://slack', 'events': ['library_deleted'],
         'reasons': ['import list']},
    )
    fields = {'service': 'Radarr', 'title': 'Heat', 'reason': 'Not in any Import List.', 'kind': 'movie'}
    await notif.handle(session, 'library_deleted', fields, config, dry_run=False)
    await notif.handle(session, 'queue_removed', {'service': 'Radarr', 'title': 'X', 'reason': 'Sample.'}, config, False)

    urls = [c['url'] for c in session.calls]
    assert urls == ['http://discord', 'http://slack', 'http://discord']
    assert session.calls[1]['json'] == {'text': 'Deleted Radarr movie "Heat": Not in any Import List.'}


async def test_dry_run_events_route_like_real_ones():
    notif = importlib.import_module('integrations.notifications')
    dest = {'url': 'http://x', 'events': ['path_deleted']}
    assert notif.matches(dest, 'dry_path_deleted', None)
    assert not notif.matches(dest, 'queue_removed', None)
    assert not notif.matches({'url': 'http://x', 'reasons': ['stalled']}, 'queue_removed', None)


async def test_batched_lines_are_sent_on_flush():
    notif = importlib.import_module('integrations.notifications')
    session = FakeSession()
    config = _config({'name': 'batch', 'type': 'discord', 'url': 'http://discord', 'batch': True})
    for title in ('A', 'B'):
        await notif.handle(session, 'torrent_deleted', {'title': title, 'reason': 'Superseded'}, config, True)
    assert session.calls == []

    await notif.flush(session, dry_run=True)
    assert len(session.calls) == 1
    content = session.calls[0]['json']['content']
    assert content.startswith('[DRY RUN]\n')
    assert 'Deleted torrent "A": Superseded' in content
    assert 'Deleted torrent "B": Superseded' in content

    # Queue is drained
    await notif.flush(session, dry_run=True)
    assert len(session.calls) == 1


async def test_raw_json_template_is_posted_as_document():
    notif = importlib.import_module('integrations.notifications')
    session = FakeSession()
    dest = {
        'type': 'generic', 'url': 'http://hook', 'raw_json': True,
        'template': '{"svc": "{service}", "what": "{title}"}',
    }
    await notif.handle(session, 'queue_removed', {'service': 'Sonarr', 'title': 'Ep'}, _config(dest), True)
    assert session.calls[0]['json'] == {'svc': 'Sonarr', 'what': 'Ep', 'dryRun': True}


async def test_bad_template_falls_back_to_plain_line():
    notif = importlib.import_module('integrations.notifications')
    line = notif.format_line({'template': '{nope}'}, 'queue_removed', {'service': 'Radarr', 'title': 'T'})
    assert line == 'queue_removed: Radarr T (unknown)'


async def test_long_discord_messages_are_truncated():
    notif = importlib.import_module('integrations.notifications')
    payload = notif._payload({'type': 'discord'}, ['x' * 3000], dry_run=False)
    assert len(payload['content']) <= 1900 + len('\n...')


async def test_error_status_reports_failure():
    notif = importlib.import_module('integrations.notifications')
    assert await notif.send(FakeSession(status=500), {'url': 'http://x'}, ['line'], False) is False
    assert await notif.send(FakeSession(status=204), {'url': 'http://x'}, ['line'], False) is True


async def test_policy_disabled_default_text():
    notif = importlib.import_module('integrations.notifications')
    line = notif.format_line(
        {}, 'policy_disabled', {'flag': 'remove_missing', 'service': 'Radarr', 'reason': 'unsupported list'}
    )
    assert json.dumps(line)
    assert line == 'Policy remove_missing DISABLED for Radarr: unsupported list. Re-enable it once fixed.'
