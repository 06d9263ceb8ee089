from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp

# Batched lines per destination, flushed after each loop run
notify_queues: Dict[str, List[str]] = {}
notify_dests: Dict[str, Dict[str, Any]] = {}

DEFAULT_TEMPLATES = {
    'queue_removed': 'Removed {service} queue item "{title}": {reason}',
    'queue_imported': 'Imported {service} queue item "{title}"',
    'library_deleted': 'Deleted {service} {kind} "{title}": {reason}',
    'torrent_deleted': 'Deleted torrent "{title}": {reason}',
    'path_deleted': 'Deleted {path}: {reason}',
    'policy_disabled': 'Policy {flag} DISABLED for {service}: {reason}. Re-enable it once fixed.',
}

_LIMITS = {'discord': 1900, 'slack': 38000}


def _destinations(config: Dict[str, Any]) -> List[Dict[str, Any]]:
    notifications = config.get('notifications') if isinstance(config.get('notifications'), dict) else {}
    dests = notifications.get('destinations')
    if isinstance(dests, list):
        return [d for d in dests if isinstance(d, dict) and d.get('url')]
    return []


def base_event(event: str) -> str:
    return event[4:] if event.startswith('dry_') else event


def matches(dest: Dict[str, Any], event: str, reason: Optional[str]) -> bool:
    events = dest.get('events')
    if isinstance(events, list) and events and '*' not in events and base_event(event) not in events:
        return False
    reasons = dest.get('reasons')
    if isinstance(reasons, list) and reasons and '*' not in reasons:
        return any(r.lower() in (reason or '').lower() for r in reasons)
    return True


def format_line(dest: Dict[str, Any], event: str, fields: Dict[str, Any]) -> str:
    values = {'service': '', 'title': '', 'reason': 'unknown', 'kind': 'item', 'path': '', 'flag': ''}
    values.update({k: v for k, v in fields.items() if v is not None})
    values['event'] = event
    template = dest.get('template')
    if not isinstance(template, str) or not template:
        template = DEFAULT_TEMPLATES.get(base_event(event), '{event}: {service} {title} ({reason})')
    if bool(dest.get('raw_json', False)):
        line = template
        for key, value in values.items():
            line = line.replace('{' + key + '}', str(value))
        return line
    try:
        return template.format(**values)
    except (KeyError, IndexError, ValueError):
        return f'{event}: {values["service"]} {values["title"]} ({values["reason"]})'


def _payload(dest: Dict[str, Any], lines: List[str], dry_run: bool) -> Dict[str, Any]:
    typ = str(dest.get('type') or 'generic').lower()
    if typ == 'generic' and bool(dest.get('raw_json', False)):
        docs = []
        for line in lines:
            try:
                docs.append(json.loads(line))
            except ValueError:
                docs.append({'message': line})
        body: Dict[str, Any] = docs[0] if len(docs) == 1 else {'events': docs}
        if dry_run and isinstance(body, dict):
            body.setdefault('dryRun', True)
        return body
    content = '\n'.join(lines)
    if dry_run:
        content = ('[DRY RUN]\n' if len(lines) > 1 else '[DRY RUN] ') + content
    limit = _LIMITS.get(typ)
    if limit and len(content) > limit:
        content = content[:limit] + '\n...'
    key = {'discord': 'content', 'slack': 'text'}.get(typ, 'message')
    return {key: content}


async def send(
    session: aiohttp.ClientSession,
    dest: Dict[str, Any],
    lines: List[str],
    dry_run: bool,
) -> bool:
    headers = dest.get('headers') if isinstance(dest.get('headers'), dict) else None
    typ = str(dest.get('type') or 'generic').lower()
    try:
        resp = await session.post(
            dest['url'],
            json=_payload(dest, lines, dry_run),
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=5),
        )
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logging.warning(f'Notify({typ}): send failed: {e}')
        return False
    status = getattr(resp, 'status', 0)
    if status >= 400:
        logging.warning(f'Notify({typ}): destination answered {status}')
        return False
    return True


async def handle(
    session: aiohttp.ClientSession,
    event: str,
    fields: Dict[str, Any],
    config: Dict[str, Any],
    dry_run: bool,
) -> None:
    for dest in _destinations(config):
        if not matches(dest, event, fields.get('reason')):
            continue
        line = format_line(dest, event, fields)
        if bool(dest.get('batch', False)):
            key = str(dest.get('name') or dest.get('url'))
            notify_dests[key] = dest
            notify_queues.setdefault(key, []).append(line)
        else:
            await send(session, dest, [line], dry_run)


async def flush(session: aiohttp.ClientSession, dry_run: bool) -> None:
    for key, lines in list(notify_queues.items()):
        if not lines:
            continue
        batch = list(lines)
        lines.clear()
        await send(session, notify_dests.get(key) or {}, batch, dry_run)
