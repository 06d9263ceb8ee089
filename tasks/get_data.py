from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Optional

from core.active import ActiveService, ServiceKind, active_services
from core.runner import TaskContext

NAME = 'get_data'
LIBRARY_REFRESH_SECS = 3600
COMMAND_LIST_REFRESH_SECS = 24 * 3600


def _stale(snapshot: Any, section: str, service: str, max_age: float) -> bool:
    updated = snapshot.get_updated_at(section, service)
    return not isinstance(updated, (int, float)) or time.time() - updated >= max_age


async def _refresh(
    snapshot: Any,
    section: str,
    svc: ActiveService,
    fetch: Callable[[], Awaitable[Optional[Any]]],
) -> Optional[Any]:
    data = await fetch()
    if data is None:
        logging.error(f'getData: {svc.name} {section} could not be retrieved; keeping cached data.')
        return None
    snapshot.set_service_data(section, svc.name, data)
    return data


async def refresh_service(ctx: TaskContext, snapshot: Any, svc: ActiveService, force: bool = False) -> None:
    client = ctx.starr(svc)
    await _refresh(snapshot, 'commands', svc, client.get_commands)
    if force or _stale(snapshot, 'command_lists', svc.name, COMMAND_LIST_REFRESH_SECS):
        await _refresh(snapshot, 'command_lists', svc, client.get_command_list)
    await _refresh(snapshot, 'download_queues', svc, client.get_queue)
    await _refresh(snapshot, 'root_folders', svc, client.get_root_folder)
    await _refresh(snapshot, 'import_lists', svc, client.get_import_lists)
    await _refresh(snapshot, 'missing_wanteds', svc, client.get_missing_wanted)

    if not force and not _stale(snapshot, 'libraries', svc.name, LIBRARY_REFRESH_SECS):
        return
    library = await _refresh(snapshot, 'libraries', svc, client.get_library)
    if library is not None and svc.kind is ServiceKind.SONARR:
        await _refresh(snapshot, 'episodes', svc, lambda: client.get_episodes(library))
    if library is not None:
        logging.info(f'getData: {svc.name} library refreshed ({len(library)} items).')


async def run(ctx: TaskContext, force: bool = False) -> None:
    snapshot = ctx.store.find_current_state()
    services = active_services(ctx.settings, snapshot)
    if not services:
        return
    for svc in services:
        await refresh_service(ctx, snapshot, svc, force)
    await ctx.store.save_with_retry(snapshot, NAME)
