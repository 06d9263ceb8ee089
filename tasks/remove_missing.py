from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Set

from core.active import ActiveService, active_services
from core.matcher import Torrent, match_library_torrents
from core.missing import (
    MissingCounters,
    PolicyMisconfigured,
    build_wanted_set,
    check_import_lists,
    filter_user_pools,
    has_torrents,
    log_pool_skips,
    not_wanted,
    orphan_paths,
    seeding_gate,
    superseded_ready,
)
from core.runner import TaskContext
from core.utils import run_bounded
from integrations.mdblist import fetch_import_list_items

NAME = 'remove_missing'
REASON = 'Not in any Import List.'


async def _disable(ctx: TaskContext, err: PolicyMisconfigured) -> None:
    await ctx.state.config.disable_policy(err.flag, f'{err.service}: {err.reason}')
    await ctx.emit(
        'policy_disabled',
        service=err.service,
        reason=err.reason,
        notify=True,
        flag=err.flag,
    )


async def delete_superseded(ctx: TaskContext, qbit: Any, unmatched: List[Torrent]) -> int:
    deleted = 0
    for torrent in unmatched:
        if not superseded_ready(torrent):
            continue
        if ctx.dry_run:
            logging.info(f'removeMissing: Skipped deleting superseded torrent {torrent.name} (dry run).')
        elif not await qbit.delete_torrent(torrent.hash):
            logging.error(f'removeMissing: {torrent.name} could not be deleted from qBittorrent.')
            continue
        deleted += 1
        await ctx.emit('torrent_deleted', item={'id': torrent.hash, 'title': torrent.name}, reason='Superseded', notify=True)
    return deleted


async def reconcile_import_list(ctx: TaskContext, svc: ActiveService, counters: MissingCounters) -> Set[Any]:
    """Delete library items no import list wants. Returns the ids deleted."""
    acc = ctx.accessor
    items = await fetch_import_list_items(
        ctx.session,
        svc.import_lists,
        service_name=svc.name,
        request_timeout=int(acc.general('request_timeout', 10)),
        retry_attempts=int(acc.general('retry_attempts', 2)),
        retry_backoff=float(acc.general('retry_backoff', 1.0)),
        debug_logging=ctx.debug_logging,
    )
    if items is None:
        logging.error(f'removeMissing: {svc.name} Import List items could not be retrieved. Skipping.')
        return set()
    wanted = build_wanted_set(items)
    counters.list_items = len(wanted)
    if not len(wanted):
        logging.warning(f'removeMissing: {svc.name} Import Lists are empty. Skipping.')
        return set()

    candidates = not_wanted(svc.library, wanted)
    kept, skipped = filter_user_pools(candidates, svc.kind, ctx.settings)
    counters.user_protected = len(candidates) - len(kept)
    log_pool_skips(svc.name, svc.kind, skipped)
    counters.marked = len(kept)
    ready = [item for item in kept if seeding_gate(item, svc.kind, counters)]

    client = ctx.starr(svc)
    deleted: Set[Any] = set()

    async def delete(item: Dict[str, Any]) -> None:
        if ctx.dry_run:
            logging.info(f'{svc.name}: Skipped deleting {item.get("title")} (dry run).')
        elif not await client.delete_from_library(item):
            counters.failed += 1
            return
        if has_torrents(item, svc.kind):
            counters.torrent_deleted += 1
        else:
            counters.usenet_deleted += 1
        deleted.add(item.get('id'))
        await ctx.emit(
            'library_deleted',
            service=svc.name,
            item=item,
            reason=REASON,
            notify=True,
            kind=svc.kind.content_name,
        )

    for result in await run_bounded(ready, delete, acc.remove_missing_batch_size()):
        if isinstance(result, Exception):
            counters.failed += 1
            logging.error(f'removeMissing: {svc.name} deletion failed: {result}')
    return deleted


async def reconcile_library(ctx: TaskContext, svc: ActiveService, counters: MissingCounters) -> None:
    if not svc.library:
        logging.warning(f'removeMissing: {svc.name} library is empty. Skipping.')
        return
    for folder in svc.root_folder:
        path = folder.get('path') if isinstance(folder, dict) else None
        if not path:
            continue
        children = await ctx.filesystem.list_child_directories(path)
        orphans = orphan_paths(children, svc.library)
        counters.marked += len(orphans)
        for orphan in orphans:
            if ctx.dry_run:
                logging.info(f'{svc.name}: Skipped deleting {orphan} (dry run).')
            elif not await ctx.filesystem.delete_path(orphan):
                counters.failed += 1
                continue
            counters.paths_deleted += 1
            await ctx.emit('path_deleted', service=svc.name, reason='Not in library.', notify=True, path=orphan)


def _check_lists(services: List[ActiveService]) -> Set[str]:
    return {svc.name for svc in services if check_import_lists(svc, NAME)}


async def run(ctx: TaskContext) -> None:
    qbit = ctx.qbittorrent()
    if qbit is None:
        logging.error('removeMissing: qBittorrent is required for this loop.')
        return
    snapshot = ctx.store.find_current_state()
    services = [s for s in active_services(ctx.settings, snapshot) if s.kind.match_strategy]
    if not services:
        return
    level = ctx.accessor.remove_missing_level()

    eligible: Optional[Set[str]] = None
    if level == 'import_list':
        try:
            eligible = _check_lists(services)
        except PolicyMisconfigured as err:
            await _disable(ctx, err)
            return

    torrents = await qbit.list_torrents()
    if torrents is None:
        logging.error('removeMissing: could not retrieve torrents from qBittorrent.')
        return
    matched, unmatched = match_library_torrents(services, torrents)

    if all(svc.library for svc in matched):
        superseded = await delete_superseded(ctx, qbit, unmatched)
        logging.info(f'removeMissing: Torrents: {len(torrents)}. Unmatched: {len(unmatched)}. Deleted: {superseded}.')
    else:
        logging.warning('removeMissing: a library has not been retrieved yet. Leaving unmatched torrents alone.')

    for svc in matched:
        counters = MissingCounters(library=len(svc.library))
        if level == 'library':
            await reconcile_library(ctx, svc, counters)
        elif eligible is not None and svc.name in eligible:
            if not svc.library:
                logging.warning(f'removeMissing: {svc.name} library is empty. Skipping.')
                continue
            deleted = await reconcile_import_list(ctx, svc, counters)
            if deleted:
                library = snapshot.get_service_data('libraries', svc.name, [])
                snapshot.set_service_data('libraries', svc.name, [i for i in library if i.get('id') not in deleted])
        else:
            continue
        logging.info(counters.summary(svc.name, level))

    await ctx.store.save_with_retry(snapshot, NAME)
