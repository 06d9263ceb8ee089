from __future__ import annotations

import logging
from typing import List

from core.runner import TaskContext
from integrations.filesystem import FAILED_MARKER, FailedScan

NAME = 'remove_failed'


async def scan_path(ctx: TaskContext, path: str) -> FailedScan:
    scan = FailedScan(path=path)
    scan.searched = await ctx.filesystem.count_entries(path)
    for failed in await ctx.filesystem.find_failed_downloads(path):
        if ctx.dry_run:
            logging.info(f'removeFailed: Skipped deleting {failed} (dry run).')
        elif not await ctx.filesystem.delete_path(failed):
            continue
        scan.deletions += 1
        await ctx.emit('path_deleted', reason=f'Marked {FAILED_MARKER}', notify=True, path=failed)
    return scan


async def run(ctx: TaskContext) -> None:
    qbit = ctx.qbittorrent()
    if qbit is None:
        logging.warning('removeFailed: qBittorrent is not configured. Skipping.')
        return
    torrents = await qbit.list_torrents()
    if torrents is None:
        logging.error('removeFailed: could not retrieve torrents from qBittorrent.')
        return
    paths: List[str] = sorted({t.save_path for t in torrents if t.save_path})
    for path in paths:
        if not ctx.filesystem.check_permissions(path):
            logging.warning(f'removeFailed: {path} is missing or not writable. Skipping.')
            continue
        scan = await scan_path(ctx, path)
        logging.info(f'removeFailed: {scan.path} | searched: {scan.searched}, deleted: {scan.deletions}')
