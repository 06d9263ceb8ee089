from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterable, Set

from core.runner import TaskContext
from core.utils import plural

NAME = 'tidy_directories'


def is_allowed(child: str, allowed: Iterable[str]) -> bool:
    name = os.path.basename(os.path.normpath(child))
    norm = os.path.normpath(child)
    return any(a == name or os.path.normpath(a) == norm for a in allowed if a)


def _deleter(ctx: TaskContext, child: str):
    async def delete() -> None:
        if ctx.dry_run:
            logging.info(f'tidyDirectories: Skipped deleting {child} (dry run).')
        elif not await ctx.filesystem.delete_path(child):
            return
        await ctx.emit('path_deleted', reason='Not an allowed directory.', notify=True, path=child)

    return delete


async def tidy_path(ctx: TaskContext, entry: Dict[str, Any], threshold: int, seen: Set[str]) -> None:
    path = entry.get('path')
    allowed = [str(a) for a in (entry.get('allowed') or [])]
    if not path:
        return
    if not ctx.filesystem.check_permissions(path):
        logging.warning(f'tidyDirectories: {path} is missing or not writable. Skipping.')
        return
    counter = ctx.counter(NAME)
    for child in await ctx.filesystem.list_child_directories(path):
        if is_allowed(child, allowed):
            counter.clear(child)
            continue
        seen.add(child)
        count = await counter.tick(child, _deleter(ctx, child), threshold)
        left = threshold - count
        if left > 0:
            logging.info(f'tidyDirectories: {child} will be deleted in {left} {plural(left, "loop")}.')


async def run(ctx: TaskContext) -> None:
    section = ctx.accessor.section(NAME)
    threshold = int(section.get('threshold') or 3)
    seen: Set[str] = set()
    for entry in section.get('paths') or []:
        if isinstance(entry, dict):
            await tidy_path(ctx, entry, threshold, seen)
    # Children that vanished or became allowed start over
    ctx.counter(NAME).retain(seen)
