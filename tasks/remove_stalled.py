from __future__ import annotations

import logging
from typing import Any, Dict, Set

from core.active import ActiveService, active_services
from core.runner import TaskContext
from core.triage import dedup_key
from core.utils import plural, status_texts

NAME = 'remove_stalled'
STALL_REASON = 'Stalled download.'


def is_stalled(entry: Dict[str, Any]) -> bool:
    if str(entry.get('status') or '').lower() == 'stalled':
        return True
    return any('stalled' in text.lower() for text in status_texts(entry))


def _remover(ctx: TaskContext, client: Any, svc: ActiveService, entry: Dict[str, Any], removed: Set[str]):
    async def remove() -> None:
        if ctx.dry_run:
            logging.info(f'{svc.name} | {entry.get("title")} | Skipped stalled removal (dry run).')
        elif not await client.blocklist_and_research(entry, STALL_REASON):
            return
        removed.add(dedup_key(entry))
        await ctx.emit('queue_removed', service=svc.name, item=entry, reason=STALL_REASON, notify=True)

    return remove


async def run(ctx: TaskContext) -> None:
    threshold = int(ctx.accessor.section(NAME).get('threshold') or 3)
    counter = ctx.counter(NAME)
    snapshot = ctx.store.find_current_state()
    services = active_services(ctx.settings, snapshot)
    keep: Set[str] = set()
    changed = False
    for svc in services:
        client = ctx.starr(svc)
        queue = await client.get_queue()
        if queue is None:
            # Unknown this pass; leave its counts alone
            keep.update(k for k in counter.keys() if k.startswith(f'{svc.name}:'))
            logging.error(f'removeStalled: {svc.name} download queue could not be retrieved.')
            continue
        removed: Set[str] = set()
        for entry in queue:
            if not is_stalled(entry):
                continue
            key = f'{svc.name}:{dedup_key(entry)}'
            if key in keep:
                continue
            keep.add(key)
            count = await counter.tick(key, _remover(ctx, client, svc, entry, removed), threshold)
            left = threshold - count
            if left > 0:
                logging.warning(
                    f'{svc.name} | {entry.get("title")} is stalled and will be removed in {left} {plural(left, "loop")}.'
                )
        remaining = [e for e in queue if dedup_key(e) not in removed]
        snapshot.set_service_data('download_queues', svc.name, remaining)
        changed = True
    # Anything not stalled this pass starts over
    counter.retain(keep)
    if changed:
        await ctx.store.save_with_retry(snapshot, NAME)
