from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set

from core.active import ActiveService, active_services
from core.runner import TaskContext
from core.triage import TriageDecision, TriageOutcome, blocked_entries, classify, dedup_key

NAME = 'remove_blocked'


@dataclass
class TriageSummary:
    blocked: int = 0
    deleted: int = 0
    imported: int = 0
    deferred: int = 0
    unhandled: int = 0
    failed: int = 0
    removed_keys: Set[str] = field(default_factory=set)


async def _delete(ctx: TaskContext, client: Any, svc: ActiveService, entry: Dict[str, Any], decision: TriageDecision) -> bool:
    if ctx.dry_run:
        logging.info(f'{svc.name} | {entry.get("title")} | Skipped deletion (dry run). {decision.reason}')
        await ctx.emit('queue_removed', service=svc.name, item=entry, reason=decision.reason, notify=True)
        return True
    research = decision.research and entry.get(svc.kind.foreign_key) is not None
    if research:
        ok = await client.blocklist_and_research(entry, decision.reason)
    else:
        ok = await client.delete_queue_entry(entry, decision.reason)
    if ok:
        await ctx.emit('queue_removed', service=svc.name, item=entry, reason=decision.reason, notify=True)
    return ok


async def _import(ctx: TaskContext, client: Any, svc: ActiveService, entry: Dict[str, Any]) -> str:
    if ctx.dry_run:
        logging.info(f'{svc.name} | {entry.get("title")} | Skipped Import (dry run).')
        return 'skipped'
    result = await client.trigger_import(entry)
    if result == 'imported':
        await ctx.emit('queue_imported', service=svc.name, item=entry, notify=True)
    elif result == 'deleted':
        await ctx.emit('queue_removed', service=svc.name, item=entry, reason='Not importable.', notify=True)
    return result


async def triage_queue(ctx: TaskContext, svc: ActiveService, client: Any, queue: List[Dict[str, Any]]) -> TriageSummary:
    summary = TriageSummary()
    blocked = blocked_entries(queue)
    summary.blocked = len(blocked)
    attempted: Set[str] = set()
    for entry in blocked:
        key = dedup_key(entry)
        if key in attempted:
            continue
        decision = classify(entry, svc.kind)
        if decision.outcome is TriageOutcome.DELETED:
            attempted.add(key)
            if await _delete(ctx, client, svc, entry, decision):
                summary.deleted += 1
                summary.removed_keys.add(key)
            else:
                summary.failed += 1
        elif decision.outcome is TriageOutcome.IMPORTED:
            attempted.add(key)
            result = await _import(ctx, client, svc, entry)
            if result == 'imported':
                summary.imported += 1
            elif result == 'deleted':
                summary.deleted += 1
                summary.removed_keys.add(key)
            elif result == 'failed':
                summary.failed += 1
        elif decision.outcome is TriageOutcome.DEFERRED:
            summary.deferred += 1
            logging.warning(
                f'{svc.name} | {entry.get("title")}. ID conflict but has other errors. '
                f'Deferring: "{"; ".join(decision.messages)}"'
            )
        else:
            summary.unhandled += 1
            logging.warning(
                f'{svc.name} | {entry.get("title")} has a blocked status of "{decision.reason}" that was not handled.'
            )
    return summary


async def run(ctx: TaskContext) -> None:
    snapshot = ctx.store.find_current_state()
    services = active_services(ctx.settings, snapshot)
    if not services:
        return
    for svc in services:
        client = ctx.starr(svc)
        queue = await client.get_queue()
        if queue is None:
            logging.error(f'importBlocked: {svc.name} download queue could not be retrieved.')
            continue
        summary = await triage_queue(ctx, svc, client, queue)
        remaining = [e for e in queue if dedup_key(e) not in summary.removed_keys]
        snapshot.set_service_data('download_queues', svc.name, remaining)
        if summary.blocked == 0:
            logging.info(f'importBlocked: There are no blocked files in the {svc.name} Queue.')
        else:
            logging.info(
                f'importBlocked: {svc.name} | blocked: {summary.blocked}, deleted: {summary.deleted}, '
                f'imported: {summary.imported}, deferred: {summary.deferred}, '
                f'unhandled: {summary.unhandled}, failed: {summary.failed}'
            )
    await ctx.store.save_with_retry(snapshot, NAME)
