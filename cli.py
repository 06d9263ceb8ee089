import argparse
import asyncio
import json
import os
import sys
from typing import Any, Dict

import aiohttp

from core.active import ServiceKind
from core.config import ConfigAccessor, ConfigProvider, build_config, load_yaml
from core.runner import RunnerState, bind
from core.triage import classify, is_blocked
from storage.documents import DocumentStore
from tasks import LOOPS, find_loop


def _env(key: str, default: Any) -> Any:
    return os.environ.get(key, default)


def _config_path() -> str:
    return _env('CONFIG_PATH', '/app/config.yaml')


def _settings() -> Dict[str, Any]:
    return build_config(load_yaml(_config_path()))


def _store(settings: Dict[str, Any]) -> DocumentStore:
    return DocumentStore(str(ConfigAccessor(settings).general('data_path')))


def cmd_status(args):
    store = _store(_settings())
    state = store.find_current_state()
    print(
        json.dumps(
            {
                'data_path': store.path,
                'revision': state.revision,
                'loops': state.data.get('loops') or {},
                'policy_overrides': state.data.get('policy_overrides') or {},
            },
            indent=2,
        )
    )


def cmd_reenable(args):
    provider = ConfigProvider(_config_path(), store=_store(_settings()))
    if asyncio.run(provider.reenable_policy(args.flag)):
        print(f'Re-enabled {args.flag}')
    else:
        print(f'{args.flag} has no override')


def cmd_classify(args):
    with open(args.item_json, 'r') as f:
        entry = json.load(f)
    decision = classify(entry, ServiceKind(args.service))
    print(
        json.dumps(
            {
                'blocked': is_blocked(entry),
                'outcome': decision.outcome.value,
                'reason': decision.reason,
                'messages': list(decision.messages),
            },
            indent=2,
        )
    )


async def _run_once(name: str) -> bool:
    # Imported here so the read-only commands never configure logging
    import reconciler

    spec = find_loop(name)
    settings = _settings()
    event_log = reconciler.setup_logging(ConfigAccessor(settings).debug_logging)
    store = reconciler.make_store(settings)
    provider = ConfigProvider(_config_path(), store=store)
    async with aiohttp.ClientSession() as session:
        state = RunnerState(session=session, store=store, config=provider, event_logger=event_log)
        scheduler = reconciler.make_scheduler(provider, store, state)
        return await scheduler.run_once(spec.name, bind(state, spec.task))


def cmd_once(args):
    if find_loop(args.loop) is None:
        print(f'Unknown loop {args.loop}. Choose from: {", ".join(s.name for s in LOOPS)}')
        sys.exit(1)
    if not asyncio.run(_run_once(args.loop)):
        sys.exit(1)


def cmd_run(args):
    import reconciler

    asyncio.run(reconciler.main())


def main(argv=None):
    ap = argparse.ArgumentParser(description='Media Library Reconciler CLI')
    sub = ap.add_subparsers(dest='cmd')

    p_status = sub.add_parser('status', help='Show loop run times and policy overrides')
    p_status.set_defaults(func=cmd_status)

    p_re = sub.add_parser('reenable', help='Clear a persisted policy override')
    p_re.add_argument('flag', help='Policy flag, e.g. remove_missing')
    p_re.set_defaults(func=cmd_reenable)

    p_cls = sub.add_parser('classify', help='Classify a queue entry JSON without acting on it')
    p_cls.add_argument('item_json', help='Path to queue entry JSON file')
    p_cls.add_argument('--service', default='Radarr', choices=[k.value for k in ServiceKind])
    p_cls.set_defaults(func=cmd_classify)

    p_once = sub.add_parser('once', help='Run a single loop once and exit')
    p_once.add_argument('loop', help='Loop name, e.g. remove_blocked')
    p_once.set_defaults(func=cmd_once)

    p_run = sub.add_parser('run', help='Start every loop (default)')
    p_run.set_defaults(func=cmd_run)

    args = ap.parse_args(argv)
    if not hasattr(args, 'func'):
        args.func = cmd_run
    args.func(args)


if __name__ == '__main__':
    main()
