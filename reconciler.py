import asyncio
import logging
import os
import signal
from typing import Any, Dict, Optional

import aiohttp

from core.config import ConfigAccessor, ConfigProvider, build_config, load_yaml
from core.events import EVENT_LOGGER_NAME, EventBus
from core.runner import RunnerState, bind
from core.scheduler import LoopScheduler
from storage.documents import DocumentStore
from tasks import core_loops, get_data

CONFIG_PATH = os.environ.get('CONFIG_PATH', '/app/config.yaml')
LOG_FORMAT = '%(asctime)s [%(levelname)s]: %(message)s'


def setup_logging(debug_logging: bool) -> logging.Logger:
    level = logging.DEBUG if debug_logging else logging.INFO
    logging.basicConfig(
        format=LOG_FORMAT,
        level=level,
        handlers=[logging.StreamHandler()],
        force=True,
    )
    # Event lines get their own handler and never reach the root logger twice
    event_log = logging.getLogger(EVENT_LOGGER_NAME)
    event_log.setLevel(level)
    event_log.propagate = False
    for h in list(event_log.handlers):
        event_log.removeHandler(h)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    event_log.addHandler(handler)
    return event_log


def bootstrap(config_path: Optional[str] = None) -> Dict[str, Any]:
    return build_config(load_yaml(config_path or CONFIG_PATH))


def make_store(settings: Dict[str, Any]) -> DocumentStore:
    acc = ConfigAccessor(settings)
    path = str(acc.general('data_path'))
    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
    return DocumentStore(path, debug_logging=acc.debug_logging)


def make_scheduler(
    provider: ConfigProvider,
    store: DocumentStore,
    state: RunnerState,
    minute: float = 60.0,
) -> LoopScheduler:
    async def after_run(name: str) -> None:
        bus = EventBus.from_settings(provider.snapshot(), state.event_logger)
        await bus.flush(state.session)
        # Loops halted by config or a policy override come back once they are runnable
        if name == get_data.NAME and scheduler.is_active(name):
            resumed = core_loops(scheduler, state)
            if resumed:
                logging.info(f'Resumed loops: {", ".join(resumed)}')

    scheduler = LoopScheduler(provider, store, minute=minute, after_run=after_run)
    return scheduler


async def main() -> None:
    settings = bootstrap()
    event_log = setup_logging(ConfigAccessor(settings).debug_logging)
    store = make_store(settings)
    provider = ConfigProvider(CONFIG_PATH, store=store)

    async with aiohttp.ClientSession() as session:
        state = RunnerState(session=session, store=store, config=provider, event_logger=event_log)
        scheduler = make_scheduler(provider, store, state)
        if ConfigAccessor(settings).dry_run:
            logging.info('Dry run enabled: nothing will be deleted, imported or searched.')

        # Populate the cache before any loop reads it
        await scheduler.run_once(get_data.NAME, bind(state, get_data.run))
        started = core_loops(scheduler, state)
        logging.info(f'Started loops: {", ".join(started) or "none"}')

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, scheduler.stop)
            except NotImplementedError:
                # Not available on every platform; Ctrl+C still cancels asyncio.run
                pass
        await scheduler.wait()
        logging.info('All loops stopped.')


if __name__ == '__main__':
    asyncio.run(main())
