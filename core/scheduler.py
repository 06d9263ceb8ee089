from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from core.config import ConfigAccessor

Work = Callable[[Dict[str, Any]], Awaitable[Any]]
AfterRun = Callable[[str], Awaitable[None]]


def valid_interval(interval: Any) -> bool:
    if isinstance(interval, bool) or not isinstance(interval, (int, float)):
        return False
    return interval > 0


class LoopScheduler:
    """Self-rescheduling runner for named periodic loops."""

    def __init__(
        self,
        config_provider: Any,
        store: Any = None,
        *,
        minute: float = 60.0,
        after_run: Optional[AfterRun] = None,
    ) -> None:
        self.config_provider = config_provider
        self.store = store
        self.minute = minute
        self.after_run = after_run
        self._active: Set[str] = set()
        self._running: Set[str] = set()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._stops: Dict[str, asyncio.Event] = {}

    def is_active(self, name: str) -> bool:
        return name in self._active

    @property
    def active(self) -> Set[str]:
        return set(self._active)

    def _policy(self, name: str, fixed_interval: Optional[float]):
        settings = self.config_provider.snapshot()
        if fixed_interval is not None:
            return settings, True, fixed_interval
        enabled, interval = ConfigAccessor(settings).loop_policy(name)
        return settings, enabled, interval

    def _checked(self, name: str, fixed_interval: Optional[float]):
        settings, enabled, interval = self._policy(name, fixed_interval)
        if not enabled:
            override = ConfigAccessor(settings).policy_override(name)
            if override:
                logging.warning(f'{name}: disabled by policy override ({override.get("reason")}); not rescheduling.')
            else:
                logging.info(f'{name}: loop disabled; not rescheduling.')
            return settings, None
        if not valid_interval(interval):
            logging.error(f'{name}: invalid interval {interval!r}; loop halted until reconfigured.')
            return settings, None
        return settings, float(interval)

    def should_skip_loop(self, name: str, interval: float) -> bool:
        if self.store is None:
            return False
        loop_state = self.store.get_loop_state(name)
        last_ran = (loop_state or {}).get('last_ran')
        if not isinstance(last_ran, (int, float)):
            return False
        elapsed = time.time() - last_ran
        if elapsed < (interval - 1) * self.minute:
            mins = elapsed / self.minute if self.minute else 0
            logging.warning(f'{name}: last ran {mins:.0f} minutes ago; skipping the first run.')
            return True
        return False

    def schedule(
        self,
        name: str,
        work: Work,
        *,
        skip_first: bool = False,
        fixed_interval: Optional[float] = None,
    ) -> bool:
        if name in self._active:
            logging.warning(f'{name}: loop is already running; ignoring schedule request.')
            return False
        _, interval = self._checked(name, fixed_interval)
        if interval is None:
            return False
        self._active.add(name)
        stop = asyncio.Event()
        self._stops[name] = stop
        self._tasks[name] = asyncio.create_task(
            self._run_loop(name, work, skip_first, fixed_interval, stop)
        )
        return True

    async def _run_loop(
        self,
        name: str,
        work: Work,
        skip_first: bool,
        fixed_interval: Optional[float],
        stop: asyncio.Event,
    ) -> None:
        first = True
        try:
            while not stop.is_set():
                settings, interval = self._checked(name, fixed_interval)
                if interval is None:
                    break
                skip = first and (skip_first or self.should_skip_loop(name, interval))
                first = False
                if not skip:
                    await self._execute(name, work, settings)
                # Rearm with whatever interval is configured now
                _, interval = self._checked(name, fixed_interval)
                if interval is None:
                    break
                try:
                    await asyncio.wait_for(stop.wait(), timeout=interval * self.minute)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._active.discard(name)
            self._tasks.pop(name, None)
            self._stops.pop(name, None)

    async def _execute(self, name: str, work: Work, settings: Dict[str, Any]) -> bool:
        if name in self._running:
            logging.warning(f'{name}: previous run still in progress; skipping.')
            return False
        self._running.add(name)
        started = time.monotonic()
        try:
            await work(settings)
        except Exception as e:
            logging.exception(f'{name}: run failed: {e}')
        finally:
            self._running.discard(name)
        if self.store is not None:
            try:
                await self.store.update_loop_state(name)
            except Exception as e:
                logging.exception(f'{name}: could not record loop state: {e}')
        if self.after_run is not None:
            try:
                await self.after_run(name)
            except Exception as e:
                logging.exception(f'{name}: after-run hook failed: {e}')
        logging.debug(f'{name}: finished in {time.monotonic() - started:.2f}s')
        return True

    async def run_once(self, name: str, work: Work) -> bool:
        return await self._execute(name, work, self.config_provider.snapshot())

    def stop(self, name: Optional[str] = None) -> None:
        names = [name] if name is not None else list(self._stops.keys())
        for n in names:
            stop = self._stops.get(n)
            if stop is not None:
                stop.set()

    async def wait(self) -> None:
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks)
