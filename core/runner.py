from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from core.active import ActiveService
from core.config import ConfigAccessor
from core.counter import StallCounter
from core.events import EventBus
from integrations.clients.qbittorrent import QBittorrentClient
from integrations.filesystem import LocalFileSystem
from integrations.services import RequestManager, RequestOptions
from integrations.starr import StarrClient


@dataclass
class RunnerState:
    session: Any
    store: Any
    config: Any
    requests: RequestManager = field(default_factory=RequestManager)
    filesystem: Any = field(default_factory=LocalFileSystem)
    counters: Dict[str, StallCounter] = field(default_factory=dict)
    # Factories so tests can hand in fake clients
    starr_factory: Optional[Callable[[ActiveService, 'TaskContext'], Any]] = None
    qbittorrent_factory: Optional[Callable[['TaskContext'], Any]] = None
    event_logger: Any = None

    def counter(self, name: str) -> StallCounter:
        if name not in self.counters:
            self.counters[name] = StallCounter()
        return self.counters[name]

    def context(self, settings: Dict[str, Any]) -> 'TaskContext':
        self.requests.options = RequestOptions.from_settings(settings)
        return TaskContext(
            settings=settings,
            state=self,
            events=EventBus.from_settings(settings, self.event_logger),
        )


@dataclass
class TaskContext:
    settings: Dict[str, Any]
    state: RunnerState
    events: EventBus

    @property
    def accessor(self) -> ConfigAccessor:
        return ConfigAccessor(self.settings)

    @property
    def dry_run(self) -> bool:
        return self.accessor.dry_run

    @property
    def debug_logging(self) -> bool:
        return self.accessor.debug_logging

    @property
    def session(self) -> Any:
        return self.state.session

    @property
    def store(self) -> Any:
        return self.state.store

    @property
    def filesystem(self) -> Any:
        return self.state.filesystem

    def counter(self, name: str) -> StallCounter:
        return self.state.counter(name)

    def starr(self, service: ActiveService) -> Any:
        if self.state.starr_factory is not None:
            return self.state.starr_factory(service, self)
        return StarrClient(service, self.session, self.state.requests)

    def qbittorrent(self) -> Any:
        if not self.accessor.qbittorrent_active():
            return None
        if self.state.qbittorrent_factory is not None:
            return self.state.qbittorrent_factory(self)
        return QBittorrentClient.from_settings(self.session, self.settings, self.store)

    async def emit(self, event: str, **kwargs) -> None:
        await self.events.emit(self.session, event, **kwargs)


TaskFn = Callable[[TaskContext], Awaitable[None]]


def bind(state: RunnerState, task: TaskFn) -> Callable[[Dict[str, Any]], Awaitable[None]]:
    async def work(settings: Dict[str, Any]) -> None:
        ctx = state.context(settings)
        if ctx.debug_logging:
            logging.debug(f'Running {getattr(task, "__module__", task)}')
        await task(ctx)

    return work
