from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from integrations import notifications

EVENT_LOGGER_NAME = 'reconciler.events'


class EventBus:
    def __init__(
        self,
        config: Dict[str, Any],
        *,
        structured_logs: bool,
        dry_run: bool,
        debug_logging: bool,
        logger,
    ) -> None:
        self.config = config
        self.structured_logs = structured_logs
        self.dry_run = dry_run
        self.debug_logging = debug_logging
        self.logger = logger

    @classmethod
    def from_settings(cls, settings: Dict[str, Any], logger=None) -> 'EventBus':
        gen = settings.get('general') or {}
        return cls(
            settings,
            structured_logs=bool(gen.get('structured_logs', True)),
            dry_run=bool(gen.get('dry_run', False)),
            debug_logging=bool(gen.get('debug_logging', False)),
            logger=logger or logging.getLogger(EVENT_LOGGER_NAME),
        )

    def log(self, event: str, **fields) -> None:
        payload = {"event": event, **fields}
        if self.structured_logs:
            self.logger.info(json.dumps(payload, ensure_ascii=False, default=str))
        else:
            self.logger.info(f"{event}: {fields}")

    async def emit(
        self,
        session: Optional[aiohttp.ClientSession],
        event: str,
        *,
        service: Optional[str] = None,
        item: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
        notify: bool = False,
        **fields,
    ) -> None:
        if self.dry_run and not event.startswith('dry_'):
            event = f'dry_{event}'
        if item is not None:
            fields.setdefault('id', item.get('id'))
            fields.setdefault('title', item.get('title'))
        if service is not None:
            fields.setdefault('service', service)
        if reason is not None:
            fields.setdefault('reason', reason)

        self.log(event, **fields)

        if notify and session is not None:
            await notifications.handle(session, event, fields, self.config, self.dry_run)

    async def flush(self, session: Optional[aiohttp.ClientSession]) -> None:
        if session is not None:
            await notifications.flush(session, self.dry_run)
