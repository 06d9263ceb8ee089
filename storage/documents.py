from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set, Tuple

# Sections keyed by service name ('Radarr', 'Sonarr', 'Lidarr')
SERVICE_SECTIONS = (
    'commands',
    'command_lists',
    'download_queues',
    'libraries',
    'episodes',
    'import_lists',
    'root_folders',
    'missing_wanteds',
)
# Sections keyed by something else (loop name, policy flag) or flat
OTHER_SECTIONS = ('loops', 'qbittorrent', 'policy_overrides')


class StoreConflictError(Exception):
    """Raised when the on-disk revision moved since the document was read."""


def empty_document() -> Dict[str, Any]:
    doc: Dict[str, Any] = {'revision': 0, 'updated_at': None}
    for name in SERVICE_SECTIONS + OTHER_SECTIONS:
        doc[name] = {}
    return doc


def normalize_document(raw: Any) -> Dict[str, Any]:
    base = empty_document()
    if not isinstance(raw, dict):
        return base
    try:
        base['revision'] = int(raw.get('revision') or 0)
    except (TypeError, ValueError):
        base['revision'] = 0
    base['updated_at'] = raw.get('updated_at')
    for name in SERVICE_SECTIONS + OTHER_SECTIONS:
        if isinstance(raw.get(name), dict):
            base[name] = raw[name]
    return base


@dataclass
class StateDocument:
    data: Dict[str, Any]
    dirty: Set[Tuple[str, Optional[str]]] = field(default_factory=set)

    @property
    def revision(self) -> int:
        return int(self.data.get('revision') or 0)

    def get_service_data(self, section: str, service_name: str, default: Any = None) -> Any:
        entry = (self.data.get(section) or {}).get(service_name)
        if not isinstance(entry, dict):
            return default
        return entry.get('data', default)

    def get_updated_at(self, section: str, service_name: str) -> Optional[float]:
        entry = (self.data.get(section) or {}).get(service_name)
        if isinstance(entry, dict):
            return entry.get('updated_at')
        return None

    def set_service_data(self, section: str, service_name: str, value: Any) -> None:
        sec = self.data.setdefault(section, {})
        prev = sec.get(service_name) if isinstance(sec.get(service_name), dict) else {}
        now = time.time()
        sec[service_name] = {
            'data': value,
            'created_at': prev.get('created_at') or now,
            'updated_at': now,
        }
        self.dirty.add((section, service_name))

    def get(self, section: str, key: str, default: Any = None) -> Any:
        return (self.data.get(section) or {}).get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        self.data.setdefault(section, {})[key] = value
        self.dirty.add((section, key))

    def pop(self, section: str, key: str) -> None:
        (self.data.get(section) or {}).pop(key, None)
        self.dirty.add((section, key))


class DocumentStore:
    def __init__(self, path: str, debug_logging: bool = False) -> None:
        self.path = path
        self.debug_logging = debug_logging
        self._lock = asyncio.Lock()

    def _read_raw(self) -> Dict[str, Any]:
        try:
            with open(self.path, 'r') as file:
                return normalize_document(json.load(file))
        except (FileNotFoundError, json.JSONDecodeError):
            if self.debug_logging:
                logging.warning('State file not found or is invalid. Starting with an empty document.')
            return empty_document()

    def _write_raw(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = self.path + '.tmp'
        with open(tmp_path, 'w') as file:
            json.dump(data, file, indent=2)
        os.replace(tmp_path, self.path)

    def find_current_state(self) -> StateDocument:
        return StateDocument(data=self._read_raw())

    async def save(self, state: StateDocument) -> StateDocument:
        async with self._lock:
            current = self._read_raw()
            if int(current.get('revision') or 0) != state.revision:
                raise StoreConflictError(
                    f'revision moved from {state.revision} to {current.get("revision")}'
                )
            state.data['revision'] = state.revision + 1
            state.data['updated_at'] = time.time()
            self._write_raw(state.data)
            state.dirty.clear()
            return state

    def _rebase(self, state: StateDocument) -> None:
        latest = self._read_raw()
        for section, key in state.dirty:
            mine = state.data.get(section) or {}
            target = latest.setdefault(section, {})
            if key in mine:
                target[key] = copy.deepcopy(mine[key])
            else:
                target.pop(key, None)
        state.data = latest

    async def save_with_retry(
        self,
        state: StateDocument,
        loop_name: str,
        max_retries: int = 3,
        delay: float = 3.0,
    ) -> Optional[StateDocument]:
        """Persist ``state``, rebasing on conflict. Returns None after ``max_retries`` attempts."""
        if not state.dirty:
            return state
        attempts = 0
        while attempts < max_retries:
            try:
                return await self.save(state)
            except (StoreConflictError, OSError) as e:
                attempts += 1
                if attempts >= max_retries:
                    logging.error(f'{loop_name}: Max state save retries reached, operation failed: {e}')
                    return None
                logging.warning(f'{loop_name}: Retrying state save... Attempt {attempts}')
                await asyncio.sleep(delay)
                self._rebase(state)
        return None

    # Loop bookkeeping
    def get_loop_state(self, loop_name: str) -> Optional[Dict[str, Any]]:
        entry = self._read_raw().get('loops', {}).get(loop_name)
        return entry if isinstance(entry, dict) else None

    async def update_loop_state(self, loop_name: str) -> Optional[StateDocument]:
        state = self.find_current_state()
        now = time.time()
        entry = state.get('loops', loop_name) or {}
        state.set('loops', loop_name, {
            'first_ran': entry.get('first_ran') or now,
            'last_ran': now,
        })
        return await self.save_with_retry(state, loop_name, delay=0.1)
