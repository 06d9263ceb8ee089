from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

import aiohttp

from core.actions import build_manual_import_command, build_search_command, rejection_check
from core.active import ActiveService, ServiceKind
from core.utils import clean_url, run_bounded
from integrations.services import RequestManager

COMMAND_NAMES_URL = 'https://raw.githubusercontent.com/{name}/{name}/develop/frontend/src/Commands/commandNames.js'
_COMMAND_RE = re.compile(r"'([\w\s]+)'")


class StarrClient:
    def __init__(
        self,
        service: ActiveService,
        session: aiohttp.ClientSession,
        requests: Optional[RequestManager] = None,
    ) -> None:
        self.service = service
        self.session = session
        self.requests = requests or RequestManager()

    @property
    def name(self) -> str:
        return self.service.name

    @property
    def kind(self) -> ServiceKind:
        return self.service.kind

    def _url(self, path: str) -> str:
        return clean_url(f'{self.service.api_base}/{path.lstrip("/")}')

    async def _call(self, path: str, **kwargs):
        return await self.requests.request(
            self.session, self.name, self._url(path), self.service.api_key, **kwargs
        )

    async def _get_list(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[List[Any]]:
        data = await self._call(path, params=params)
        if isinstance(data, list):
            return data
        if data is not None:
            logging.error(f'{self.name}: unexpected response from {path}')
        return None

    async def _get_paged(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[List[Dict[str, Any]]]:
        base = dict(params or {})
        first = await self._call(path, params={**base, 'page': 1, 'pageSize': 1})
        if not isinstance(first, dict) or 'totalRecords' not in first:
            return None
        total = int(first.get('totalRecords') or 0)
        if total <= len(first.get('records') or []):
            return list(first.get('records') or [])
        full = await self._call(path, params={**base, 'page': 1, 'pageSize': total})
        if not isinstance(full, dict):
            return None
        return list(full.get('records') or [])

    # Reads
    async def get_queue(self) -> Optional[List[Dict[str, Any]]]:
        return await self._get_paged('queue')

    async def get_library(self) -> Optional[List[Dict[str, Any]]]:
        return await self._get_list(self.kind.content_name)

    async def get_root_folder(self) -> Optional[List[Dict[str, Any]]]:
        return await self._get_list('rootfolder')

    async def get_import_lists(self) -> Optional[List[Dict[str, Any]]]:
        return await self._get_list('importlist')

    async def get_commands(self) -> Optional[List[Dict[str, Any]]]:
        return await self._get_list('command')

    async def get_missing_wanted(self) -> Optional[List[Dict[str, Any]]]:
        return await self._get_paged('wanted/missing')

    async def get_command_list(self) -> Optional[List[str]]:
        url = COMMAND_NAMES_URL.format(name=self.name)
        try:
            async with self.session.get(url, timeout=aiohttp.ClientTimeout(total=10)) as resp:
                if resp.status != 200:
                    logging.error(f'{self.name}: could not scrape command names ({resp.status})')
                    return None
                text = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logging.error(f'{self.name}: could not scrape command names: {e}')
            return None
        return _COMMAND_RE.findall(text)

    async def get_episodes(self, series: List[Dict[str, Any]], batch_size: int = 3) -> Optional[List[Dict[str, Any]]]:
        if self.kind is not ServiceKind.SONARR:
            return []

        async def fetch(show: Dict[str, Any]):
            params = {'seriesId': show.get('id')}
            episodes = await self._get_list('episode', params)
            files = await self._get_list('episodefile', params)
            if episodes is None or files is None:
                raise LookupError(f'episodes for series {show.get("id")} unavailable')
            by_id = {f.get('id'): f for f in files}
            return [
                {**ep, 'episodeFile': by_id[ep.get('episodeFileId')]} if ep.get('episodeFileId') in by_id else ep
                for ep in episodes
            ]

        results = await run_bounded(series, fetch, batch_size)
        out: List[Dict[str, Any]] = []
        for show, res in zip(series, results):
            if isinstance(res, Exception):
                logging.error(f'{self.name}: {res}')
                return None
            out.extend(res)
        return out

    async def get_manual_import(self, entry: Dict[str, Any]) -> Optional[List[Dict[str, Any]]]:
        return await self._get_list(
            'manualimport', {'downloadId': entry.get('downloadId'), 'filterExistingFiles': 'false'}
        )

    # Writes
    async def delete_queue_entry(self, entry: Dict[str, Any], reason: str = '', blocklist: bool = False) -> bool:
        params = {'removeFromClient': 'true'}
        if blocklist:
            params['blocklist'] = 'true'
        res = await self._call(f'queue/{entry.get("id")}', params=params, method='delete')
        if res is None:
            logging.error(f'{self.name} | {entry.get("title")} could not be deleted from the queue.')
            return False
        logging.info(f'{self.name} | {entry.get("title")} has been deleted from the queue. {reason}'.rstrip())
        return True

    async def delete_from_library(self, item: Dict[str, Any]) -> bool:
        res = await self._call(
            f'{self.kind.content_name}/{item.get("id")}',
            params={'deleteFiles': 'true'},
            method='delete',
        )
        if res is None:
            logging.error(f'{self.name}: {item.get("title")} could not be deleted from the library.')
            return False
        logging.info(f'{self.name}: {item.get("title")} deleted!')
        return True

    async def send_command(self, command: Dict[str, Any]) -> bool:
        res = await self._call('command', json_data=command, method='post')
        return res is not None

    async def trigger_search(self, item: Dict[str, Any]) -> bool:
        command = build_search_command(self.kind, item)
        if command is None:
            return False
        ok = await self.send_command(command)
        if ok:
            logging.info(f'{self.name}: triggered {command["name"]} for {item.get("title") or item.get(self.kind.foreign_key)}')
        return ok

    async def blocklist_and_research(self, entry: Dict[str, Any], reason: str = '') -> bool:
        if not await self.delete_queue_entry(entry, reason, blocklist=True):
            return False
        await self.trigger_search(entry)
        return True

    async def trigger_import(self, entry: Dict[str, Any]) -> str:
        """Import a blocked download. Returns 'imported', 'deleted' or 'failed'."""
        candidates = await self.get_manual_import(entry)
        if candidates is None:
            logging.error(f'{self.name} | Failed to retrieve manual import data for {entry.get("title")}.')
            return 'failed'
        if not candidates:
            return 'deleted' if await self.delete_queue_entry(entry, 'Download missing!') else 'failed'
        candidate = candidates[0]
        rejected = rejection_check(candidate, ['already imported'])
        if rejected:
            return 'deleted' if await self.delete_queue_entry(entry, f'{rejected.capitalize()}.') else 'failed'
        if not await self.send_command(build_manual_import_command(candidate)):
            return 'failed'
        logging.info(f'{self.name} | {entry.get("title")} | Imported!')
        return 'imported'

    async def search_missing(self, command_name: str) -> bool:
        ok = await self.send_command({'name': command_name})
        if ok:
            logging.info(f'wanted_missing | {self.name} search started.')
        return ok
