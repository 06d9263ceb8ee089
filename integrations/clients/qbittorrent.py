from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, Dict, List, Optional

import aiohttp

from core.matcher import Torrent

# qBittorrent's default WebUI session timeout is one hour
SESSION_TTL = 3600
_SID_RE = re.compile(r'SID=[^;]+')


class QBittorrentClient:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str,
        username: str = '',
        password: str = '',
        *,
        store: Any = None,
        request_timeout: int = 10,
    ) -> None:
        self.session = session
        self.base_url = url.rstrip('/')
        self.username = username
        self.password = password
        self.store = store
        self.timeout = aiohttp.ClientTimeout(total=request_timeout)
        self.cookie: Optional[str] = None
        self.cookie_expiry: float = 0.0
        if store is not None:
            state = store.find_current_state()
            self.cookie = state.get('qbittorrent', 'cookie')
            self.cookie_expiry = float(state.get('qbittorrent', 'cookie_expiry') or 0.0)

    @classmethod
    def from_settings(cls, session: aiohttp.ClientSession, settings: Dict[str, Any], store: Any = None) -> 'QBittorrentClient':
        conns = settings.get('connections') or {}
        gen = settings.get('general') or {}
        return cls(
            session,
            str(conns.get('qbittorrent_url') or ''),
            str(conns.get('qbittorrent_username') or ''),
            str(conns.get('qbittorrent_password') or ''),
            store=store,
            request_timeout=int(gen.get('request_timeout', 10)),
        )

    def cookie_valid(self) -> bool:
        return bool(self.cookie) and self.cookie_expiry > time.time()

    async def _persist_cookie(self) -> None:
        if self.store is None:
            return
        state = self.store.find_current_state()
        state.set('qbittorrent', 'cookie', self.cookie)
        state.set('qbittorrent', 'cookie_expiry', self.cookie_expiry)
        await self.store.save_with_retry(state, 'qbittorrent', delay=0.1)

    async def login(self) -> bool:
        form = aiohttp.FormData()
        form.add_field('username', self.username)
        form.add_field('password', self.password)
        try:
            resp = await self.session.post(f'{self.base_url}/api/v2/auth/login', data=form, timeout=self.timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logging.error(f'qBittorrent: login request failed: {e}')
            return False
        if getattr(resp, 'status', None) != 200:
            logging.error(f'qBittorrent: login rejected ({getattr(resp, "status", None)})')
            return False
        found = _SID_RE.search(str(resp.headers.get('Set-Cookie') or ''))
        if not found:
            logging.error('qBittorrent: Could not find cookie in response headers.')
            return False
        self.cookie = found.group(0)
        self.cookie_expiry = time.time() + SESSION_TTL - 60
        await self._persist_cookie()
        return True

    async def _request(self, method: str, path: str, **kwargs):
        for attempt in range(2):
            if not self.cookie_valid() and not await self.login():
                return None
            call = self.session.get if method == 'get' else self.session.post
            try:
                resp = await call(
                    f'{self.base_url}{path}', headers={'Cookie': self.cookie}, timeout=self.timeout, **kwargs
                )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logging.error(f'qBittorrent: {method.upper()} {path} failed: {e}')
                return None
            if resp.status == 403 and attempt == 0:
                # Session expired server side
                self.cookie = None
                self.cookie_expiry = 0.0
                continue
            if resp.status != 200:
                logging.error(f'qBittorrent: {method.upper()} {path} -> {resp.status}')
                return None
            return resp
        return None

    async def list_torrents(self) -> Optional[List[Torrent]]:
        resp = await self._request('get', '/api/v2/torrents/info')
        if resp is None:
            return None
        try:
            data = await resp.json()
        except (aiohttp.ContentTypeError, ValueError) as e:
            logging.error(f'qBittorrent: could not decode torrent list: {e}')
            return None
        if not isinstance(data, list):
            return None
        return [Torrent.from_api(t) for t in data if isinstance(t, dict)]

    async def delete_torrent(self, torrent_hash: str, delete_files: bool = True) -> bool:
        resp = await self._request(
            'post',
            '/api/v2/torrents/delete',
            data={'hashes': torrent_hash, 'deleteFiles': 'true' if delete_files else 'false'},
        )
        return resp is not None
