from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

RETRYABLE_STATUS = (429,)


@dataclass
class RequestOptions:
    request_timeout: int = 10
    retry_attempts: int = 2
    retry_backoff: float = 1.0
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> 'RequestOptions':
        gen = settings.get('general') or {}
        return cls(
            request_timeout=int(gen.get('request_timeout', 10)),
            retry_attempts=int(gen.get('retry_attempts', 2)),
            retry_backoff=float(gen.get('retry_backoff', 1.0)),
            debug_logging=bool(gen.get('debug_logging', False)),
        )


def _backoff(retry_backoff: float, attempt: int) -> float:
    return retry_backoff * (2 ** (attempt - 1)) * (1 + random.uniform(0, 0.25))


async def make_api_request(
    session: aiohttp.ClientSession,
    url: str,
    api_key: Optional[str] = None,
    *,
    params: Optional[Dict[str, Any]] = None,
    json_data: Any = None,
    method: str = 'get',
    headers: Optional[Dict[str, str]] = None,
    request_timeout: int = 10,
    retry_attempts: int = 2,
    retry_backoff: float = 1.0,
    debug_logging: bool = False,
):
    """Returns the decoded JSON, ``{'status': code}`` for an empty body, or None on failure."""
    req_headers = dict(headers or {})
    if api_key:
        req_headers['X-Api-Key'] = api_key
    attempts = 0
    last_error: Optional[Exception] = None
    while attempts <= retry_attempts:
        try:
            timeout = aiohttp.ClientTimeout(total=request_timeout)
            async with session.request(
                method, url, headers=req_headers, params=params, json=json_data, timeout=timeout
            ) as response:
                response.raise_for_status()
                content_type = response.headers.get('Content-Type', '')
                if response.status != 204 and 'application/json' in content_type:
                    try:
                        data = await response.json()
                    except (aiohttp.ContentTypeError, ValueError):
                        data = None
                    # Empty bodies decode to None
                    if data is not None:
                        return data
                if debug_logging:
                    logging.info(f'HTTP {method.upper()} {url} -> {response.status} (no content)')
                return {'status': response.status}
        except aiohttp.ClientResponseError as e:
            retryable = e.status and (500 <= e.status < 600 or e.status in RETRYABLE_STATUS)
            if retryable and attempts < retry_attempts:
                attempts += 1
                sleep_for = _backoff(retry_backoff, attempts)
                if debug_logging:
                    logging.warning(f'HTTP {method.upper()} {url} {e.status}; retrying in {sleep_for:.2f}s (attempt {attempts}/{retry_attempts})')
                await asyncio.sleep(sleep_for)
                last_error = e
                continue
            logging.error(f'HTTP {method.upper()} {url} error {e.status}: {e.message}')
            return None
        except (aiohttp.ClientConnectorError, aiohttp.ClientOSError, aiohttp.ServerTimeoutError, asyncio.TimeoutError) as e:
            if attempts < retry_attempts:
                attempts += 1
                sleep_for = _backoff(retry_backoff, attempts)
                if debug_logging:
                    logging.warning(f'HTTP {method.upper()} {url} network/timeout; retrying in {sleep_for:.2f}s (attempt {attempts}/{retry_attempts})')
                await asyncio.sleep(sleep_for)
                last_error = e
                continue
            logging.error(f'HTTP {method.upper()} {url} network/timeout: {e}')
            return None
        except aiohttp.ClientError as e:
            logging.error(f'HTTP {method.upper()} {url} unexpected error: {e}')
            return None
    if last_error is not None:
        logging.error(f'HTTP {method.upper()} {url} failed after {retry_attempts} retries: {last_error}')
    return None


class RequestManager:
    def __init__(
        self,
        options: Optional[RequestOptions] = None,
        *,
        min_interval_ms: float = 0.0,
        max_concurrent: int = 0,
    ) -> None:
        self.options = options or RequestOptions()
        self.min_interval_ms = min_interval_ms
        self.max_concurrent = max_concurrent
        self._service_last_request_at: Dict[str, float] = {}
        self._service_semaphore: Dict[str, asyncio.Semaphore] = {}

    async def _throttle(self, service_name: str) -> None:
        if not self.min_interval_ms or self.min_interval_ms <= 0:
            return
        loop = asyncio.get_running_loop()
        last = self._service_last_request_at.get(service_name, 0.0)
        wait = (last + (self.min_interval_ms / 1000.0)) - loop.time()
        if wait > 0:
            await asyncio.sleep(wait)
        self._service_last_request_at[service_name] = loop.time()

    async def request(
        self,
        session: aiohttp.ClientSession,
        service_name: str,
        url: str,
        api_key: Optional[str] = None,
        **kwargs,
    ):
        await self._throttle(service_name)
        opts = {
            'request_timeout': self.options.request_timeout,
            'retry_attempts': self.options.retry_attempts,
            'retry_backoff': self.options.retry_backoff,
            'debug_logging': self.options.debug_logging,
        }
        opts.update(kwargs)
        if self.max_concurrent and self.max_concurrent > 0:
            sem = self._service_semaphore.get(service_name)
            if sem is None:
                sem = asyncio.Semaphore(self.max_concurrent)
                self._service_semaphore[service_name] = sem
            async with sem:
                return await make_api_request(session, url, api_key, **opts)
        return await make_api_request(session, url, api_key, **opts)
