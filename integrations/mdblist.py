from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import aiohttp

from integrations.services import make_api_request


def _list_urls(import_list: Dict[str, Any]) -> List[str]:
    urls = []
    for f in import_list.get('fields') or []:
        value = f.get('value') if isinstance(f, dict) else None
        if isinstance(value, str) and 'mdblist' in value.lower():
            urls.append(value.rstrip('/'))
    return urls


def is_supported(import_list: Dict[str, Any]) -> bool:
    return bool(_list_urls(import_list))


def is_enabled(import_list: Dict[str, Any]) -> bool:
    return bool(import_list.get('enabled') or import_list.get('enableAutomaticAdd'))


async def fetch_import_list_items(
    session: aiohttp.ClientSession,
    import_lists: List[Dict[str, Any]],
    *,
    service_name: str = '',
    request_timeout: int = 10,
    retry_attempts: int = 2,
    retry_backoff: float = 1.0,
    debug_logging: bool = False,
) -> Optional[List[Dict[str, Any]]]:
    """None when any list could not be fetched."""
    items: Dict[Any, Dict[str, Any]] = {}
    for import_list in import_lists:
        if not is_supported(import_list):
            continue
        if not is_enabled(import_list):
            logging.warning(f'mdbListItems: {service_name}: Import List {import_list.get("name")} is disabled and will be ignored.')
            continue
        for url in _list_urls(import_list):
            data = await make_api_request(
                session,
                f'{url}/json',
                request_timeout=request_timeout,
                retry_attempts=retry_attempts,
                retry_backoff=retry_backoff,
                debug_logging=debug_logging,
            )
            if not isinstance(data, list):
                logging.warning(f'mdbListItems: {service_name}: could not retrieve {url}.')
                return None
            for entry in data:
                if isinstance(entry, dict):
                    items[entry.get('id', id(entry))] = entry
    if not items:
        logging.warning(f'mdbListItems: {service_name}: No Mdblist data.')
    return list(items.values())
