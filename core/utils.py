from __future__ import annotations

import asyncio
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

T = TypeVar('T')
R = TypeVar('R')


def secs_to_mins(secs: float) -> float:
    return secs / 60


def caps_first(text: str) -> str:
    return text[:1].upper() + text[1:]


def clean_url(url: str) -> str:
    # Collapse duplicate slashes that are not part of the scheme
    return re.sub(r'([^:]/)/+', r'\1', url)


def plural(count: int, singular: str, plural_form: Optional[str] = None) -> str:
    if count == 1:
        return singular
    return plural_form if plural_form is not None else f'{singular}s'


def status_texts(entry: Dict[str, Any]) -> List[str]:
    out: List[str] = []
    for msg in (entry.get('statusMessages') or []):
        if not isinstance(msg, dict):
            continue
        title = msg.get('title')
        if title:
            out.append(str(title))
        messages = msg.get('messages')
        if isinstance(messages, list):
            out.extend(str(m) for m in messages if m)
        elif messages:
            out.append(str(messages))
        if msg.get('message'):
            out.append(str(msg.get('message')))
    if entry.get('errorMessage'):
        out.append(str(entry.get('errorMessage')))
    return out


async def run_bounded(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int = 3,
) -> List[Any]:
    """Batched gather: a worker's exception is returned in its slot."""
    size = max(1, int(batch_size or 1))
    results: List[Any] = []
    for start in range(0, len(items), size):
        batch = items[start:start + size]
        results.extend(await asyncio.gather(*(worker(i) for i in batch), return_exceptions=True))
    return results
