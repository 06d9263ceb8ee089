from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Dict, Optional, Union

OnThreshold = Callable[[], Union[None, Awaitable[Any]]]


class StallCounter:
    def __init__(self) -> None:
        self._counts: Dict[str, int] = {}

    def get(self, key: str) -> int:
        return self._counts.get(key, 0)

    def clear(self, key: str) -> None:
        self._counts.pop(key, None)

    def keys(self):
        return list(self._counts.keys())

    def __contains__(self, key: str) -> bool:
        return key in self._counts

    def __len__(self) -> int:
        return len(self._counts)

    async def tick(self, key: str, on_threshold: Optional[OnThreshold], threshold: int) -> int:
        count = self._counts.get(key, 0) + 1
        self._counts[key] = count
        if count >= threshold:
            # Reset before the callback so a raising callback cannot pin the count
            self._counts.pop(key, None)
            if on_threshold is not None:
                res = on_threshold()
                if inspect.isawaitable(res):
                    await res
        return count

    def retain(self, keys) -> None:
        keep = set(keys)
        for k in list(self._counts.keys()):
            if k not in keep:
                self._counts.pop(k, None)
