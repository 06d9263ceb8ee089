from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from typing import Iterable, List

FAILED_MARKER = '_FAILED_'

_OPS = {'read': os.R_OK, 'write': os.W_OK, 'execute': os.X_OK}


@dataclass
class FailedScan:
    path: str
    searched: int = 0
    deletions: int = 0


def _list_children(path: str) -> List[str]:
    with os.scandir(path) as entries:
        return sorted(os.path.join(path, e.name) for e in entries if e.is_dir(follow_symlinks=False))


def _delete(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.unlink(path)


class LocalFileSystem:
    async def list_child_directories(self, path: str) -> List[str]:
        try:
            return await asyncio.to_thread(_list_children, path)
        except OSError as e:
            logging.error(f'Filesystem: could not list {path}: {e}')
            return []

    async def delete_path(self, path: str) -> bool:
        if not os.path.lexists(path):
            logging.warning(f'Filesystem: File or directory not found: {path}')
            return False
        try:
            await asyncio.to_thread(_delete, path)
        except OSError as e:
            logging.error(f'Filesystem: Error deleting {path}: {e}')
            return False
        logging.info(f'Filesystem: Successfully deleted {path}')
        return True

    def check_permissions(self, path: str, ops: Iterable[str] = ('read', 'write')) -> bool:
        mode = 0
        for op in ops:
            mode |= _OPS[op]
        return os.path.exists(path) and os.access(path, mode)

    async def find_failed_downloads(self, path: str) -> List[str]:
        def scan() -> List[str]:
            with os.scandir(path) as entries:
                return sorted(os.path.join(path, e.name) for e in entries if FAILED_MARKER in e.name)

        try:
            return await asyncio.to_thread(scan)
        except OSError as e:
            logging.error(f'Filesystem: could not scan {path}: {e}')
            return []

    async def count_entries(self, path: str) -> int:
        try:
            return len(await asyncio.to_thread(os.listdir, path))
        except OSError:
            return 0
