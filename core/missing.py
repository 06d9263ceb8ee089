from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from core.active import ActiveService, ServiceKind
from core.config import ConfigAccessor
from core.matcher import Torrent, seed_check_reason, torrent_downloaded_check, torrent_seed_check
from core.utils import plural
from integrations.mdblist import is_supported

DOWNLOADING_STATES = ('downloading', 'stalledDL', 'metaDL', 'queuedDL', 'forcedDL', 'pausedDL', 'stoppedDL')


class PolicyMisconfigured(Exception):
    """A policy cannot run safely with the current configuration."""

    def __init__(self, flag: str, service: str, reason: str) -> None:
        super().__init__(f'{service}: {reason}')
        self.flag = flag
        self.service = service
        self.reason = reason


@dataclass
class MissingCounters:
    library: int = 0
    list_items: int = 0
    marked: int = 0
    usenet_deleted: int = 0
    torrent_deleted: int = 0
    paths_deleted: int = 0
    downloading: int = 0
    awaiting_ratio: int = 0
    awaiting_time: int = 0
    user_protected: int = 0
    failed: int = 0

    @property
    def deleted(self) -> int:
        return self.usenet_deleted + self.torrent_deleted + self.paths_deleted

    def summary(self, service: str, level: str) -> str:
        return (
            f'Remove Missing {service} | Level: {level}. Library: {self.library}. '
            f'Marked: {self.marked}. Deleted: {self.deleted} '
            f'(usenet: {self.usenet_deleted}, torrent: {self.torrent_deleted}, paths: {self.paths_deleted}). '
            f'Downloading: {self.downloading}. Awaiting ratio: {self.awaiting_ratio}. '
            f'Awaiting time: {self.awaiting_time}. Protected: {self.user_protected}. '
            f'Failed: {self.failed}.'
        )


@dataclass
class WantedSet:
    tmdb: Set[Any] = field(default_factory=set)
    imdb: Set[Any] = field(default_factory=set)
    tvdb: Set[Any] = field(default_factory=set)

    def __len__(self) -> int:
        return len(self.tmdb | self.imdb | self.tvdb)

    def wants(self, item: Dict[str, Any]) -> bool:
        return (
            (item.get('tmdbId') is not None and item.get('tmdbId') in self.tmdb)
            or (item.get('imdbId') is not None and item.get('imdbId') in self.imdb)
            or (item.get('tvdbId') is not None and item.get('tvdbId') in self.tvdb)
        )


def build_wanted_set(list_items: Iterable[Dict[str, Any]]) -> WantedSet:
    wanted = WantedSet()
    for entry in list_items:
        if entry.get('id') is not None:
            wanted.tmdb.add(entry['id'])
        if entry.get('imdb_id'):
            wanted.imdb.add(entry['imdb_id'])
        if entry.get('tvdbid'):
            wanted.tvdb.add(entry['tvdbid'])
    return wanted


def check_import_lists(service: ActiveService, flag: str = 'remove_missing') -> bool:
    lists = [il for il in service.import_lists if isinstance(il, dict)]
    if not lists:
        logging.warning(f'removeMissing: {service.name} has no Import Lists.')
        return False
    supported = [il for il in lists if is_supported(il)]
    if not supported:
        logging.warning(f'removeMissing: {service.name} has no supported Import Lists. Skipping.')
        return False
    if len(supported) != len(lists):
        names = ', '.join(str(il.get('name')) for il in lists if not is_supported(il))
        raise PolicyMisconfigured(
            flag,
            service.name,
            f'unsupported Import Lists mixed with supported ones: [{names}]',
        )
    return True


def not_wanted(library: List[Dict[str, Any]], wanted: WantedSet) -> List[Dict[str, Any]]:
    return [item for item in library if not wanted.wants(item)]


def filter_user_pools(
    items: List[Dict[str, Any]],
    kind: ServiceKind,
    settings: Dict[str, Any],
) -> Tuple[List[Dict[str, Any]], Dict[str, List[str]]]:
    if kind.pool_key is None:
        return list(items), {}
    acc = ConfigAccessor(settings)
    reserved = acc.pool_ids(kind.pool_key)
    skipped: Dict[str, List[str]] = {}
    for item in items:
        if item.get('id') not in reserved:
            continue
        for user in acc.users():
            if item.get('id') in acc.user_pool(user, kind.pool_key):
                name = str(user.get('name') or user.get('id'))
                skipped.setdefault(name, []).append(str(item.get('title')))
    kept = [item for item in items if item.get('id') not in reserved]
    return kept, skipped


def log_pool_skips(service: str, kind: ServiceKind, skipped: Dict[str, List[str]]) -> None:
    singular = kind.content_name
    plural_form = 'movies' if kind is ServiceKind.RADARR else kind.content_name
    for user, titles in skipped.items():
        logging.info(
            f"{service}: Skipping {len(titles)} {plural(len(titles), singular, plural_form)} "
            f"in {user}'s pool: [{', '.join(titles)}]"
        )


def item_torrents(item: Dict[str, Any], kind: ServiceKind) -> List[Torrent]:
    files: List[Dict[str, Any]] = []
    if kind is ServiceKind.RADARR:
        if item.get('torrent') and isinstance(item.get('torrentFile'), dict):
            files.append(item['torrentFile'])
    elif kind is ServiceKind.SONARR:
        for season in item.get('seasons') or []:
            for ep in season.get('episodes') or []:
                if isinstance(ep.get('torrentFile'), dict):
                    files.append(ep['torrentFile'])
    seen: Set[str] = set()
    out: List[Torrent] = []
    for f in files:
        t = Torrent.from_dict(f)
        if t.identity in seen:
            continue
        seen.add(t.identity)
        out.append(t)
    return out


def has_torrents(item: Dict[str, Any], kind: ServiceKind) -> bool:
    if kind is ServiceKind.SONARR:
        return bool(item.get('torrentsPresent'))
    return bool(item.get('torrent'))


def seeding_gate(item: Dict[str, Any], kind: ServiceKind, counters: Optional[MissingCounters] = None) -> bool:
    if not has_torrents(item, kind):
        return True
    ready = True
    for t in item_torrents(item, kind):
        if torrent_seed_check(t, kind.content_name):
            continue
        ready = False
        if counters is None:
            continue
        if t.state in DOWNLOADING_STATES:
            counters.downloading += 1
        elif seed_check_reason(t) == 'ratio':
            counters.awaiting_ratio += 1
        else:
            counters.awaiting_time += 1
    return ready


def superseded_ready(torrent: Torrent) -> bool:
    return torrent_downloaded_check(torrent, 'Superseded') and torrent_seed_check(torrent, 'Superseded')


def orphan_paths(children: Iterable[str], library: List[Dict[str, Any]]) -> List[str]:
    library_paths = {os.path.normpath(str(i['path'])) for i in library if i.get('path')}
    return [c for c in children if os.path.normpath(c) not in library_paths]
