from __future__ import annotations

import logging
import os
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core.active import ActiveService, ServiceKind
from core.utils import secs_to_mins

# qBittorrent states meaning the payload is complete
DOWNLOADED_STATES = ('stalledUP', 'uploading', 'pausedUP', 'stoppedUP', 'queuedUP', 'forcedUP')

# qBittorrent per-torrent limit sentinels
USE_GLOBAL_LIMIT = -2.0
UNLIMITED = -1.0

_PROCESS_RE = re.compile(r'[._\-\[\]\(\)\{\}]+')
_SPACES_RE = re.compile(r'\s+')
_WORD_RE = re.compile(r'[a-z0-9]+')
_YEAR_RE = re.compile(r'^(19|20)\d{2}$')
_RESOLUTION_RE = re.compile(r'^\d{3,4}[pi]$')
_SEASON_MARK_RE = re.compile(r'^s\d{1,2}(e\d{1,3})*$')

_SE_COMPACT_RE = re.compile(r's(\d{1,2})e(\d{1,2})')
_SE_VERBOSE_RE = re.compile(r'season[\s]?(\d{1,2})[\s_-]*episode[\s]?(\d{1,2})')
_SEASON_COMPACT_RE = re.compile(r's(\d{1,2})\b')
_SEASON_VERBOSE_RE = re.compile(r'season[\s_-]?(\d{1,2})\b')
_EPISODE_MARK_RE = re.compile(r'\bs?\d{1,2}e\d{1,2}\b|episode\s?\d{1,2}\b|e\d{1,2}[-e\d]*\b')


def process_name(name: str) -> str:
    return _SPACES_RE.sub(' ', _PROCESS_RE.sub(' ', name.lower())).strip()


@dataclass
class Torrent:
    hash: str
    name: str
    processed_name: str = ''
    state: str = 'unknown'
    ratio: float = 0.0
    ratio_limit: float = 0.0
    seeding_time: float = 0.0  # seconds
    seeding_time_limit: float = 0.0  # minutes
    max_ratio: float = UNLIMITED
    max_seeding_time: float = UNLIMITED  # minutes
    added_on: int = 0
    save_path: str = ''
    content_path: str = ''

    def __post_init__(self) -> None:
        if not self.processed_name:
            self.processed_name = process_name(self.name)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Torrent':
        return cls(
            hash=str(data.get('hash') or ''),
            name=str(data.get('name') or ''),
            state=str(data.get('state') or 'unknown'),
            ratio=float(data.get('ratio') or 0.0),
            ratio_limit=float(data.get('ratio_limit') if data.get('ratio_limit') is not None else 0.0),
            seeding_time=float(data.get('seeding_time') or 0.0),
            seeding_time_limit=float(data.get('seeding_time_limit') if data.get('seeding_time_limit') is not None else 0.0),
            max_ratio=float(data.get('max_ratio') if data.get('max_ratio') is not None else UNLIMITED),
            max_seeding_time=float(data.get('max_seeding_time') if data.get('max_seeding_time') is not None else UNLIMITED),
            added_on=int(data.get('added_on') or 0),
            save_path=str(data.get('save_path') or ''),
            content_path=str(data.get('content_path') or ''),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Torrent':
        fields = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**fields)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def identity(self) -> str:
        return self.hash or self.name


@dataclass
class MatchResult:
    item_id: Any
    kind: ServiceKind
    torrent: Torrent
    torrent_type: str
    match_strings: List[str] = field(default_factory=list)


def effective_limits(torrent: Torrent) -> Tuple[Optional[float], Optional[float]]:
    """Ratio and seeding-time limits with -2 resolved from the global ones; None when unlimited."""
    def resolve(limit: float, global_limit: float) -> Optional[float]:
        if limit == USE_GLOBAL_LIMIT:
            limit = global_limit
        return limit if limit >= 0 else None

    return (
        resolve(torrent.ratio_limit, torrent.max_ratio),
        resolve(torrent.seeding_time_limit, torrent.max_seeding_time),
    )


def _fmt_limit(limit: Optional[float]) -> str:
    return 'unlimited' if limit is None else f'{limit:g}'


def seed_check_reason(torrent: Torrent) -> Optional[str]:
    ratio_limit, time_limit = effective_limits(torrent)
    if ratio_limit is None or torrent.ratio <= ratio_limit:
        return 'ratio'
    if time_limit is None or round(secs_to_mins(torrent.seeding_time)) <= time_limit:
        return 'time'
    return None


def torrent_seed_check(torrent: Torrent, label: Optional[str] = None) -> bool:
    if seed_check_reason(torrent) is None:
        return True
    prefix = f'{label} torrent' if label else 'Torrent'
    ratio_limit, time_limit = effective_limits(torrent)
    # An unlimited quota can never be met, so the torrent is kept
    logging.info(
        f'{prefix} has not met seeding requirements '
        f'(ratio: {torrent.ratio:.2f}/{_fmt_limit(ratio_limit)}, '
        f'time: {round(secs_to_mins(torrent.seeding_time))}/{_fmt_limit(time_limit)} mins): {torrent.name}'
    )
    return False


def torrent_downloaded_check(torrent: Torrent, label: Optional[str] = None) -> bool:
    if torrent.state in DOWNLOADED_STATES:
        return True
    prefix = f'{label} torrent' if label else 'Torrent'
    if torrent.state == 'downloading':
        logging.info(f'{prefix} is downloading: {torrent.name}')
    elif torrent.state == 'stalledDL':
        logging.warning(f'{prefix} has stalled: {torrent.name}')
    elif torrent.state == 'error':
        logging.warning(f'{prefix} has an error: {torrent.name}')
    elif torrent.state == 'missingFiles':
        logging.warning(f'{prefix} has missing files: {torrent.name}')
    else:
        logging.warning(f'{prefix} has an unexpected status "{torrent.state}": {torrent.name}')
    return False


def extract_season_episode(text: str) -> Optional[Tuple[int, int]]:
    lower = text.lower()
    m = _SE_COMPACT_RE.search(lower) or _SE_VERBOSE_RE.search(lower)
    if m:
        return int(m.group(1)), int(m.group(2))
    return None


def extract_season(text: str) -> Optional[int]:
    lower = text.lower()
    m = _SEASON_COMPACT_RE.search(lower) or _SEASON_VERBOSE_RE.search(lower)
    if m:
        return int(m.group(1))
    info = extract_season_episode(lower)
    return info[0] if info else None


def match_season_episode(source: str, candidate: str) -> bool:
    info = extract_season_episode(source)
    if info is None:
        return False
    season, episode = info
    patterns = (
        re.compile(rf's{season:02d}e{episode:02d}\b', re.I),
        re.compile(rf'season[\s._-]*{season}\D+episode[\s._-]*{episode}\b', re.I),
    )
    return any(p.search(candidate) for p in patterns)


def match_season_only(source: str, candidate: str) -> bool:
    season = extract_season(source)
    if season is None:
        return False
    lower = candidate.lower()
    if _EPISODE_MARK_RE.search(lower):
        return False
    patterns = (
        re.compile(rf's0?{season}\b'),
        re.compile(rf'season[\s_-]*0?{season}\b'),
    )
    return any(p.search(lower) for p in patterns)


def extract_title_words(relative_path: str) -> List[str]:
    stem = os.path.splitext(os.path.basename(relative_path or ''))[0].lower()
    words = []
    for word in _WORD_RE.findall(stem):
        if _YEAR_RE.match(word) or _RESOLUTION_RE.match(word) or _SEASON_MARK_RE.match(word) or word == 'season':
            break
        words.append(word)
    return words


def _file_of(item: Dict[str, Any], kind: ServiceKind) -> Dict[str, Any]:
    key = 'movieFile' if kind is ServiceKind.RADARR else 'episodeFile'
    f = item.get(key)
    return f if isinstance(f, dict) else {}


def build_match_strings(item: Dict[str, Any], kind: ServiceKind) -> List[str]:
    media_file = _file_of(item, kind)
    strings = extract_title_words(media_file.get('relativePath') or '')
    resolution = (((media_file.get('quality') or {}).get('quality') or {}).get('resolution'))
    if resolution:
        res = str(resolution).lower()
        strings.append(res if res.endswith('p') else f'{res}p')
    if media_file.get('releaseGroup'):
        strings.append(str(media_file['releaseGroup']).lower())
    return strings


def _pick_latest(candidates: List[Torrent]) -> Optional[Torrent]:
    best: Optional[Torrent] = None
    for t in candidates:
        if best is None or t.added_on > best.added_on:
            best = t
    return best


def match_item(item: Dict[str, Any], kind: ServiceKind, torrents: List[Torrent]) -> Optional[MatchResult]:
    if not item.get('hasFile'):
        return None
    media_file = _file_of(item, kind)
    relative_path = media_file.get('relativePath') or ''
    if not relative_path:
        return None
    match_strings = build_match_strings(item, kind)
    if not match_strings:
        return None

    torrent_type = 'Movie'
    if kind is ServiceKind.SONARR:
        if any(match_season_episode(relative_path, t.processed_name) for t in torrents):
            torrent_type = 'Episode'
        else:
            torrent_type = 'Series'

    def secondary(t: Torrent) -> bool:
        if kind is ServiceKind.RADARR:
            years = [str(y) for y in (item.get('year'), item.get('secondaryYear')) if y]
            return any(y in t.name for y in years)
        if torrent_type == 'Episode':
            return match_season_episode(relative_path, t.processed_name)
        return match_season_only(relative_path, t.processed_name)

    candidates = [
        t for t in torrents
        if all(s in t.processed_name for s in match_strings) and secondary(t)
    ]
    chosen = _pick_latest(candidates)
    if chosen is None:
        return None
    return MatchResult(item_id=item.get('id'), kind=kind, torrent=chosen, torrent_type=torrent_type, match_strings=match_strings)


def _with_torrent(item: Dict[str, Any], result: MatchResult) -> Dict[str, Any]:
    torrent_file = result.torrent.to_dict()
    torrent_file['torrentType'] = result.torrent_type
    torrent_file['matchStrings'] = list(result.match_strings)
    return {**item, 'torrent': True, 'torrentType': result.torrent_type, 'torrentFile': torrent_file}


def _series_with_episodes(series_list: List[Dict[str, Any]], episodes: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    out = []
    for series in series_list:
        seasons = []
        for season in series.get('seasons') or []:
            eps = sorted(
                (e for e in episodes
                 if e.get('seriesId') == series.get('id') and e.get('seasonNumber') == season.get('seasonNumber')),
                key=lambda e: e.get('episodeNumber') or 0,
            )
            season_torrent = next((e['torrentFile'] for e in eps if e.get('torrentType') == 'Series'), None)
            seasons.append({
                **season,
                'episodes': eps,
                'torrentsPresent': any(e.get('torrent') for e in eps),
                'seasonTorrent': season_torrent,
            })
        out.append({**series, 'seasons': seasons, 'torrentsPresent': any(s['torrentsPresent'] for s in seasons)})
    return out


def match_library_torrents(
    services: List[ActiveService],
    torrents: List[Torrent],
) -> Tuple[List[ActiveService], List[Torrent]]:
    matched: Dict[Tuple[ServiceKind, Any], MatchResult] = {}
    for svc in services:
        if svc.kind is ServiceKind.RADARR:
            items = svc.library
        elif svc.kind is ServiceKind.SONARR:
            items = svc.episodes
        else:
            continue
        for item in items:
            result = match_item(item, svc.kind, torrents)
            if result is not None:
                matched[(svc.kind, result.item_id)] = result

    claimed = {r.torrent.identity for r in matched.values()}
    unmatched = [t for t in torrents if t.identity not in claimed]

    updated: List[ActiveService] = []
    for svc in services:
        if svc.kind is ServiceKind.RADARR:
            library = [
                _with_torrent(i, matched[(svc.kind, i.get('id'))]) if (svc.kind, i.get('id')) in matched else i
                for i in svc.library
            ]
            updated.append(svc.replace(library=library))
        elif svc.kind is ServiceKind.SONARR:
            episodes = [
                _with_torrent(e, matched[(svc.kind, e.get('id'))]) if (svc.kind, e.get('id')) in matched else e
                for e in svc.episodes
            ]
            updated.append(svc.replace(episodes=episodes, library=_series_with_episodes(svc.library, episodes)))
        else:
            updated.append(svc)
    return updated, unmatched
