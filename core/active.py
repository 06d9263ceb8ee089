from __future__ import annotations

import dataclasses
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.config import EXCLUDED_PREFIXES, ConfigAccessor


class ServiceKind(enum.Enum):
    RADARR = 'Radarr'
    SONARR = 'Sonarr'
    LIDARR = 'Lidarr'

    @classmethod
    def from_prefix(cls, prefix: str) -> Optional['ServiceKind']:
        for kind in cls:
            if kind.prefix == prefix.lower():
                return kind
        return None

    @property
    def prefix(self) -> str:
        return self.value.lower()

    @property
    def content_name(self) -> str:
        return {'Radarr': 'movie', 'Sonarr': 'series', 'Lidarr': 'artist'}[self.value]

    @property
    def content_kind(self) -> str:
        return {'Radarr': 'movie', 'Sonarr': 'series', 'Lidarr': 'music'}[self.value]

    @property
    def match_strategy(self) -> Optional[str]:
        return {'Radarr': 'movie', 'Sonarr': 'episode'}.get(self.value)

    @property
    def pool_key(self) -> Optional[str]:
        return {'Radarr': 'movies', 'Sonarr': 'series'}.get(self.value)

    @property
    def foreign_key(self) -> str:
        return {'Radarr': 'movieId', 'Sonarr': 'episodeId', 'Lidarr': 'albumId'}[self.value]

    @property
    def default_api_version(self) -> str:
        return 'v1' if self is ServiceKind.LIDARR else 'v3'


@dataclass
class ActiveService:
    kind: ServiceKind
    url: str
    api_key: str
    api_version: str
    active: bool = True
    commands: List[Dict[str, Any]] = field(default_factory=list)
    command_list: List[str] = field(default_factory=list)
    download_queue: List[Dict[str, Any]] = field(default_factory=list)
    root_folder: List[Dict[str, Any]] = field(default_factory=list)
    library: List[Dict[str, Any]] = field(default_factory=list)
    episodes: List[Dict[str, Any]] = field(default_factory=list)
    import_lists: List[Dict[str, Any]] = field(default_factory=list)
    missing_wanted: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def api_base(self) -> str:
        return f'{self.url.rstrip("/")}/api/{self.api_version}'

    def replace(self, **changes) -> 'ActiveService':
        return dataclasses.replace(self, **changes)


# Store section -> ActiveService attribute
_STATE_FIELDS = {
    'commands': 'commands',
    'command_lists': 'command_list',
    'download_queues': 'download_queue',
    'root_folders': 'root_folder',
    'libraries': 'library',
    'episodes': 'episodes',
    'import_lists': 'import_lists',
    'missing_wanteds': 'missing_wanted',
}


def active_services(settings: Dict[str, Any], state: Any = None) -> List[ActiveService]:
    conns = ConfigAccessor(settings).connections()
    grouped: Dict[str, Dict[str, Any]] = {}
    for key, value in conns.items():
        prefix, sep, rest = key.partition('_')
        if not sep:
            continue
        grouped.setdefault(prefix, {})[rest] = value

    out: List[ActiveService] = []
    for prefix, fields in grouped.items():
        if prefix in EXCLUDED_PREFIXES or not fields.get('active'):
            continue
        kind = ServiceKind.from_prefix(prefix)
        if kind is None:
            logging.warning(f'Unknown service connection "{prefix}" is active; ignoring it.')
            continue
        svc = ActiveService(
            kind=kind,
            url=str(fields.get('url') or ''),
            api_key=str(fields.get('api_key') or ''),
            api_version=str(fields.get('api_version') or kind.default_api_version),
        )
        if state is not None:
            for section, attr in _STATE_FIELDS.items():
                data = state.get_service_data(section, kind.value)
                if isinstance(data, list):
                    setattr(svc, attr, data)
        out.append(svc)

    if not out:
        logging.warning('No active services. Enable Radarr, Sonarr or Lidarr in connections.')
    out.sort(key=lambda s: list(ServiceKind).index(s.kind))
    return out
