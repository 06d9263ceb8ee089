from __future__ import annotations

import copy
import logging
import os
import time
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

import yaml

SERVICE_PREFIXES = ('radarr', 'sonarr', 'lidarr')
# Connections that are capabilities rather than library sources
EXCLUDED_PREFIXES = ('qbittorrent',)

DEFAULT_LOOP_INTERVALS: Dict[str, float] = {
    'wanted_missing': 60,
    'remove_blocked': 10,
    'remove_stalled': 10,
    'remove_failed': 60,
    'remove_missing': 60,
    'tidy_directories': 60,
}

REMOVE_MISSING_LEVELS = ('import_list', 'library')


def load_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
            return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError) as e:
        logging.error(f'Config: could not read {path}: {e}')
        return {}


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 'on')
    return bool(value)


def _section(cfg: Mapping[str, Any], name: str) -> Dict[str, Any]:
    sec = cfg.get(name)
    return sec if isinstance(sec, dict) else {}


class ConfigAccessor:
    def __init__(self, cfg: Dict[str, Any]) -> None:
        self.cfg = cfg if isinstance(cfg, dict) else {}

    # General settings accessor
    def general(self, key: str, default: Any = None) -> Any:
        return _section(self.cfg, 'general').get(key, default)

    @property
    def dry_run(self) -> bool:
        return bool(self.general('dry_run', False))

    @property
    def debug_logging(self) -> bool:
        return bool(self.general('debug_logging', False))

    def connections(self) -> Dict[str, Any]:
        return _section(self.cfg, 'connections')

    def connection(self, prefix: str) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key, value in self.connections().items():
            if key.startswith(f'{prefix}_'):
                out[key[len(prefix) + 1:]] = value
        return out

    def qbittorrent(self) -> Dict[str, Any]:
        return self.connection('qbittorrent')

    def qbittorrent_active(self) -> bool:
        qb = self.qbittorrent()
        return bool(qb.get('active')) and bool(qb.get('url'))

    # Loops: enabled flag + interval minutes
    def loop_policy(self, loop_name: str) -> Tuple[bool, Any]:
        loop_cfg = _section(_section(self.cfg, 'loops'), loop_name)
        enabled = bool(loop_cfg.get('enabled', False))
        interval = loop_cfg.get('interval', DEFAULT_LOOP_INTERVALS.get(loop_name))
        return enabled, interval

    def policy_override(self, flag: str) -> Optional[Dict[str, Any]]:
        ov = _section(self.cfg, 'policy_overrides').get(flag)
        return ov if isinstance(ov, dict) else None

    def section(self, name: str) -> Dict[str, Any]:
        return _section(self.cfg, name)

    def remove_missing_level(self) -> str:
        return str(self.section('remove_missing').get('level') or 'import_list')

    def remove_missing_batch_size(self) -> int:
        return int(self.section('remove_missing').get('batch_size') or 3)

    # User pools
    def users(self) -> List[Dict[str, Any]]:
        users = self.cfg.get('users')
        return [u for u in users if isinstance(u, dict)] if isinstance(users, list) else []

    def user_pool(self, user: Dict[str, Any], pool_key: str) -> Set[Any]:
        pool = user.get('pool') if isinstance(user.get('pool'), dict) else {}
        # Entries are bare ids or cached library objects carrying an id
        return {p.get('id') if isinstance(p, dict) else p for p in (pool.get(pool_key) or [])} - {None}

    def pool_ids(self, pool_key: str) -> Set[Any]:
        ids: Set[Any] = set()
        for user in self.users():
            ids.update(self.user_pool(user, pool_key))
        return ids


def apply_env_overrides(cfg: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    env = os.environ if environ is None else environ
    out = dict(cfg)
    conns = dict(_section(out, 'connections'))
    for prefix in SERVICE_PREFIXES:
        upper = prefix.upper()
        url = env.get(f'{upper}_URL') or None
        key = env.get(f'{upper}_API_KEY') or None
        if url:
            conns[f'{prefix}_url'] = url
        if key:
            conns[f'{prefix}_api_key'] = key
        if url and key and f'{prefix}_active' not in conns:
            conns[f'{prefix}_active'] = True
    for field in ('url', 'username', 'password'):
        val = env.get(f'QBITTORRENT_{field.upper()}')
        if val:
            conns[f'qbittorrent_{field}'] = val
    if env.get('QBITTORRENT_URL') and 'qbittorrent_active' not in conns:
        conns['qbittorrent_active'] = True
    out['connections'] = conns

    # YAML general wins over env for app-level settings
    gen = dict(_section(out, 'general'))
    env_general = {
        'dry_run': ('DRY_RUN', _as_bool),
        'debug_logging': ('DEBUG_LOGGING', _as_bool),
        'structured_logs': ('STRUCTURED_LOGS', _as_bool),
        'data_path': ('DATA_PATH', str),
        'request_timeout': ('REQUEST_TIMEOUT', str),
        'retry_attempts': ('RETRY_ATTEMPTS', str),
        'retry_backoff': ('RETRY_BACKOFF', str),
    }
    for key, (env_key, cast) in env_general.items():
        if key not in gen and env.get(env_key) is not None:
            gen[key] = cast(env.get(env_key))
    out['general'] = gen
    return out


def sanitize_config(cfg: Dict[str, Any], debug_logging: bool = False) -> Dict[str, Any]:
    if not isinstance(cfg, dict):
        return {}
    out = dict(cfg)

    def _nz(v, cast, default):
        try:
            return cast(v)
        except (TypeError, ValueError):
            return default

    gen = dict(_section(out, 'general'))
    for key in ('dry_run', 'debug_logging'):
        gen[key] = _as_bool(gen.get(key, False))
    gen['structured_logs'] = _as_bool(gen.get('structured_logs', True))
    gen['data_path'] = str(gen.get('data_path') or '/app/data/state.json')
    gen['request_timeout'] = max(1, _nz(gen.get('request_timeout', 10), int, 10))
    gen['retry_attempts'] = max(0, _nz(gen.get('retry_attempts', 2), int, 2))
    gen['retry_backoff'] = max(0.0, _nz(gen.get('retry_backoff', 1.0), float, 1.0))
    out['general'] = gen

    conns = dict(_section(out, 'connections'))
    for key in list(conns.keys()):
        if key.endswith('_active'):
            conns[key] = _as_bool(conns[key])
        elif key.endswith('_url') and isinstance(conns[key], str):
            conns[key] = conns[key].rstrip('/')
    for prefix in SERVICE_PREFIXES:
        if f'{prefix}_url' in conns:
            conns.setdefault(f'{prefix}_api_version', 'v3' if prefix != 'lidarr' else 'v1')
    out['connections'] = conns

    # Intervals stay as given when unparseable so the scheduler can halt that loop
    loops = {}
    for name, lcfg in _section(out, 'loops').items():
        if not isinstance(lcfg, dict):
            continue
        lc = dict(lcfg)
        lc['enabled'] = _as_bool(lc.get('enabled', False))
        if 'interval' in lc:
            lc['interval'] = _nz(lc['interval'], float, lc['interval'])
        loops[name] = lc
    out['loops'] = loops

    rm = dict(_section(out, 'remove_missing'))
    level = str(rm.get('level') or 'import_list').strip().lower().replace(' ', '_')
    if level not in REMOVE_MISSING_LEVELS:
        if debug_logging:
            logging.warning(f'Ignoring invalid remove_missing level: {level}')
        level = 'import_list'
    rm['level'] = level
    rm['batch_size'] = max(1, _nz(rm.get('batch_size', 3), int, 3))
    out['remove_missing'] = rm

    rs = dict(_section(out, 'remove_stalled'))
    rs['threshold'] = max(1, _nz(rs.get('threshold', 3), int, 3))
    out['remove_stalled'] = rs

    td = dict(_section(out, 'tidy_directories'))
    td['threshold'] = max(1, _nz(td.get('threshold', 3), int, 3))
    paths = td.get('paths') if isinstance(td.get('paths'), list) else []
    td['paths'] = [
        {'path': str(p['path']), 'allowed': [str(a) for a in (p.get('allowed') or [])]}
        for p in paths if isinstance(p, dict) and p.get('path')
    ]
    out['tidy_directories'] = td

    # Notifications destinations validation/cleanup
    notif = dict(_section(out, 'notifications'))
    dests = notif.get('destinations') if isinstance(notif.get('destinations'), list) else []
    valid_types = {'discord', 'slack', 'generic'}
    cleaned = []
    for d in dests:
        if not isinstance(d, dict):
            continue
        typ = str(d.get('type') or 'generic').lower()
        if not d.get('url') or typ not in valid_types:
            if debug_logging:
                logging.warning(f'Ignoring invalid notification destination: {d}')
            continue
        ev = d.get('events')
        if ev is not None and not isinstance(ev, list):
            d = dict(d, events=[str(ev)])
        cleaned.append(d)
    notif['destinations'] = cleaned
    out['notifications'] = notif
    return out


def validate_config(cfg: Dict[str, Any]) -> List[str]:
    """Log configuration problems. Never raises."""
    problems = []
    conns = _section(cfg, 'connections')
    for prefix in SERVICE_PREFIXES:
        if not conns.get(f'{prefix}_active'):
            continue
        if not conns.get(f'{prefix}_url') or not conns.get(f'{prefix}_api_key'):
            problems.append(f'Service {prefix} is active but has no url/api_key; requests will fail.')
    acc = ConfigAccessor(cfg)
    torrent_loops = ('remove_missing', 'remove_failed')
    for name in torrent_loops:
        enabled, _ = acc.loop_policy(name)
        if enabled and not acc.qbittorrent_active():
            problems.append(f'Loop {name} is enabled but qBittorrent is not active.')
    for name, (enabled, interval) in ((n, acc.loop_policy(n)) for n in DEFAULT_LOOP_INTERVALS):
        if enabled and (not isinstance(interval, (int, float)) or interval <= 0):
            problems.append(f'Loop {name} has an invalid interval: {interval!r}.')
    for p in problems:
        logging.warning(p)
    return problems


def build_config(raw: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    cfg = apply_env_overrides(copy.deepcopy(raw), environ)
    return sanitize_config(cfg, _as_bool(_section(cfg, 'general').get('debug_logging', False)))


class ConfigProvider:
    def __init__(
        self,
        path: Optional[str] = None,
        store: Any = None,
        initial: Optional[Dict[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.path = path
        self.store = store
        self.environ = environ
        self._mtime: Optional[float] = None
        self._base: Dict[str, Any] = build_config(initial or {}, environ) if path is None else {}

    def _reload_if_changed(self) -> None:
        if self.path is None:
            return
        try:
            mtime = os.path.getmtime(self.path)
        except OSError:
            mtime = None
        if self._mtime is not None and mtime == self._mtime and self._base:
            return
        self._mtime = mtime
        self._base = build_config(load_yaml(self.path), self.environ)
        validate_config(self._base)

    def snapshot(self) -> Dict[str, Any]:
        self._reload_if_changed()
        cfg = copy.deepcopy(self._base)
        overrides = {}
        if self.store is not None:
            overrides = self.store.find_current_state().data.get('policy_overrides') or {}
        cfg['policy_overrides'] = overrides
        loops = cfg.setdefault('loops', {})
        for flag, ov in overrides.items():
            if isinstance(ov, dict) and ov.get('disabled'):
                loops.setdefault(flag, {})['enabled'] = False
        return cfg

    def update(self, raw: Dict[str, Any]) -> None:
        self._base = build_config(raw, self.environ)

    async def disable_policy(self, flag: str, reason: str) -> None:
        logging.error(f'{flag}: policy DISABLED until re-enabled by an operator. Reason: {reason}')
        if self.store is None:
            self._base.setdefault('loops', {}).setdefault(flag, {})['enabled'] = False
            return
        state = self.store.find_current_state()
        state.set('policy_overrides', flag, {'disabled': True, 'reason': reason, 'at': time.time()})
        await self.store.save_with_retry(state, flag, delay=0.1)

    async def reenable_policy(self, flag: str) -> bool:
        if self.store is None:
            return False
        state = self.store.find_current_state()
        if state.get('policy_overrides', flag) is None:
            return False
        state.pop('policy_overrides', flag)
        await self.store.save_with_retry(state, flag, delay=0.1)
        logging.info(f'{flag}: policy override cleared.')
        return True
