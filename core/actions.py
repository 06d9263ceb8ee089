from __future__ import annotations

from typing import Any, Dict, List, Optional

from core.active import ServiceKind


def build_search_command(kind: ServiceKind, item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if kind is ServiceKind.SONARR:
        if item.get('episodeId') is not None:
            return {"name": "EpisodeSearch", "episodeIds": [item['episodeId']]}
        if isinstance(item.get('episodeIds'), list) and item['episodeIds']:
            return {"name": "EpisodeSearch", "episodeIds": item['episodeIds']}
        if item.get('seriesId') is not None:
            return {"name": "SeriesSearch", "seriesId": item['seriesId']}
        return None
    if kind is ServiceKind.RADARR:
        if item.get('movieId') is not None:
            return {"name": "MoviesSearch", "movieIds": [item['movieId']]}
        return None
    if kind is ServiceKind.LIDARR:
        if item.get('albumId') is not None:
            return {"name": "AlbumSearch", "albumIds": [item['albumId']]}
        return None
    return None


def build_manual_import_command(candidate: Dict[str, Any]) -> Dict[str, Any]:
    file_entry: Dict[str, Any] = {
        'path': candidate.get('path'),
        'downloadId': candidate.get('downloadId'),
        'folderName': candidate.get('folderName'),
        'indexerFlags': candidate.get('indexerFlags'),
        'languages': candidate.get('languages'),
        'quality': candidate.get('quality'),
        'releaseGroup': candidate.get('releaseGroup'),
    }
    if isinstance(candidate.get('movie'), dict):
        file_entry['movieId'] = candidate['movie'].get('id')
    if isinstance(candidate.get('series'), dict):
        file_entry['seriesId'] = candidate['series'].get('id')
    if isinstance(candidate.get('episodes'), list):
        file_entry['episodeIds'] = [e.get('id') for e in candidate['episodes'] if isinstance(e, dict)]
    if candidate.get('releaseType'):
        file_entry['releaseType'] = candidate['releaseType']
    return {'name': 'ManualImport', 'importMode': 'auto', 'files': [file_entry]}


def rejection_check(candidate: Dict[str, Any], reasons: List[str]) -> str:
    rejections = candidate.get('rejections') or []
    for reason in reasons:
        needle = reason.lower()
        for rej in rejections:
            text = rej.get('reason') if isinstance(rej, dict) else rej
            if isinstance(text, str) and needle in text.lower():
                return reason
    return ''


def missing_search_command(command_list: List[Any]) -> Optional[str]:
    for name in command_list or []:
        if isinstance(name, str) and name.lower().startswith('missing'):
            return name
    return None


def already_searching(commands: List[Dict[str, Any]]) -> bool:
    for cmd in commands or []:
        if not isinstance(cmd, dict):
            continue
        name = str(cmd.get('name') or '').lower()
        if name.startswith('missing') and cmd.get('status') not in ('completed', 'failed', 'aborted', 'cancelled'):
            return True
    return False
