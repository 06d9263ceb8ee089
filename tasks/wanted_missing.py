from __future__ import annotations

import logging

from core.actions import already_searching, missing_search_command
from core.active import ServiceKind, active_services
from core.runner import TaskContext

NAME = 'wanted_missing'

# Used when the scraped command catalog is unavailable
DEFAULT_MISSING_COMMANDS = {
    ServiceKind.RADARR: 'MissingMoviesSearch',
    ServiceKind.SONARR: 'MissingEpisodeSearch',
    ServiceKind.LIDARR: 'MissingAlbumSearch',
}


async def run(ctx: TaskContext) -> None:
    snapshot = ctx.store.find_current_state()
    for svc in active_services(ctx.settings, snapshot):
        client = ctx.starr(svc)
        commands = await client.get_commands()
        if commands is None:
            commands = svc.commands
        if already_searching(commands):
            logging.info(f'wantedMissing: {svc.name} is already searching.')
            continue
        command = missing_search_command(svc.command_list) or DEFAULT_MISSING_COMMANDS[svc.kind]
        if ctx.dry_run:
            logging.info(f'wantedMissing: {svc.name} would start {command} (dry run).')
            continue
        if not await client.search_missing(command):
            logging.error(f'wantedMissing: {svc.name} could not start {command}.')
