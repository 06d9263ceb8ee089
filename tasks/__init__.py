from dataclasses import dataclass
from typing import List, Optional

from core.runner import RunnerState, TaskFn, bind
from core.scheduler import LoopScheduler
from tasks import (
    get_data,
    remove_blocked,
    remove_failed,
    remove_missing,
    remove_stalled,
    tidy_directories,
    wanted_missing,
)


@dataclass(frozen=True)
class LoopSpec:
    name: str
    task: TaskFn
    skip_first: bool = False
    # Minutes; set for loops that run regardless of the loops config
    fixed_interval: Optional[float] = None


LOOPS: List[LoopSpec] = [
    LoopSpec(get_data.NAME, get_data.run, skip_first=True, fixed_interval=60),
    LoopSpec(wanted_missing.NAME, wanted_missing.run),
    LoopSpec(remove_blocked.NAME, remove_blocked.run),
    LoopSpec(remove_stalled.NAME, remove_stalled.run),
    LoopSpec(remove_failed.NAME, remove_failed.run),
    LoopSpec(remove_missing.NAME, remove_missing.run),
    LoopSpec(tidy_directories.NAME, tidy_directories.run),
]


def find_loop(name: str) -> Optional[LoopSpec]:
    for spec in LOOPS:
        if spec.name == name:
            return spec
    return None


def core_loops(scheduler: LoopScheduler, state: RunnerState) -> List[str]:
    """Schedule every loop that is not already running. Returns the names that were started."""
    started = []
    for spec in LOOPS:
        if scheduler.is_active(spec.name):
            continue
        if scheduler.schedule(
            spec.name,
            bind(state, spec.task),
            skip_first=spec.skip_first,
            fixed_interval=spec.fixed_interval,
        ):
            started.append(spec.name)
    return started
