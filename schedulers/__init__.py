from typing import Callable, List, Optional

from config import SchedulerConfig
from errors import SchedulerNotFoundError
from .base import Scheduler
from .fsrs import FsrsScheduler

_SCHEDULERS: List[Callable[..., Scheduler]] = [FsrsScheduler]
DEFAULT_SCHEDULER = FsrsScheduler.name


def get_all_schedulers(config: Optional[SchedulerConfig] = None) -> List[Scheduler]:
    return [factory(config) for factory in _SCHEDULERS]


def get_scheduler(name: str = DEFAULT_SCHEDULER,
                  config: Optional[SchedulerConfig] = None) -> Scheduler:
    for factory in _SCHEDULERS:
        if factory.name == name:
            return factory(config)
    raise SchedulerNotFoundError(name)
