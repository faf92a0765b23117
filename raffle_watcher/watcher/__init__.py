"""Per-raffle event watchers and their supervisor."""

from .handlers import (
    ADJUST_STAKE,
    ALLOCATE_TICKETS,
    REMOVE_TICKETS,
    BuyHandler,
    EventHandler,
    SellHandler,
    StakeHandler,
    build_handler,
)
from .supervisor import WatcherSupervisor
from .watcher import EventWatcher, WatcherState

__all__ = [
    "ADJUST_STAKE",
    "ALLOCATE_TICKETS",
    "REMOVE_TICKETS",
    "BuyHandler",
    "EventHandler",
    "SellHandler",
    "StakeHandler",
    "build_handler",
    "WatcherSupervisor",
    "EventWatcher",
    "WatcherState",
]
