"""Application state shared by the command layer and the trigger engine."""

from dataclasses import dataclass

from src.schoolbell.models import Settings
from src.schoolbell.store import ScheduleStore


@dataclass
class AppState:
    """Current schedule and settings of the running session.

    Built once at startup by PersistenceAdapter.load() and passed by
    reference; the trigger engine reads it on every tick.
    """

    store: ScheduleStore
    settings: Settings
