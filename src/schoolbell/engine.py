"""Trigger engine: decides once per tick whether a bell should ring.

Two states, Idle and Announcing, tracked by TriggerState.is_announcing.

Idle, on each tick:
  - auto-trigger off                  -> nothing
  - minute already handled            -> nothing
  - no active entry starts this minute -> nothing
  - match                             -> remember the minute, start announcing

Announcing: a match is still recorded as handled for its minute but dropped,
never queued. The flag is raised before the announcement task is created and
lowered in a ``finally`` when it ends, whatever the outcome.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime

import structlog

from src.schoolbell.announcement import AnnouncementResult, AnnouncementSequencer
from src.schoolbell.logging import get_logger
from src.schoolbell.models import ScheduleEntry, Settings
from src.schoolbell.state import AppState
from src.schoolbell.timeutils import find_trigger_match, minute_key

logger = get_logger(__name__)


@dataclass
class TriggerState:
    """Ephemeral trigger bookkeeping, rebuilt on every process start."""

    last_triggered_minute: str | None = None
    is_announcing: bool = False


class TriggerEngine:
    def __init__(self, app_state: AppState, sequencer: AnnouncementSequencer) -> None:
        self.app_state = app_state
        self.sequencer = sequencer
        self.state = TriggerState()
        self._task: asyncio.Task | None = None

    @property
    def is_announcing(self) -> bool:
        return self.state.is_announcing

    def tick(self, now: datetime) -> asyncio.Task | None:
        """Evaluate the schedule for ``now``.

        Must be called from a running event loop at least once per minute;
        extra calls within a minute are harmless.

        Returns:
            The announcement task if a bell started on this tick, else None.
        """
        if not self.app_state.settings.auto_trigger_enabled:
            return None

        minute = minute_key(now)
        if minute == self.state.last_triggered_minute:
            return None

        entry = find_trigger_match(self.app_state.store.entries(), minute)
        if entry is None:
            return None

        self.state.last_triggered_minute = minute
        if self.state.is_announcing:
            logger.warning("trigger_dropped", entry_id=entry.id, minute=minute, reason="announcing")
            return None

        logger.info("bell_triggered", entry_id=entry.id, minute=minute, period=entry.period)
        return self._start(entry, reason="schedule")

    def test_trigger(self, entry: ScheduleEntry) -> asyncio.Task | None:
        """Ring the bell for ``entry`` now, ignoring time and auto mode.

        Returns:
            The announcement task, or None if an announcement is already running.
        """
        if self.state.is_announcing:
            logger.warning("test_trigger_ignored", entry_id=entry.id, reason="announcing")
            return None
        logger.info("test_triggered", entry_id=entry.id)
        return self._start(entry, reason="test")

    async def wait_idle(self) -> AnnouncementResult | None:
        """Wait for the current announcement (if any) and return its result."""
        if self._task is None:
            return None
        return await self._task

    def _start(self, entry: ScheduleEntry, reason: str) -> asyncio.Task:
        loop = asyncio.get_running_loop()
        settings = self.app_state.settings.model_copy()
        self.state.is_announcing = True
        self._task = loop.create_task(self._run(entry.model_copy(), settings, reason))
        return self._task

    async def _run(
        self, entry: ScheduleEntry, settings: Settings, reason: str
    ) -> AnnouncementResult | None:
        # Task-local context: every sequencer log line carries the entry id
        structlog.contextvars.bind_contextvars(entry_id=entry.id, trigger=reason)
        try:
            result = await self.sequencer.announce(entry, settings)
            logger.info(
                "announcement_finished",
                chime_played=result.chime_played,
                spoken_by=result.spoken_by,
            )
            return result
        except Exception as e:
            logger.error("announcement_failed", error=str(e), type=type(e).__name__)
            return None
        finally:
            self.state.is_announcing = False
