"""Clock ticker: the single driver of the trigger engine.

Runs as an asyncio task. Every cycle:
  1) Run the optional refresh hook (pick up state changed elsewhere).
  2) Read the wall clock.
  3) Hand the instant to the trigger engine.
  4) Notify the optional on_tick callback (live clock display).
  5) Sleep until the next interval boundary, waking early if stop() is called.

Intervals are measured against a monotonic deadline, so time spent inside a
tick does not push later ticks back.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import datetime

from src.schoolbell.engine import TriggerEngine
from src.schoolbell.logging import get_logger

logger = get_logger(__name__)


class ClockTicker:
    def __init__(
        self,
        engine: TriggerEngine,
        interval: float = 1.0,
        clock: Callable[[], datetime] = datetime.now,
        on_tick: Callable[[datetime], None] | None = None,
        refresh: Callable[[], object] | None = None,
    ) -> None:
        self.engine = engine
        self.interval = interval
        self.clock = clock
        self.on_tick = on_tick
        self.refresh = refresh
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    async def run(self) -> None:
        """Tick until stop() is called or the task is cancelled."""
        self._stop.clear()
        logger.info("clock_started", interval_sec=self.interval)
        deadline = time.monotonic()
        while not self._stop.is_set():
            if self.refresh is not None:
                try:
                    self.refresh()
                except Exception as e:
                    logger.error("refresh_failed", error=str(e), type=type(e).__name__)

            now = self.clock()
            try:
                self.engine.tick(now)
            except Exception as e:
                logger.error("tick_failed", error=str(e), type=type(e).__name__)

            if self.on_tick is not None:
                try:
                    self.on_tick(now)
                except Exception as e:
                    logger.warning("on_tick_failed", error=str(e))

            deadline += self.interval
            delay = deadline - time.monotonic()
            if delay <= 0:
                # Overran one or more intervals: tick again right away
                deadline = time.monotonic()
                delay = 0
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        logger.info("clock_stopped")
