"""Command boundary between the operator interface and the bell core.

BellApp owns the session state and routes every operator command through the
schedule store (or settings), then through the persistence adapter. The
clock ticker and trigger engine read the same AppState instance.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from src.schoolbell.announcement import AnnouncementSequencer
from src.schoolbell.audio import ChimeSource, PygamePlayer
from src.schoolbell.clock import ClockTicker
from src.schoolbell.config import BellConfig, get_config
from src.schoolbell.engine import TriggerEngine
from src.schoolbell.logging import get_logger
from src.schoolbell.models import ScheduleEntry, ScheduleEntryDraft, Settings
from src.schoolbell.persistence import LocalSnapshot, PersistenceAdapter, select_remote_store
from src.schoolbell.speech import FallbackSpeaker
from src.schoolbell.state import AppState
from src.schoolbell.synthesis import GeminiSynthesizer
from src.schoolbell.timeutils import clock_display, current_period, next_bell

logger = get_logger(__name__)


class BellApp:
    def __init__(
        self,
        state: AppState,
        persistence: PersistenceAdapter,
        engine: TriggerEngine,
        tick_interval: float = 1.0,
    ) -> None:
        self.state = state
        self.persistence = persistence
        self.engine = engine
        self.tick_interval = tick_interval
        self._ticker: ClockTicker | None = None

    @classmethod
    def create(cls, config: BellConfig | None = None) -> "BellApp":
        """Wire the production collaborators and load state (load-or-default)."""
        config = config or get_config()
        data_dir = Path(config.data_dir)

        persistence = PersistenceAdapter(select_remote_store(config), LocalSnapshot(data_dir))
        state = persistence.load()

        sequencer = AnnouncementSequencer(
            player=PygamePlayer(),
            chime=ChimeSource(
                config.chime_url,
                cache_dir=data_dir,
                chime_path=config.chime_path,
                timeout=config.http_timeout_sec,
            ),
            synthesizer=GeminiSynthesizer(
                config.gemini_api_key,
                model=config.gemini_tts_model,
                base_url=config.gemini_base_url,
                timeout=config.synthesis_timeout_sec,
            ),
            speaker=FallbackSpeaker(),
            language=config.announcement_language,
            synthesis_timeout=config.synthesis_timeout_sec,
        )
        engine = TriggerEngine(state, sequencer)
        return cls(state, persistence, engine, tick_interval=config.tick_interval_sec)

    # -------- Schedule commands --------

    def schedule(self) -> list[ScheduleEntry]:
        return self.state.store.entries()

    def add(self, draft: ScheduleEntryDraft | dict[str, Any]) -> ScheduleEntry:
        """Add a period. Raises pydantic.ValidationError for malformed fields."""
        if not isinstance(draft, ScheduleEntryDraft):
            draft = ScheduleEntryDraft.model_validate(draft)
        entry = self.state.store.add(draft)
        self.persistence.entry_added(self.state, entry)
        return entry

    def edit(self, entry: ScheduleEntry) -> ScheduleEntry:
        """Replace an existing period. Raises EntryNotFoundError for unknown ids."""
        updated = self.state.store.update(entry)
        self.persistence.entry_updated(self.state, updated)
        return updated

    def delete(self, entry_id: str) -> bool:
        removed = self.state.store.remove(entry_id)
        if removed:
            self.persistence.entry_deleted(self.state, entry_id)
        return removed

    def toggle_active(self, entry_id: str) -> ScheduleEntry:
        entry = self.state.store.toggle_active(entry_id)
        self.persistence.entry_active_changed(self.state, entry)
        return entry

    def test_trigger(self, entry: ScheduleEntry | str) -> asyncio.Task | None:
        """Ring the bell for one entry now. Needs a running event loop."""
        if isinstance(entry, str):
            entry = self.state.store.get(entry)
        return self.engine.test_trigger(entry)

    # -------- Settings commands --------

    def update_settings(self, **changes: Any) -> Settings:
        """Apply a partial settings update, e.g. ``update_settings(auto_trigger_enabled=False)``."""
        unknown = set(changes) - set(Settings.model_fields)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        merged = {**self.state.settings.model_dump(), **changes}
        self.state.settings = Settings.model_validate(merged)
        logger.info("settings_updated", changed=sorted(changes))
        self.persistence.settings_changed(self.state)
        return self.state.settings

    # -------- Views --------

    def next_bell(self, now: datetime | None = None) -> ScheduleEntry | None:
        return next_bell(self.state.store.entries(), now or datetime.now())

    def current_period(self, now: datetime | None = None) -> ScheduleEntry | None:
        return current_period(self.state.store.entries(), now or datetime.now())

    def status(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or datetime.now()
        time_text, date_text = clock_display(now)
        upcoming = self.next_bell(now)
        ongoing = self.current_period(now)
        return {
            "school_name": self.state.settings.school_name,
            "time": time_text,
            "date": date_text,
            "auto": "RUNNING" if self.state.settings.auto_trigger_enabled else "STOPPED",
            "next_bell": upcoming.start_time if upcoming else "--:--",
            "next_teacher": upcoming.teacher if upcoming else None,
            "current_period": ongoing.period if ongoing else None,
            "announcing": self.engine.is_announcing,
            "last_triggered": self.engine.state.last_triggered_minute,
            "remote": self.persistence.remote.available,
        }

    # -------- Lifecycle --------

    async def run(self, on_tick: Callable[[datetime], None] | None = None) -> None:
        """Tick the clock until stop() is called, then drain pending writes."""
        self._ticker = ClockTicker(
            self.engine,
            interval=self.tick_interval,
            on_tick=on_tick,
            refresh=self.refresh_from_snapshot,
        )
        try:
            await self._ticker.run()
        finally:
            await self.engine.wait_idle()
            await self.flush()

    def refresh_from_snapshot(self) -> bool:
        """Adopt schedule and settings changes saved by another process."""
        return self.persistence.reload_if_changed(self.state)

    def stop(self) -> None:
        if self._ticker is not None:
            self._ticker.stop()

    async def flush(self) -> None:
        await self.persistence.flush()
