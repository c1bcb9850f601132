"""Unit tests: engine.py (TriggerEngine state machine) and clock.py (ClockTicker)."""

from __future__ import annotations

import asyncio
import threading
import time
from datetime import datetime

import pytest

from src.schoolbell.announcement import AnnouncementSequencer
from src.schoolbell.clock import ClockTicker
from src.schoolbell.engine import TriggerEngine
from src.schoolbell.state import AppState
from src.schoolbell.store import ScheduleStore
from tests.conftest import (
    EmptySynthesizer,
    FakeChime,
    FakePlayer,
    FakeSpeaker,
    FakeSynthesizer,
    make_entry,
)


def at(hour: int, minute: int, second: int = 0) -> datetime:
    return datetime(2026, 10, 19, hour, minute, second)


def gated_engine(app_state: AppState, gate: threading.Event) -> tuple[TriggerEngine, FakeSynthesizer]:
    synthesizer = FakeSynthesizer(gate=gate)
    sequencer = AnnouncementSequencer(
        FakePlayer(), FakeChime(), synthesizer, FakeSpeaker(), language="en"
    )
    return TriggerEngine(app_state, sequencer), synthesizer


@pytest.mark.unit
class TestTriggerEngine:
    async def test_initial_state(self, engine: TriggerEngine) -> None:
        assert engine.state.last_triggered_minute is None
        assert engine.is_announcing is False

    async def test_fires_at_start_time(self, engine: TriggerEngine, synthesizer: FakeSynthesizer) -> None:
        task = engine.tick(at(7, 0))
        assert task is not None
        assert engine.is_announcing is True

        result = await task
        assert engine.is_announcing is False
        assert engine.state.last_triggered_minute == "07:00"
        assert "Period 1" in result.text
        assert "07:00" in result.text
        assert "Bapak Teacher Budi Santoso" in result.text
        assert "Matematika" in result.text
        assert "X-A" in result.text
        assert len(synthesizer.calls) == 1

    async def test_fires_once_per_minute(self, engine: TriggerEngine, synthesizer: FakeSynthesizer) -> None:
        first = engine.tick(at(7, 0, 0))
        await first
        for second in range(1, 60):
            assert engine.tick(at(7, 0, second)) is None
        assert len(synthesizer.calls) == 1

    async def test_no_match_no_action(self, engine: TriggerEngine) -> None:
        assert engine.tick(at(7, 1)) is None
        assert engine.state.last_triggered_minute is None

    async def test_auto_disabled_never_fires(self, engine: TriggerEngine, app_state: AppState) -> None:
        app_state.settings = app_state.settings.model_copy(update={"auto_trigger_enabled": False})
        assert engine.tick(at(7, 0)) is None
        assert engine.is_announcing is False

    async def test_manual_test_works_when_auto_disabled(
        self, engine: TriggerEngine, app_state: AppState, player: FakePlayer
    ) -> None:
        app_state.settings = app_state.settings.model_copy(update={"auto_trigger_enabled": False})
        task = engine.test_trigger(make_entry())
        result = await task
        assert result.chime_played is True
        assert result.spoken_by == "synthesis"
        assert len(player.played) == 2

    async def test_inactive_entry_not_triggered(self, engine: TriggerEngine, app_state: AppState) -> None:
        app_state.store.set_active("e1", False)
        assert engine.tick(at(7, 0)) is None
        assert len(app_state.store) == 1

    async def test_shared_start_time_fires_first_only(self, settings) -> None:
        store = ScheduleStore([make_entry("first", "08:00"), make_entry("second", "08:00", teacher="Siti")])
        synthesizer = FakeSynthesizer()
        sequencer = AnnouncementSequencer(FakePlayer(), FakeChime(), synthesizer, FakeSpeaker(), language="en")
        engine = TriggerEngine(AppState(store, settings), sequencer)

        result = await engine.tick(at(8, 0, 0))
        assert "Budi Santoso" in result.text
        assert engine.tick(at(8, 0, 30)) is None
        assert len(synthesizer.calls) == 1

    async def test_match_while_announcing_is_dropped(self, app_state: AppState) -> None:
        app_state.store.replace_all([make_entry("a", "07:00"), make_entry("b", "07:01")])
        gate = threading.Event()
        engine, synthesizer = gated_engine(app_state, gate)

        first = engine.tick(at(7, 0, 59))
        await asyncio.sleep(0.05)
        assert engine.is_announcing is True

        # 07:01 matches entry b while 07:00 is still being announced
        assert engine.tick(at(7, 1, 0)) is None
        assert engine.state.last_triggered_minute == "07:01"

        gate.set()
        await first
        assert engine.is_announcing is False
        # Dropped, not deferred: later ticks in the same minute stay silent
        assert engine.tick(at(7, 1, 30)) is None
        assert len(synthesizer.calls) == 1

    async def test_manual_tests_do_not_stack(self, app_state: AppState) -> None:
        gate = threading.Event()
        engine, synthesizer = gated_engine(app_state, gate)

        first = engine.test_trigger(make_entry())
        assert engine.test_trigger(make_entry()) is None
        gate.set()
        await first
        assert len(synthesizer.calls) == 1
        assert engine.test_trigger(make_entry()) is not None
        await engine.wait_idle()

    async def test_manual_test_ignores_minute_guard(self, engine: TriggerEngine) -> None:
        await engine.tick(at(7, 0))
        task = engine.test_trigger(make_entry())
        assert task is not None
        await task
        assert engine.state.last_triggered_minute == "07:00"

    async def test_delete_mid_announcement_does_not_affect_it(self, app_state: AppState) -> None:
        gate = threading.Event()
        engine, _ = gated_engine(app_state, gate)

        task = engine.tick(at(7, 0))
        await asyncio.sleep(0.05)
        app_state.store.remove("e1")
        gate.set()
        result = await task
        assert "Budi Santoso" in result.text
        assert "X-A" in result.text

    async def test_flag_cleared_when_synthesis_returns_nothing(self, app_state: AppState) -> None:
        speaker = FakeSpeaker()
        sequencer = AnnouncementSequencer(
            FakePlayer(), FakeChime(), EmptySynthesizer(), speaker, language="en"
        )
        engine = TriggerEngine(app_state, sequencer)
        assert engine.is_announcing is False

        result = await engine.tick(at(7, 0))
        assert result.spoken_by == "fallback"
        assert speaker.spoken == [(result.text, "en-US")]
        assert engine.is_announcing is False

    async def test_flag_cleared_when_sequencer_raises(self, app_state: AppState) -> None:
        class ExplodingSequencer:
            async def announce(self, entry, settings):
                raise RuntimeError("boom")

        engine = TriggerEngine(app_state, ExplodingSequencer())
        result = await engine.tick(at(7, 0))
        assert result is None
        assert engine.is_announcing is False


@pytest.mark.unit
class TestClockTicker:
    async def test_ticks_drive_engine(self, engine: TriggerEngine, synthesizer: FakeSynthesizer) -> None:
        seen: list[datetime] = []
        ticker = ClockTicker(engine, interval=0.01, clock=lambda: at(7, 0), on_tick=seen.append)

        run = asyncio.create_task(ticker.run())
        await asyncio.sleep(0.1)
        ticker.stop()
        await asyncio.wait_for(run, timeout=1)
        await engine.wait_idle()

        assert len(seen) > 1
        assert len(synthesizer.calls) == 1

    async def test_tick_errors_do_not_stop_ticker(self, engine: TriggerEngine) -> None:
        calls = 0

        def broken_clock() -> datetime:
            nonlocal calls
            calls += 1
            return at(6, 0)

        def explode(now: datetime) -> None:
            raise RuntimeError("render failed")

        ticker = ClockTicker(engine, interval=0.01, clock=broken_clock, on_tick=explode)
        run = asyncio.create_task(ticker.run())
        await asyncio.sleep(0.08)
        ticker.stop()
        await asyncio.wait_for(run, timeout=1)
        assert calls > 1

    async def test_refresh_runs_before_each_tick(self, engine: TriggerEngine, app_state: AppState) -> None:
        order: list[str] = []

        def refresh() -> None:
            order.append("refresh")
            # Schedule swapped in just before the tick for its minute
            if "late" not in app_state.store:
                app_state.store.replace_all([make_entry("late", "07:00", teacher="Ani Wijaya")])

        def clock() -> datetime:
            order.append("tick")
            return at(7, 0)

        ticker = ClockTicker(engine, interval=0.01, clock=clock, refresh=refresh)
        run = asyncio.create_task(ticker.run())
        await asyncio.sleep(0.05)
        ticker.stop()
        await asyncio.wait_for(run, timeout=1)
        result = await engine.wait_idle()

        assert order[:2] == ["refresh", "tick"]
        assert result is not None
        assert "Ani Wijaya" in result.text

    async def test_refresh_errors_do_not_stop_ticker(self, engine: TriggerEngine) -> None:
        ticks = 0

        def clock() -> datetime:
            nonlocal ticks
            ticks += 1
            return at(6, 0)

        def refresh() -> None:
            raise OSError("snapshot unreadable")

        ticker = ClockTicker(engine, interval=0.01, clock=clock, refresh=refresh)
        run = asyncio.create_task(ticker.run())
        await asyncio.sleep(0.08)
        ticker.stop()
        await asyncio.wait_for(run, timeout=1)
        assert ticks > 1

    async def test_slow_tick_does_not_delay_schedule(self, engine: TriggerEngine) -> None:
        stamps: list[float] = []

        def slow_clock() -> datetime:
            stamps.append(time.monotonic())
            time.sleep(0.06)
            return at(6, 0)

        ticker = ClockTicker(engine, interval=0.1, clock=slow_clock)
        run = asyncio.create_task(ticker.run())
        await asyncio.sleep(0.55)
        ticker.stop()
        await asyncio.wait_for(run, timeout=1)

        # Ticks start one interval apart, not interval + work time apart
        gaps = [b - a for a, b in zip(stamps, stamps[1:])]
        assert gaps
        assert max(gaps) < 0.14
