"""Shared pytest fixtures and fakes for the school bell test suite."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from src.schoolbell.announcement import AnnouncementSequencer
from src.schoolbell.engine import TriggerEngine
from src.schoolbell.errors import PlaybackError, RemoteStoreError
from src.schoolbell.models import Honorific, ScheduleEntry, ScheduleEntryDraft, Settings, VoiceName
from src.schoolbell.persistence import LocalSnapshot, PersistenceAdapter
from src.schoolbell.state import AppState
from src.schoolbell.store import ScheduleStore
from src.schoolbell.synthesis import SynthesizedAudio

# ---------------------------------------------------------------------------
# Fakes for audio, synthesis, speech and remote storage
# ---------------------------------------------------------------------------


class FakePlayer:
    def __init__(self, fail_formats: tuple[str, ...] = ()) -> None:
        self.fail_formats = fail_formats
        self.played: list[tuple[bytes, str]] = []

    def play(self, data: bytes, format_hint: str = "") -> None:
        self.played.append((data, format_hint))
        if format_hint in self.fail_formats:
            raise PlaybackError(f"cannot play {format_hint}")


class FakeChime:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail

    def load(self) -> tuple[bytes, str]:
        if self.fail:
            raise PlaybackError("chime missing")
        return b"chime-bytes", "mp3"


class FakeSynthesizer:
    """Returns canned audio; ``gate`` blocks the call until released."""

    def __init__(self, audio: SynthesizedAudio | None = None, gate: threading.Event | None = None) -> None:
        self.audio = audio if audio is not None else SynthesizedAudio(b"speech-bytes", "wav")
        self.gate = gate
        self.calls: list[tuple[str, VoiceName]] = []

    def synthesize(self, text: str, voice: VoiceName) -> SynthesizedAudio | None:
        self.calls.append((text, voice))
        if self.gate is not None:
            self.gate.wait(timeout=5)
        return self.audio


class EmptySynthesizer(FakeSynthesizer):
    def synthesize(self, text: str, voice: VoiceName) -> SynthesizedAudio | None:
        self.calls.append((text, voice))
        return None


class FakeSpeaker:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.spoken: list[tuple[str, str]] = []

    def speak(self, text: str, locale: str) -> bool:
        self.spoken.append((text, locale))
        if self.fail:
            raise RuntimeError("no speech driver")
        return True


class FakeRemoteStore:
    """In-memory remote; ``fail`` makes every call raise RemoteStoreError."""

    available = True

    def __init__(
        self,
        entries: list[ScheduleEntry] | None = None,
        settings: Settings | None = None,
        fail: bool = False,
    ) -> None:
        self.entries = entries
        self.settings = settings
        self.fail = fail
        self.calls: list[tuple] = []

    def _record(self, *call) -> None:
        self.calls.append(call)
        if self.fail:
            raise RemoteStoreError("remote down")

    def fetch_schedule(self):
        self._record("fetch_schedule")
        return self.entries

    def fetch_settings(self):
        self._record("fetch_settings")
        return self.settings

    def insert_entry(self, entry):
        self._record("insert_entry", entry.id)

    def update_entry(self, entry):
        self._record("update_entry", entry.id)

    def set_entry_active(self, entry_id, active):
        self._record("set_entry_active", entry_id, active)

    def delete_entry(self, entry_id):
        self._record("delete_entry", entry_id)

    def upsert_settings(self, settings):
        self._record("upsert_settings", settings.school_name)


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


def make_entry(entry_id: str = "e1", start: str = "07:00", end: str = "07:45", **overrides) -> ScheduleEntry:
    fields = dict(
        id=entry_id,
        period=1,
        start_time=start,
        end_time=end,
        teacher="Budi Santoso",
        honorific=Honorific.BAPAK,
        subject="Matematika",
        class_name="X-A",
        is_active=True,
    )
    fields.update(overrides)
    return ScheduleEntry(**fields)


@pytest.fixture
def draft() -> ScheduleEntryDraft:
    return ScheduleEntryDraft(
        period=6,
        start_time="11:00",
        end_time="11:45",
        teacher="Dewi Lestari",
        honorific=Honorific.IBU,
        subject="Biologi",
        class_name="X-B",
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(school_name="SMP Harapan", auto_trigger_enabled=True, voice_name=VoiceName.KORE)


@pytest.fixture
def app_state(settings: Settings) -> AppState:
    return AppState(store=ScheduleStore([make_entry()]), settings=settings)


# ---------------------------------------------------------------------------
# Core wiring
# ---------------------------------------------------------------------------


@pytest.fixture
def player() -> FakePlayer:
    return FakePlayer()


@pytest.fixture
def speaker() -> FakeSpeaker:
    return FakeSpeaker()


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def sequencer(player: FakePlayer, synthesizer: FakeSynthesizer, speaker: FakeSpeaker) -> AnnouncementSequencer:
    return AnnouncementSequencer(
        player=player,
        chime=FakeChime(),
        synthesizer=synthesizer,
        speaker=speaker,
        language="en",
        synthesis_timeout=2.0,
    )


@pytest.fixture
def engine(app_state: AppState, sequencer: AnnouncementSequencer) -> TriggerEngine:
    return TriggerEngine(app_state, sequencer)


@pytest.fixture
def snapshot(tmp_path: Path) -> LocalSnapshot:
    return LocalSnapshot(tmp_path / "data")


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def persistence(remote: FakeRemoteStore, snapshot: LocalSnapshot) -> PersistenceAdapter:
    return PersistenceAdapter(remote, snapshot)
