"""Announcement sequencer: chime, compose, synthesize, play or fall back.

One call to AnnouncementSequencer.announce() produces the audible bell event
for a single schedule entry. The steps are strictly sequential and each
blocking step runs in a worker thread, so the event loop (and the clock)
keeps running while audio plays:

  1. chime        - failure is logged and skipped
  2. compose text - fixed template, every field required
  3. synthesize   - bounded by a timeout; timeout counts as failure
  4. play speech  - on synthesis or playback failure ...
  5. fallback     - on-device speech of the same text; failure only logged
"""

import asyncio
from dataclasses import dataclass
from typing import Literal, Protocol

from src.schoolbell.audio import AudioPlayer
from src.schoolbell.config import FALLBACK_LOCALES
from src.schoolbell.errors import AnnouncementError
from src.schoolbell.logging import get_logger
from src.schoolbell.models import ScheduleEntry, Settings, VoiceName
from src.schoolbell.synthesis import SynthesizedAudio

logger = get_logger(__name__)

ANNOUNCEMENT_TEMPLATES: dict[str, str] = {
    "id": (
        "Assalamualaikum warahmatullohi wabarokatuh, kepada siswa {school}. "
        "Perhatian. Jam ke {period}. Pukul {start_time}. "
        "{honorific} Guru {teacher}, pengampu mata pelajaran {subject}, "
        "dipersilakan masuk kelas {class_name}. Selamat belajar."
    ),
    "en": (
        "Good morning, students of {school}. "
        "Attention. Period {period}. At {start_time}. "
        "{honorific} Teacher {teacher}, instructor of {subject}, "
        "please proceed to classroom {class_name}. Have a good lesson."
    ),
}

SpokenBy = Literal["synthesis", "fallback", "none"]


class ChimeLoader(Protocol):
    def load(self) -> tuple[bytes, str]: ...


class Synthesizer(Protocol):
    def synthesize(self, text: str, voice: VoiceName) -> SynthesizedAudio | None: ...


class Speaker(Protocol):
    def speak(self, text: str, locale: str) -> bool: ...


@dataclass(frozen=True)
class AnnouncementResult:
    text: str
    chime_played: bool
    spoken_by: SpokenBy


def compose_announcement(entry: ScheduleEntry, settings: Settings, language: str = "id") -> str:
    """Build the spoken announcement for one entry.

    Raises:
        AnnouncementError: If a field is blank or the language has no template.
    """
    template = ANNOUNCEMENT_TEMPLATES.get(language)
    if template is None:
        raise AnnouncementError(f"No announcement template for language {language!r}")

    fields = {
        "school": settings.school_name,
        "period": str(entry.period),
        "start_time": entry.start_time,
        "honorific": entry.honorific.value,
        "teacher": entry.teacher,
        "subject": entry.subject,
        "class_name": entry.class_name,
    }
    missing = [name for name, value in fields.items() if not value.strip()]
    if missing:
        raise AnnouncementError(f"Announcement fields missing: {', '.join(missing)}")
    return template.format(**fields)


class AnnouncementSequencer:
    """Plays the chime and the spoken announcement for one entry."""

    def __init__(
        self,
        player: AudioPlayer,
        chime: ChimeLoader,
        synthesizer: Synthesizer,
        speaker: Speaker,
        language: str = "id",
        synthesis_timeout: float = 30.0,
    ) -> None:
        self.player = player
        self.chime = chime
        self.synthesizer = synthesizer
        self.speaker = speaker
        self.language = language
        self.locale = FALLBACK_LOCALES.get(language, "id-ID")
        self.synthesis_timeout = synthesis_timeout

    async def announce(self, entry: ScheduleEntry, settings: Settings) -> AnnouncementResult:
        """Run the full chime + announcement sequence.

        Args:
            entry: Copy of the matched entry; later store edits do not affect it.
            settings: Snapshot of the settings at trigger time.

        Raises:
            AnnouncementError: If the announcement text cannot be composed.
        """
        chime_played = await self._play_chime()
        text = compose_announcement(entry, settings, self.language)

        audio = await self._synthesize(text, settings.voice_name)
        if audio is not None:
            try:
                await asyncio.to_thread(self.player.play, audio.data, audio.format_hint)
                logger.info("announcement_spoken", via="synthesis")
                return AnnouncementResult(text, chime_played, "synthesis")
            except Exception as e:
                logger.warning("announcement_playback_failed", error=str(e))
        else:
            logger.warning("announcement_audio_unavailable")

        spoken = await self._speak_fallback(text)
        return AnnouncementResult(text, chime_played, "fallback" if spoken else "none")

    async def _play_chime(self) -> bool:
        try:
            data, format_hint = await asyncio.to_thread(self.chime.load)
            await asyncio.to_thread(self.player.play, data, format_hint)
        except Exception as e:
            logger.warning("chime_failed", error=str(e), type=type(e).__name__)
            return False
        return True

    async def _synthesize(self, text: str, voice: VoiceName) -> SynthesizedAudio | None:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.synthesizer.synthesize, text, voice),
                timeout=self.synthesis_timeout,
            )
        except asyncio.TimeoutError:
            logger.error("synthesis_timeout", timeout_sec=self.synthesis_timeout)
        except Exception as e:
            logger.error("synthesis_failed", error=str(e), type=type(e).__name__)
        return None

    async def _speak_fallback(self, text: str) -> bool:
        try:
            spoken = await asyncio.to_thread(self.speaker.speak, text, self.locale)
        except Exception as e:
            logger.error("fallback_speech_failed", error=str(e), type=type(e).__name__)
            return False
        if spoken:
            logger.info("announcement_spoken", via="fallback", locale=self.locale)
        return bool(spoken)
