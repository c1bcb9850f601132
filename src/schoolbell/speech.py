"""On-device fallback speech using pyttsx3.

Used when the synthesized announcement cannot be produced or played. This is
the last resort, so speak() never raises; failures are only logged.
"""

import pyttsx3

from src.schoolbell.logging import get_logger

logger = get_logger(__name__)


def _voice_languages(voice) -> list[str]:
    langs = []
    for lang in getattr(voice, "languages", None) or []:
        if isinstance(lang, bytes):
            # espeak reports e.g. b"\x05id"
            lang = lang.decode("utf-8", errors="ignore").lstrip("\x05")
        langs.append(str(lang).replace("_", "-").lower())
    return langs


def voice_matches_locale(voice, locale: str) -> bool:
    """True if an installed pyttsx3 voice speaks the locale's language."""
    primary = locale.split("-", 1)[0].lower()
    for lang in _voice_languages(voice):
        if lang == primary or lang.startswith(f"{primary}-"):
            return True
    # Windows voice ids embed the locale, e.g. MSTTS_V110_idID_Andika
    compact = locale.replace("-", "").lower()
    voice_id = str(getattr(voice, "id", "")).replace("-", "").replace("_", "").lower()
    return compact in voice_id


class FallbackSpeaker:
    """Reads text aloud with the platform speech engine (SAPI5, NSSS, espeak)."""

    def __init__(self, rate: int = 150, volume: float = 1.0) -> None:
        self.rate = rate
        self.volume = volume

    def speak(self, text: str, locale: str) -> bool:
        """Speak ``text`` and block until done.

        Returns:
            True if the engine ran to completion, False on any failure.
        """
        try:
            engine = pyttsx3.init()
            voice = next(
                (v for v in engine.getProperty("voices") if voice_matches_locale(v, locale)),
                None,
            )
            if voice is not None:
                engine.setProperty("voice", voice.id)
            else:
                logger.warning("fallback_voice_missing", locale=locale)
            engine.setProperty("rate", self.rate)
            engine.setProperty("volume", self.volume)
            engine.say(text)
            engine.runAndWait()
        except Exception as e:
            logger.error("fallback_speech_failed", error=str(e), type=type(e).__name__)
            return False

        logger.info("fallback_speech_spoken", locale=locale, chars=len(text))
        return True
