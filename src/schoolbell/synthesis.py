"""Announcement speech synthesis through the Gemini text-to-speech REST API.

The provider returns raw 16-bit PCM (``audio/L16;codec=pcm;rate=24000``),
which is wrapped into a WAV container so the playback device can decode it.
Synthesis never raises: every failure is logged and reported as ``None`` so
the caller can fall back to on-device speech.
"""

import base64
import binascii
import io
import re
import wave
from dataclasses import dataclass

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.schoolbell.errors import SynthesisUnavailableError
from src.schoolbell.logging import get_logger
from src.schoolbell.models import VoiceName

logger = get_logger(__name__)

DEFAULT_PCM_RATE = 24000

# Status codes worth a second attempt
_RETRYABLE_STATUS: frozenset[int] = frozenset({429, 500, 502, 503, 504})

_PASSTHROUGH_FORMATS: dict[str, str] = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/ogg": "ogg",
}


@dataclass(frozen=True)
class SynthesizedAudio:
    """Encoded, directly playable announcement audio."""

    data: bytes
    format_hint: str


def pcm_to_wav(pcm: bytes, sample_rate: int = DEFAULT_PCM_RATE) -> bytes:
    """Wrap mono 16-bit little-endian PCM samples in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


def decode_inline_audio(mime_type: str, payload: str) -> SynthesizedAudio | None:
    """Turn a base64 ``inlineData`` part into playable audio.

    Returns:
        SynthesizedAudio, or None for an empty payload or unknown mime type.
    """
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("synthesis_payload_invalid", mime_type=mime_type)
        return None
    if not raw:
        return None

    base_type = mime_type.split(";", 1)[0].strip().lower()
    if base_type in _PASSTHROUGH_FORMATS:
        return SynthesizedAudio(raw, _PASSTHROUGH_FORMATS[base_type])
    if base_type in ("audio/l16", "audio/pcm"):
        match = re.search(r"rate=(\d+)", mime_type)
        rate = int(match.group(1)) if match else DEFAULT_PCM_RATE
        return SynthesizedAudio(pcm_to_wav(raw, rate), "wav")

    logger.warning("synthesis_mime_unsupported", mime_type=mime_type)
    return None


class GeminiSynthesizer:
    """Text-to-speech client for the Gemini ``generateContent`` endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash-preview-tts",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def synthesize(self, text: str, voice: VoiceName) -> SynthesizedAudio | None:
        """Synthesize ``text`` with the given prebuilt voice.

        Args:
            text: Announcement text.
            voice: One of the provider's prebuilt voices.

        Returns:
            Playable audio, or None if credentials are missing, the provider
            fails, or the response carries no audio.
        """
        if not self.api_key:
            logger.warning("synthesis_skipped", reason="missing_api_key")
            return None

        try:
            body = self._request(text, voice)
        except SynthesisUnavailableError as e:
            logger.error("synthesis_failed", error=str(e), type="unavailable")
            return None
        except (requests.RequestException, ValueError) as e:
            logger.error("synthesis_failed", error=str(e), type=type(e).__name__)
            return None

        try:
            inline = body["candidates"][0]["content"]["parts"][0]["inlineData"]
            mime_type = inline.get("mimeType", "audio/L16;codec=pcm;rate=24000")
            payload = inline["data"]
        except (KeyError, IndexError, TypeError):
            logger.warning("synthesis_empty", reason="no_inline_audio")
            return None

        audio = decode_inline_audio(mime_type, payload)
        if audio is None:
            logger.warning("synthesis_empty", reason="undecodable_audio", mime_type=mime_type)
            return None

        logger.info("synthesis_succeeded", voice=voice.value, bytes=len(audio.data))
        return audio

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_fixed(1),
        retry=retry_if_exception_type(SynthesisUnavailableError),
        reraise=True,
    )
    def _request(self, text: str, voice: VoiceName) -> dict:
        payload = {
            "contents": [{"parts": [{"text": text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {
                        "prebuiltVoiceConfig": {"voiceName": voice.value},
                    },
                },
            },
        }
        headers = {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }

        try:
            resp = self.session.post(
                self.endpoint, headers=headers, json=payload, timeout=self.timeout
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise SynthesisUnavailableError(f"Synthesis request failed: {e}") from e

        if resp.status_code in _RETRYABLE_STATUS:
            logger.warning("synthesis_retryable_status", status=resp.status_code)
            raise SynthesisUnavailableError(f"Provider returned {resp.status_code}")
        if resp.status_code != 200:
            raise requests.HTTPError(
                f"Provider returned {resp.status_code}: {resp.text[:200]}", response=resp
            )
        return resp.json()
