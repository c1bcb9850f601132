"""Chime clip resolution and blocking audio playback through pygame.

Playback blocks until the clip finishes; async callers run it with
``asyncio.to_thread`` so the clock keeps ticking meanwhile.
"""

import io
import os
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse

import requests

from src.schoolbell.errors import PlaybackError
from src.schoolbell.logging import get_logger

os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")
import pygame  # noqa: E402

logger = get_logger(__name__)

CHIME_CACHE_STEM = "chime"


class AudioPlayer(Protocol):
    def play(self, data: bytes, format_hint: str = "") -> None:
        """Play encoded audio to completion. Raises PlaybackError on failure."""
        ...


class PygamePlayer:
    """Plays encoded audio (mp3, wav, ogg) on the default output device.

    All clips go through ``pygame.mixer.music``, so only one clip plays at a
    time on the single output device.
    """

    def __init__(self, poll_interval_ms: int = 50) -> None:
        self.poll_interval_ms = poll_interval_ms

    def _ensure_mixer(self) -> None:
        if not pygame.mixer.get_init():
            pygame.mixer.init()
            logger.debug("mixer_initialized", init=pygame.mixer.get_init())

    def play(self, data: bytes, format_hint: str = "") -> None:
        """Play ``data`` and block until it finishes.

        Args:
            data: Encoded audio bytes.
            format_hint: File extension without dot (e.g. "mp3", "wav").

        Raises:
            PlaybackError: If the mixer cannot start or the clip cannot be decoded.
        """
        if not data:
            raise PlaybackError("No audio data")

        buffer = io.BytesIO(data)
        try:
            self._ensure_mixer()
            pygame.mixer.music.load(buffer, format_hint)
            pygame.mixer.music.play()
            while pygame.mixer.music.get_busy():
                pygame.time.wait(self.poll_interval_ms)
            pygame.mixer.music.unload()
        except pygame.error as e:
            raise PlaybackError(f"Audio playback failed: {e}") from e

        logger.debug("clip_played", bytes=len(data), format=format_hint)


class ChimeSource:
    """Provides the chime clip played before every announcement.

    A configured local file wins; otherwise the clip is downloaded from
    ``chime_url`` once and cached in ``cache_dir`` for later runs.
    """

    def __init__(
        self,
        chime_url: str,
        cache_dir: str | Path,
        chime_path: str = "",
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.chime_url = chime_url
        self.chime_path = Path(chime_path) if chime_path else None
        self.cache_dir = Path(cache_dir)
        self.timeout = timeout
        self.session = session or requests.Session()
        self._clip: tuple[bytes, str] | None = None

    @property
    def cache_file(self) -> Path:
        suffix = Path(urlparse(self.chime_url).path).suffix or ".mp3"
        return self.cache_dir / f"{CHIME_CACHE_STEM}{suffix}"

    def load(self) -> tuple[bytes, str]:
        """Return (clip bytes, format hint).

        Raises:
            PlaybackError: If the clip can be neither read nor downloaded.
        """
        if self._clip is None:
            if self.chime_path is not None:
                self._clip = self._read(self.chime_path)
            elif self.cache_file.exists():
                self._clip = self._read(self.cache_file)
            else:
                self._clip = self._download()
        return self._clip

    def _read(self, path: Path) -> tuple[bytes, str]:
        try:
            data = path.read_bytes()
        except OSError as e:
            raise PlaybackError(f"Cannot read chime file {path}: {e}") from e
        logger.debug("chime_loaded", path=str(path), bytes=len(data))
        return data, path.suffix.lstrip(".")

    def _download(self) -> tuple[bytes, str]:
        if not self.chime_url:
            raise PlaybackError("No chime file or URL configured")
        try:
            resp = self.session.get(self.chime_url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise PlaybackError(f"Chime download failed: {e}") from e
        if not resp.content:
            raise PlaybackError("Chime download returned no data")

        target = self.cache_file
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(resp.content)
            logger.info("chime_cached", url=self.chime_url, path=str(target))
        except OSError as e:
            logger.warning("chime_cache_failed", path=str(target), error=str(e))
        return resp.content, target.suffix.lstrip(".")
