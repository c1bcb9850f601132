"""Bell system configuration loaded from environment variables.

Remote storage and speech synthesis credentials are optional: leaving them
empty is a supported deployment (local-only persistence, on-device speech).
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

# Spoken-language locale used by the on-device fallback voice
FALLBACK_LOCALES: dict[str, str] = {
    "id": "id-ID",
    "en": "en-US",
}


class BellConfig(BaseSettings):
    """Bell configuration loaded from environment variables.

    Settings are loaded from environment variables with sensible defaults.
    For local development, create a .env file in the project root.
    """

    # Supabase (remote schedules/settings tables)
    supabase_url: str = Field(
        default="",
        description="Supabase project URL, e.g. https://xyz.supabase.co",
    )
    supabase_anon_key: str = Field(
        default="",
        description="Supabase anon API key",
    )

    # Gemini speech synthesis
    gemini_api_key: str = Field(
        default="",
        description="Gemini API key for announcement speech synthesis",
    )
    gemini_tts_model: str = Field(
        default="gemini-2.5-flash-preview-tts",
        description="Gemini model used for text-to-speech",
    )
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini REST API base URL",
    )

    # Audio
    chime_url: str = Field(
        default="https://assets.mixkit.co/active_storage/sfx/2869/2869-preview.mp3",
        description="Chime clip downloaded on first use",
    )
    chime_path: str = Field(
        default="",
        description="Local chime file; overrides chime_url when set",
    )

    # Paths
    data_dir: str = Field(
        default="data",
        description="Directory for the local schedule/settings backup",
    )

    # Announcement
    announcement_language: Literal["id", "en"] = Field(
        default="id",
        description="Language of the spoken announcement template",
    )

    # Timing
    tick_interval_sec: float = Field(
        default=1.0,
        gt=0,
        le=30,
        description="Clock tick cadence; at most half a minute so every minute gets a tick",
    )
    synthesis_timeout_sec: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound on the speech synthesis request before falling back",
    )
    http_timeout_sec: float = Field(
        default=10.0,
        gt=0,
        description="Per-request timeout for Supabase and chime downloads",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def remote_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)


# Singleton pattern
_config: BellConfig | None = None


def get_config() -> BellConfig:
    """Get the bell configuration singleton.

    Returns:
        BellConfig: Bell configuration instance
    """
    global _config
    if _config is None:
        _config = BellConfig()
    return _config
