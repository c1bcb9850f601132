"""Pydantic models for schedule and settings data.

All data structures use Pydantic v2 for validation, serialization, and type safety.
Attributes are snake_case; the storage/wire names are the camelCase column names
of the ``schedules`` and ``settings`` tables (``model_dump(by_alias=True)``).
"""

import secrets
import string
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Zero-padded 24h HH:MM; lexicographic order equals chronological order
TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

_ID_ALPHABET = string.ascii_lowercase + string.digits
_ID_LENGTH = 9


class Honorific(str, Enum):
    """Form of address spoken before the teacher's name."""

    BAPAK = "Bapak"  # male
    IBU = "Ibu"  # female


class VoiceName(str, Enum):
    """Prebuilt voices recognised by the speech synthesis provider."""

    KORE = "Kore"  # standard
    PUCK = "Puck"  # deep
    CHARON = "Charon"  # calm
    FENRIR = "Fenrir"  # bold
    ZEPHYR = "Zephyr"  # light


class ScheduleEntryDraft(BaseModel):
    """Fields the operator fills in for a new class period.

    Validation here is the only guard against malformed form input; the
    engine itself never rejects an entry.
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    period: int = Field(gt=0)  # display only, not used for matching
    start_time: str = Field(alias="startTime", pattern=TIME_PATTERN)
    end_time: str = Field(alias="endTime", pattern=TIME_PATTERN)
    teacher: str = Field(min_length=1)
    honorific: Honorific = Field(alias="gender")
    subject: str = Field(min_length=1)
    class_name: str = Field(alias="className", min_length=1)


class ScheduleEntry(ScheduleEntryDraft):
    """A stored class period with its identity and active flag."""

    id: str = Field(min_length=1)
    is_active: bool = Field(default=True, alias="isActive")

    @classmethod
    def from_draft(cls, draft: ScheduleEntryDraft, entry_id: str) -> "ScheduleEntry":
        return cls(id=entry_id, is_active=True, **draft.model_dump())

    def to_record(self) -> dict:
        """Serialize to the camelCase row stored remotely and in the local backup."""
        return self.model_dump(mode="json", by_alias=True)


class Settings(BaseModel):
    """Singleton application settings."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    school_name: str = Field(alias="schoolName", min_length=1)
    auto_trigger_enabled: bool = Field(default=True, alias="isAutoEnabled")
    voice_name: VoiceName = Field(default=VoiceName.KORE, alias="voiceName")

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def new_entry_id() -> str:
    """Generate a fresh opaque schedule entry id (9 base-36 characters)."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_LENGTH))
