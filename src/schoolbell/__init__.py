"""Automatic school bell: live clock, class schedule and spoken announcements.

At each scheduled period start the bell plays a chime followed by a
synthesized announcement naming the teacher, subject and classroom, with
on-device speech as the fallback.
"""

from src.schoolbell.app import BellApp
from src.schoolbell.engine import TriggerEngine
from src.schoolbell.models import Honorific, ScheduleEntry, ScheduleEntryDraft, Settings, VoiceName

__all__ = [
    "BellApp",
    "TriggerEngine",
    "Honorific",
    "ScheduleEntry",
    "ScheduleEntryDraft",
    "Settings",
    "VoiceName",
]
