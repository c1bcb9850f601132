"""Built-in schedule and settings used on first run."""

from src.schoolbell.models import Honorific, ScheduleEntry, Settings, VoiceName

DEFAULT_SCHOOL_NAME = "SMP ISLAM ARRAUDHOH"

_DEFAULT_ROWS = [
    ("1", 1, "07:00", "07:45", "Budi Santoso", Honorific.BAPAK, "Matematika", "X-A"),
    ("2", 2, "07:45", "08:30", "Siti Aminah", Honorific.IBU, "Bahasa Indonesia", "XI-B"),
    ("3", 3, "08:30", "09:15", "Siti Aminah", Honorific.IBU, "Bahasa Indonesia", "XI-B"),
    ("4", 4, "09:30", "10:15", "Joko Widodo", Honorific.BAPAK, "Fisika", "XII-C"),
    ("5", 5, "10:15", "11:00", "Joko Widodo", Honorific.BAPAK, "Fisika", "XII-C"),
]


def default_schedule() -> list[ScheduleEntry]:
    return [
        ScheduleEntry(
            id=entry_id,
            period=period,
            start_time=start,
            end_time=end,
            teacher=teacher,
            honorific=honorific,
            subject=subject,
            class_name=class_name,
            is_active=True,
        )
        for entry_id, period, start, end, teacher, honorific, subject, class_name in _DEFAULT_ROWS
    ]


def default_settings() -> Settings:
    return Settings(
        school_name=DEFAULT_SCHOOL_NAME,
        auto_trigger_enabled=True,
        voice_name=VoiceName.KORE,
    )
