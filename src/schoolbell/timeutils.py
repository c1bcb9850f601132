"""Minute-resolution matching of schedule entries against the wall clock.

All comparisons are done on zero-padded ``HH:MM`` strings, whose
lexicographic order is the chronological order within a day.
"""

from collections.abc import Iterable
from datetime import datetime

from src.schoolbell.models import ScheduleEntry


def minute_key(now: datetime) -> str:
    """Format an instant as the ``HH:MM`` key used for trigger matching."""
    return now.strftime("%H:%M")


def find_trigger_match(entries: Iterable[ScheduleEntry], minute: str) -> ScheduleEntry | None:
    """Return the first active entry (in the given order) starting at ``minute``.

    Callers pass entries already sorted by start time, so with several
    entries sharing a start time only the first one is ever returned.
    """
    for entry in entries:
        if entry.is_active and entry.start_time == minute:
            return entry
    return None


def next_bell(entries: Iterable[ScheduleEntry], now: datetime) -> ScheduleEntry | None:
    """Active entry with the smallest start time strictly after the current minute."""
    current = minute_key(now)
    upcoming = [e for e in entries if e.is_active and e.start_time > current]
    if not upcoming:
        return None
    # min() keeps the first of equal keys, preserving store order on ties
    return min(upcoming, key=lambda e: e.start_time)


def current_period(entries: Iterable[ScheduleEntry], now: datetime) -> ScheduleEntry | None:
    """Active entry whose [start, end) window contains the current minute."""
    current = minute_key(now)
    for entry in entries:
        if entry.is_active and entry.start_time <= current < entry.end_time:
            return entry
    return None


def clock_display(now: datetime) -> tuple[str, str]:
    """Live clock strings: (``HH:MM:SS``, ``Weekday, DD Month YYYY``)."""
    return now.strftime("%H:%M:%S"), now.strftime("%A, %d %B %Y")
