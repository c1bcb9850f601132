"""In-memory schedule store.

ScheduleStore is the single owner of schedule entries. All mutations are
synchronous and immediately visible; readers always receive copies, so a
caller holding an entry (e.g. an in-flight announcement) never observes a
later edit or delete.
"""

from collections.abc import Iterable

from src.schoolbell.errors import EntryNotFoundError
from src.schoolbell.logging import get_logger
from src.schoolbell.models import ScheduleEntry, ScheduleEntryDraft, new_entry_id

logger = get_logger(__name__)


class ScheduleStore:
    """Ordered collection of schedule entries keyed by id.

    The sorted view orders by start time; entries sharing a start time keep
    their insertion order (entries loaded from storage keep their stored order).
    """

    def __init__(self, entries: Iterable[ScheduleEntry] = ()) -> None:
        self._entries: dict[str, ScheduleEntry] = {}
        self._sequence: dict[str, int] = {}
        self._next_sequence = 0
        self.replace_all(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self._entries

    # -------- Reads --------

    def entries(self) -> list[ScheduleEntry]:
        """Return copies of all entries sorted by (start time, insertion order)."""
        ordered = sorted(
            self._entries.values(),
            key=lambda e: (e.start_time, self._sequence[e.id]),
        )
        return [entry.model_copy() for entry in ordered]

    def active_entries(self) -> list[ScheduleEntry]:
        return [entry for entry in self.entries() if entry.is_active]

    def get(self, entry_id: str) -> ScheduleEntry:
        """Return a copy of one entry.

        Raises:
            EntryNotFoundError: If no entry has this id.
        """
        try:
            return self._entries[entry_id].model_copy()
        except KeyError:
            raise EntryNotFoundError(entry_id) from None

    # -------- Mutations --------

    def add(self, draft: ScheduleEntryDraft) -> ScheduleEntry:
        """Store a new entry with a fresh id, active by default.

        Returns:
            Copy of the stored entry.
        """
        entry_id = new_entry_id()
        while entry_id in self._entries:
            entry_id = new_entry_id()
        entry = ScheduleEntry.from_draft(draft, entry_id)
        self._insert(entry)
        logger.info("entry_added", entry_id=entry_id, start_time=entry.start_time)
        return entry.model_copy()

    def update(self, entry: ScheduleEntry) -> ScheduleEntry:
        """Replace the entry with the same id, keeping its tie-break position.

        Raises:
            EntryNotFoundError: If no entry has this id.
        """
        if entry.id not in self._entries:
            raise EntryNotFoundError(entry.id)
        self._entries[entry.id] = entry.model_copy()
        logger.info("entry_updated", entry_id=entry.id, start_time=entry.start_time)
        return entry.model_copy()

    def remove(self, entry_id: str) -> bool:
        """Delete an entry. Returns False (no-op) if the id is absent."""
        if self._entries.pop(entry_id, None) is None:
            logger.debug("entry_remove_skipped", entry_id=entry_id, reason="not_found")
            return False
        del self._sequence[entry_id]
        logger.info("entry_removed", entry_id=entry_id)
        return True

    def set_active(self, entry_id: str, active: bool) -> ScheduleEntry:
        """Set the active flag of one entry.

        Raises:
            EntryNotFoundError: If no entry has this id.
        """
        if entry_id not in self._entries:
            raise EntryNotFoundError(entry_id)
        updated = self._entries[entry_id].model_copy(update={"is_active": active})
        self._entries[entry_id] = updated
        logger.info("entry_active_changed", entry_id=entry_id, is_active=active)
        return updated.model_copy()

    def toggle_active(self, entry_id: str) -> ScheduleEntry:
        current = self.get(entry_id)
        return self.set_active(entry_id, not current.is_active)

    def replace_all(self, entries: Iterable[ScheduleEntry]) -> None:
        """Drop every entry and load ``entries`` in the given order."""
        self._entries.clear()
        self._sequence.clear()
        self._next_sequence = 0
        for entry in entries:
            self._insert(entry.model_copy())

    def _insert(self, entry: ScheduleEntry) -> None:
        self._entries[entry.id] = entry
        self._sequence[entry.id] = self._next_sequence
        self._next_sequence += 1
