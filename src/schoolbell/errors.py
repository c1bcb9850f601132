"""Error hierarchy for the bell system.

Transient failures (network hiccups, provider overload) may succeed on retry
and are the only errors tenacity decorators retry. Permanent failures are
classified so callers can decide whether to degrade or report.

Example usage with tenacity:
    @retry(retry=retry_if_exception_type(TransientError), stop=stop_after_attempt(3))
    def fetch_schedule(self):
        ...
"""


class BellError(Exception):
    """Base exception for all bell system errors."""

    pass


class TransientError(BellError):
    """Temporary failure that may succeed on retry.

    Examples: network timeouts, 503 Service Unavailable, 429 rate limiting.
    """

    pass


class RemoteStoreError(TransientError):
    """The remote schedule/settings tables could not be read or written."""

    pass


class SynthesisUnavailableError(TransientError):
    """Speech synthesis provider is overloaded or unreachable."""

    pass


class PermanentError(BellError):
    """Failure that won't succeed on retry."""

    pass


class RemoteRejectedError(PermanentError):
    """Remote store refused the request (4xx: bad key, schema mismatch, RLS policy)."""

    pass


class EntryNotFoundError(PermanentError):
    """No schedule entry exists with the requested id."""

    def __init__(self, entry_id: str) -> None:
        super().__init__(entry_id)
        self.entry_id = entry_id

    def __str__(self) -> str:
        return f"Schedule entry {self.entry_id!r} not found"


class AnnouncementError(PermanentError):
    """Announcement text cannot be composed (missing required field)."""

    pass


class PlaybackError(PermanentError):
    """Audio clip could not be loaded or played on the output device."""

    pass
