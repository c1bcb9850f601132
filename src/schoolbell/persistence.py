"""Persistence of schedule and settings: remote tables plus a local backup.

Two remote variants share the RemoteStore interface and are picked once at
startup by select_remote_store():

  - SupabaseStore: ``schedules`` and ``settings`` tables over the Supabase
    REST (PostgREST) API.
  - LocalOnlyStore: no credentials configured; every call is a no-op.

LocalSnapshot keeps the whole current state in two JSON slots and is always
written, so it serves as the backup when the remote is absent or failing.

PersistenceAdapter.load() reads remote first, then the local snapshot, then
built-in defaults. After each in-memory mutation the adapter mirrors the full
state locally and sends the single-record remote write in the background.
Remote write failures are logged and dropped: in-memory state stays
authoritative for the session.
"""

import asyncio
import json
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

import requests
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.schoolbell.config import BellConfig
from src.schoolbell.defaults import default_schedule, default_settings
from src.schoolbell.errors import BellError, RemoteRejectedError, RemoteStoreError
from src.schoolbell.logging import get_logger
from src.schoolbell.models import ScheduleEntry, Settings
from src.schoolbell.state import AppState
from src.schoolbell.store import ScheduleStore

logger = get_logger(__name__)

SCHEDULES_TABLE = "schedules"
SETTINGS_TABLE = "settings"
SETTINGS_ROW_ID = 1

SCHEDULE_FILENAME = "schedule.json"
SETTINGS_FILENAME = "settings.json"
CORRUPT_SUFFIX = ".corrupt"


class RemoteStore(Protocol):
    """Remote table operations the adapter depends on."""

    @property
    def available(self) -> bool: ...

    def fetch_schedule(self) -> list[ScheduleEntry] | None: ...

    def fetch_settings(self) -> Settings | None: ...

    def insert_entry(self, entry: ScheduleEntry) -> None: ...

    def update_entry(self, entry: ScheduleEntry) -> None: ...

    def set_entry_active(self, entry_id: str, active: bool) -> None: ...

    def delete_entry(self, entry_id: str) -> None: ...

    def upsert_settings(self, settings: Settings) -> None: ...


class LocalOnlyStore:
    """Stand-in remote used when no credentials are configured."""

    available = False

    def fetch_schedule(self) -> list[ScheduleEntry] | None:
        return None

    def fetch_settings(self) -> Settings | None:
        return None

    def insert_entry(self, entry: ScheduleEntry) -> None:
        pass

    def update_entry(self, entry: ScheduleEntry) -> None:
        pass

    def set_entry_active(self, entry_id: str, active: bool) -> None:
        pass

    def delete_entry(self, entry_id: str) -> None:
        pass

    def upsert_settings(self, settings: Settings) -> None:
        pass


class SupabaseStore:
    """Schedules/settings tables through the Supabase REST API."""

    available = True

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.rest_url = f"{url.rstrip('/')}/rest/v1"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_fixed(1),
        retry=retry_if_exception_type(RemoteStoreError),
        reraise=True,
    )
    def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json_body: Any = None,
        prefer: str | None = None,
    ) -> Any:
        """Send one REST call.

        Raises:
            RemoteStoreError: Network failure, 429 or 5xx (retried).
            RemoteRejectedError: Any other non-2xx status.
        """
        headers = {"Prefer": prefer} if prefer else None
        try:
            resp = self.session.request(
                method,
                f"{self.rest_url}/{table}",
                params=params,
                json=json_body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RemoteStoreError(f"{method} {table} failed: {e}") from e

        if resp.status_code == 429 or resp.status_code >= 500:
            raise RemoteStoreError(f"{method} {table} returned {resp.status_code}")
        if resp.status_code >= 400:
            raise RemoteRejectedError(
                f"{method} {table} returned {resp.status_code}: {resp.text[:200]}"
            )

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteRejectedError(f"{method} {table} returned invalid JSON") from e

    def fetch_schedule(self) -> list[ScheduleEntry] | None:
        rows = self._request(
            "GET", SCHEDULES_TABLE, params={"select": "*", "order": "startTime.asc"}
        )
        entries = _parse_entries(rows or [], source="remote")
        logger.info("remote_schedule_fetched", count=len(entries))
        return entries

    def fetch_settings(self) -> Settings | None:
        rows = self._request(
            "GET",
            SETTINGS_TABLE,
            params={"select": "*", "id": f"eq.{SETTINGS_ROW_ID}", "limit": "1"},
        )
        # No settings row yet is a normal first-run state
        if not rows:
            logger.info("remote_settings_missing")
            return None
        try:
            return Settings.model_validate(rows[0])
        except ValidationError as e:
            logger.warning("remote_settings_invalid", error=str(e))
            return None

    def insert_entry(self, entry: ScheduleEntry) -> None:
        self._request(
            "POST", SCHEDULES_TABLE, json_body=entry.to_record(), prefer="return=minimal"
        )

    def update_entry(self, entry: ScheduleEntry) -> None:
        self._request(
            "PATCH",
            SCHEDULES_TABLE,
            params={"id": f"eq.{entry.id}"},
            json_body=entry.to_record(),
            prefer="return=minimal",
        )

    def set_entry_active(self, entry_id: str, active: bool) -> None:
        self._request(
            "PATCH",
            SCHEDULES_TABLE,
            params={"id": f"eq.{entry_id}"},
            json_body={"isActive": active},
            prefer="return=minimal",
        )

    def delete_entry(self, entry_id: str) -> None:
        self._request("DELETE", SCHEDULES_TABLE, params={"id": f"eq.{entry_id}"})

    def upsert_settings(self, settings: Settings) -> None:
        self._request(
            "POST",
            SETTINGS_TABLE,
            json_body={"id": SETTINGS_ROW_ID, **settings.to_record()},
            prefer="resolution=merge-duplicates,return=minimal",
        )


def select_remote_store(config: BellConfig) -> RemoteStore:
    """Pick the remote variant once, from configuration."""
    if config.remote_configured:
        logger.info("remote_store_selected", type="supabase", url=config.supabase_url)
        return SupabaseStore(
            config.supabase_url, config.supabase_anon_key, timeout=config.http_timeout_sec
        )
    logger.warning("remote_store_selected", type="local_only", reason="credentials_missing")
    return LocalOnlyStore()


def _parse_entries(rows: list, source: str) -> list[ScheduleEntry]:
    entries: list[ScheduleEntry] = []
    for row in rows:
        try:
            entries.append(ScheduleEntry.model_validate(row))
        except ValidationError as e:
            logger.warning("schedule_row_skipped", source=source, error=str(e))
    return entries


class LocalSnapshot:
    """Local durable backup: one JSON file per slot (schedule, settings).

    Slots are replaced atomically (temp file in the same directory, then
    ``os.replace``), so a crash mid-write leaves the previous slot intact.
    A slot that no longer parses is renamed to ``<slot>.corrupt`` and loads
    as None.
    """

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)
        self.schedule_path = self.data_dir / SCHEDULE_FILENAME
        self.settings_path = self.data_dir / SETTINGS_FILENAME

    def signature(self) -> tuple:
        """Identify the current on-disk version of both slots.

        Every write swaps in a new file, so any write by this or another
        process changes the signature.
        """
        parts = []
        for path in (self.schedule_path, self.settings_path):
            try:
                st = path.stat()
            except FileNotFoundError:
                parts.append(None)
                continue
            parts.append((st.st_ino, st.st_mtime_ns, st.st_size))
        return tuple(parts)

    def _read(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error("local_snapshot_unreadable", path=str(path), error=str(e))
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            self._quarantine(path, str(e))
            return None

    def _quarantine(self, path: Path, reason: str) -> None:
        corrupt_path = path.with_name(path.name + CORRUPT_SUFFIX)
        try:
            os.replace(path, corrupt_path)
        except OSError as e:
            logger.error("local_snapshot_corrupt", path=str(path), error=reason, move_failed=str(e))
            return
        logger.error("local_snapshot_corrupt", path=str(path), error=reason, kept_as=str(corrupt_path))

    def _write(self, path: Path, data: Any) -> None:
        text = json.dumps(data, indent=2, ensure_ascii=False)
        tmp_path: Path | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=path.parent,
                prefix=f".{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_path = Path(tmp.name)
                tmp.write(text)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error("local_snapshot_write_failed", path=str(path), error=str(e))
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)

    def load_schedule(self) -> list[ScheduleEntry] | None:
        data = self._read(self.schedule_path)
        if data is None:
            return None
        if not isinstance(data, list):
            self._quarantine(self.schedule_path, "schedule slot is not a list")
            return None
        return _parse_entries(data, source="local")

    def load_settings(self) -> Settings | None:
        data = self._read(self.settings_path)
        if data is None:
            return None
        if not isinstance(data, dict):
            self._quarantine(self.settings_path, "settings slot is not an object")
            return None
        try:
            return Settings.model_validate(data)
        except ValidationError as e:
            logger.warning("local_settings_invalid", error=str(e))
            return None

    def save_schedule(self, entries: list[ScheduleEntry]) -> None:
        self._write(self.schedule_path, [entry.to_record() for entry in entries])

    def save_settings(self, settings: Settings) -> None:
        self._write(self.settings_path, settings.to_record())


class PersistenceAdapter:
    def __init__(self, remote: RemoteStore, local: LocalSnapshot) -> None:
        self.remote = remote
        self.local = local
        self._pending: set[asyncio.Task] = set()
        self._write_lock = asyncio.Lock()
        self._seen_signature: tuple | None = None

    # -------- Startup --------

    def load(self) -> AppState:
        """Build the session state: remote, else local snapshot, else defaults."""
        entries: list[ScheduleEntry] | None = None
        settings: Settings | None = None

        if self.remote.available:
            try:
                entries = self.remote.fetch_schedule()
                settings = self.remote.fetch_settings()
            except BellError as e:
                logger.error("remote_load_failed", error=str(e), type=type(e).__name__)
                entries = settings = None

        source = "remote"
        if not entries:
            entries = self.local.load_schedule()
            source = "local"
        # An empty saved schedule is kept; defaults only seed a first run
        if entries is None:
            entries = default_schedule()
            source = "defaults"

        if settings is None:
            settings = self.local.load_settings() or default_settings()

        logger.info("state_loaded", source=source, entries=len(entries))
        self._seen_signature = self.local.signature()
        return AppState(store=ScheduleStore(entries), settings=settings)

    def reload_if_changed(self, state: AppState) -> bool:
        """Adopt snapshot writes made by another process (e.g. a CLI command).

        Compares the snapshot signature with the one recorded after the last
        load or local write; on a change, swaps the snapshot contents into
        ``state``. A slot that is missing or unreadable leaves that part of
        the state untouched.

        Returns:
            True if the snapshot changed since it was last seen.
        """
        signature = self.local.signature()
        if signature == self._seen_signature:
            return False

        entries = self.local.load_schedule()
        settings = self.local.load_settings()
        if entries is not None:
            state.store.replace_all(entries)
        if settings is not None:
            state.settings = settings
        # Reading may have quarantined a slot
        self._seen_signature = self.local.signature()
        logger.info(
            "snapshot_reloaded",
            entries=len(state.store),
            schedule_read=entries is not None,
            settings_read=settings is not None,
        )
        return True

    # -------- Write-through after mutations --------

    def entry_added(self, state: AppState, entry: ScheduleEntry) -> None:
        self._mirror_local(state)
        self._push_remote("insert_entry", self.remote.insert_entry, entry)

    def entry_updated(self, state: AppState, entry: ScheduleEntry) -> None:
        self._mirror_local(state)
        self._push_remote("update_entry", self.remote.update_entry, entry)

    def entry_active_changed(self, state: AppState, entry: ScheduleEntry) -> None:
        self._mirror_local(state)
        self._push_remote("set_entry_active", self.remote.set_entry_active, entry.id, entry.is_active)

    def entry_deleted(self, state: AppState, entry_id: str) -> None:
        self._mirror_local(state)
        self._push_remote("delete_entry", self.remote.delete_entry, entry_id)

    def settings_changed(self, state: AppState) -> None:
        self._mirror_local(state)
        self._push_remote("upsert_settings", self.remote.upsert_settings, state.settings)

    async def flush(self) -> None:
        """Wait for every background remote write issued so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    def _mirror_local(self, state: AppState) -> None:
        self.local.save_schedule(state.store.entries())
        self.local.save_settings(state.settings)
        self._seen_signature = self.local.signature()

    def _push_remote(self, action: str, write: Callable[..., None], *args: Any) -> None:
        if not self.remote.available:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop (one-shot CLI command): write inline
            self._remote_write(action, write, *args)
            return
        task = loop.create_task(self._remote_write_async(action, write, *args))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _remote_write_async(self, action: str, write: Callable[..., None], *args: Any) -> None:
        # Lock is FIFO, so remote writes land in mutation order
        async with self._write_lock:
            await asyncio.to_thread(self._remote_write, action, write, *args)

    def _remote_write(self, action: str, write: Callable[..., None], *args: Any) -> None:
        try:
            write(*args)
        except BellError as e:
            logger.error("remote_write_failed", action=action, error=str(e), type=type(e).__name__)
            return
        logger.debug("remote_write_succeeded", action=action)
