from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from ..errors import CorruptionError, PersistenceError
from .migration import is_legacy_document, is_legacy_entry, migrate_entry, migrate_legacy_document
from .models import (
    SCHEMA_VERSION,
    CommunitySettings,
    Record,
    Store,
    StoreMetadata,
    parse_iso,
    utcnow,
)
from .validation import repair_record_dict

log = logging.getLogger("warden.persistence")


def _decode_text(data: bytes) -> str:
    # Undecodable bytes become U+FFFD so fragment recovery still sees the rest.
    text = data.decode("utf-8", errors="replace")
    if "\ufffd" in text:
        log.warning("Watchlist data contains invalid UTF-8, damaged bytes replaced")
    return text


class WatchlistFile:
    """JSON file store for the watchlist.

    Reads and writes go through a ``<file>.lock`` file so that two processes
    never interleave. Writes land in ``<file>.tmp``, are read back and
    compared, then renamed over the target. A ``<file>.backup`` snapshot of the
    last good document is refreshed at most once per ``backup_interval``.

    Within one process, concurrent ``load()`` calls share a single read and
    ``save()`` calls run one at a time.
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        backup_interval: float = 300.0,
        lock_timeout: float = 10.0,
        lock_poll_interval: float = 0.05,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = Path(path)
        self.tmp_path = self.path.with_name(self.path.name + ".tmp")
        self.backup_path = self.path.with_name(self.path.name + ".backup")
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.max_retries = max(1, int(max_retries))
        self.retry_delay = retry_delay
        self.backup_interval = backup_interval
        self.lock_timeout = lock_timeout
        self.lock_poll_interval = lock_poll_interval
        self._clock = clock

        self._save_lock = asyncio.Lock()
        self._load_task: Optional[asyncio.Task[Store]] = None
        self._last_backup_at: Optional[float] = None
        self._last_modified: Optional[datetime] = None
        self._lock_token: Optional[str] = None

    # ------------------------------------------------------------------
    # load
    # ------------------------------------------------------------------

    async def load(self) -> Store:
        """Read the store. Never raises; degrades to backup, then empty."""
        task = self._load_task
        if task is not None:
            return await task
        task = asyncio.create_task(self._load_once(), name="watchlist-load")
        self._load_task = task
        try:
            return await task
        finally:
            self._load_task = None

    async def _load_once(self) -> Store:
        raw: Optional[str] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                await asyncio.to_thread(self._ensure_file)
                await self._acquire_lock()
                try:
                    raw = _decode_text(await asyncio.to_thread(self.path.read_bytes))
                finally:
                    await asyncio.to_thread(self._release_lock)
                break
            except OSError as e:
                log.warning("Watchlist read attempt %d/%d failed: %s", attempt, self.max_retries, e)
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay * attempt)

        store = self._decode(raw, "watchlist") if raw is not None else None
        if store is None:
            log.warning("Watchlist unreadable, trying backup %s", self.backup_path)
            backup_raw = await asyncio.to_thread(self._read_backup)
            store = self._decode(backup_raw, "backup") if backup_raw is not None else None
        if store is None:
            log.error("No usable watchlist data found, starting with an empty store")
            store = Store()

        self._last_modified = store.metadata.last_modified_at
        log.info("Loaded watchlist with %d records from %s", len(store.records), self.path)
        return store

    def _ensure_file(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            return
        payload = json.dumps(Store().to_dict(), indent=2)
        self.tmp_path.write_text(payload, encoding="utf-8")
        os.replace(self.tmp_path, self.path)
        log.info("Created empty watchlist at %s", self.path)

    def _read_backup(self) -> Optional[str]:
        try:
            return _decode_text(self.backup_path.read_bytes())
        except FileNotFoundError:
            return None
        except OSError as e:
            log.warning("Could not read watchlist backup: %s", e)
            return None

    def _decode(self, raw: str, source: str) -> Optional[Store]:
        try:
            return self._from_document(self._parse(raw))
        except CorruptionError as e:
            log.warning("Corrupted %s file: %s", source, e)
        recovered = self._recover_fragments(raw)
        if recovered is not None:
            log.warning("Recovered %d records from corrupted %s file", len(recovered.records), source)
        return recovered

    @staticmethod
    def _parse(raw: str) -> Dict[str, Any]:
        if not raw.strip():
            raise CorruptionError("file is empty")
        try:
            doc = json.loads(raw)
        except (ValueError, RecursionError) as e:
            raise CorruptionError(str(e)) from e
        if not isinstance(doc, dict):
            raise CorruptionError("top level is not an object")
        return doc

    def _from_document(self, doc: Dict[str, Any]) -> Store:
        if is_legacy_document(doc):
            doc = migrate_legacy_document(doc)

        store = Store(metadata=self._metadata_from(doc.get("metadata")))

        settings = doc.get("settings")
        if isinstance(settings, dict):
            for community, values in settings.items():
                try:
                    store.settings[str(community)] = CommunitySettings.from_dict(values)
                except (ValueError, TypeError) as e:
                    log.warning("Dropping invalid settings for %s: %s", community, e)

        records = doc.get("records")
        if isinstance(records, dict):
            for key, data in records.items():
                record = self._record_from(str(key), data)
                if record is not None:
                    store.records[record.key] = record
        return store

    @staticmethod
    def _metadata_from(data: Any) -> StoreMetadata:
        metadata = StoreMetadata()
        if not isinstance(data, dict):
            return metadata
        for name in ("created_at", "last_modified_at"):
            value = data.get(name)
            if value:
                try:
                    setattr(metadata, name, parse_iso(value))
                except ValueError:
                    log.warning("Ignoring malformed metadata.%s", name)
        metadata.schema_version = SCHEMA_VERSION
        return metadata

    @staticmethod
    def _record_from(key: str, data: Any) -> Optional[Record]:
        if not isinstance(data, dict):
            log.warning("Dropping invalid record %s: not an object", key)
            return None
        repair_record_dict(key, data)
        try:
            return Record.from_dict(data)
        except (ValueError, TypeError, KeyError) as e:
            log.warning("Dropping invalid record %s: %s", key, e)
            return None

    def _recover_fragments(self, raw: str) -> Optional[Store]:
        """Pull every well-formed record object out of a damaged document."""
        decoder = json.JSONDecoder()
        store = Store()
        idx = raw.find("{")
        while idx != -1:
            try:
                obj, end = decoder.raw_decode(raw, idx)
            except (ValueError, RecursionError):
                idx = raw.find("{", idx + 1)
                continue
            if isinstance(obj, dict) and (("scope_user" in obj and "scope_community" in obj) or is_legacy_entry(obj)):
                data = migrate_entry(obj) if is_legacy_entry(obj) else obj
                record = self._record_from("fragment", data)
                if record is not None:
                    store.records[record.key] = record
                idx = raw.find("{", end)
            else:
                # Not a record; its children may still be.
                idx = raw.find("{", idx + 1)
        if not store.records:
            return None
        return store

    # ------------------------------------------------------------------
    # save
    # ------------------------------------------------------------------

    async def save(self, store: Store) -> None:
        """Write the store atomically, raising PersistenceError when every retry fails."""
        async with self._save_lock:
            previous_stamp = store.metadata.last_modified_at
            last_error: Optional[BaseException] = None
            for attempt in range(1, self.max_retries + 1):
                try:
                    await self._save_once(store)
                    return
                except (OSError, ValueError, TypeError) as e:
                    last_error = e
                    log.warning("Watchlist save attempt %d/%d failed: %s", attempt, self.max_retries, e)
                    if attempt < self.max_retries:
                        await asyncio.sleep(self.retry_delay * attempt)
            # Memory must not claim a modification that never reached disk.
            store.metadata.last_modified_at = previous_stamp
            raise PersistenceError(
                f"Failed to save watchlist after {self.max_retries} attempts: {last_error}"
            ) from last_error

    async def _save_once(self, store: Store) -> None:
        stamp = utcnow()
        previous = self._last_modified
        if store.metadata.last_modified_at is not None and (
            previous is None or store.metadata.last_modified_at > previous
        ):
            previous = store.metadata.last_modified_at
        if previous is not None and stamp <= previous:
            stamp = previous + timedelta(microseconds=1)
        store.metadata.last_modified_at = stamp
        store.metadata.schema_version = SCHEMA_VERSION

        doc = store.to_dict()
        for key, data in doc["records"].items():
            repair_record_dict(key, data)
        payload = json.dumps(doc, indent=2, ensure_ascii=False).encode("utf-8")

        await asyncio.to_thread(self.path.parent.mkdir, parents=True, exist_ok=True)
        await self._acquire_lock()
        try:
            await asyncio.to_thread(self._write_atomic, payload)
        finally:
            await asyncio.to_thread(self._release_lock)
        self._last_modified = stamp

    def _write_atomic(self, payload: bytes) -> None:
        self._maybe_backup()
        with open(self.tmp_path, "wb") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        written = self.tmp_path.read_bytes()
        if written != payload:
            self.tmp_path.unlink(missing_ok=True)
            raise OSError(f"verification of {self.tmp_path} failed")
        os.replace(self.tmp_path, self.path)

    def _maybe_backup(self) -> None:
        now = self._clock()
        if self._last_backup_at is not None and now - self._last_backup_at < self.backup_interval:
            return
        try:
            current = self.path.read_bytes()
        except FileNotFoundError:
            return
        try:
            json.loads(current)
        except ValueError:
            log.warning("Current watchlist does not parse, keeping the previous backup")
            return
        self.backup_path.write_bytes(current)
        self._last_backup_at = now
        log.debug("Refreshed watchlist backup %s", self.backup_path)

    # ------------------------------------------------------------------
    # lock file
    # ------------------------------------------------------------------

    async def _acquire_lock(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.lock_timeout
        while not await asyncio.to_thread(self._try_create_lock):
            if loop.time() >= deadline:
                log.warning("Lock %s held for over %.1fs, breaking it as stale", self.lock_path, self.lock_timeout)
                await asyncio.to_thread(self._break_lock)
                if await asyncio.to_thread(self._try_create_lock):
                    return
                raise TimeoutError(f"could not acquire {self.lock_path}")
            await asyncio.sleep(self.lock_poll_interval)

    def _try_create_lock(self) -> bool:
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        token = str(os.getpid())
        with os.fdopen(fd, "w") as fh:
            fh.write(token)
        self._lock_token = token
        return True

    def _release_lock(self) -> None:
        if self._lock_token is None:
            return
        token, self._lock_token = self._lock_token, None
        try:
            owner = self.lock_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return
        if owner != token:
            log.warning("Lock %s is now owned by %s, leaving it in place", self.lock_path, owner)
            return
        self.lock_path.unlink(missing_ok=True)

    def _break_lock(self) -> None:
        try:
            owner = self.lock_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return
        log.warning("Removing stale lock %s (owner pid %s)", self.lock_path, owner or "unknown")
        self.lock_path.unlink(missing_ok=True)
