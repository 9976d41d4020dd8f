from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from ..errors import DuplicateError, PersistenceError, ValidationError
from .escalation import severity_of
from .models import (
    GLOBAL_SCOPE,
    CommunityHistory,
    CommunitySettings,
    HistoryMarker,
    Incident,
    Note,
    OperationResult,
    Record,
    ReportRow,
    Store,
    UserHistory,
    WatchlistReport,
    WatchlistStats,
    WatchStatus,
    WatchTier,
    record_key,
    utcnow,
)
from .persistence import WatchlistFile
from .validation import (
    validate_incident,
    validate_new_record,
    validate_note,
    validate_settings_update,
)

log = logging.getLogger("warden.registry")

Rollback = Callable[[], None]


def _new_id() -> str:
    return uuid.uuid4().hex


class WatchlistRegistry:
    """Watch records keyed by (user, community), persisted through a WatchlistFile.

    Mutations return an ``OperationResult``. Invalid input and duplicates come
    back as ``success=False``; a failed save restores the in-memory state and
    re-raises ``PersistenceError``.

    Each mutation holds the registry lock from change through save (and
    rollback), so a snapshot written to disk only ever carries committed
    changes.
    """

    def __init__(self, storage: WatchlistFile, clock: Callable[[], datetime] = utcnow) -> None:
        self._storage = storage
        self._clock = clock
        self._store = Store()
        self._lock = asyncio.Lock()

    @property
    def store(self) -> Store:
        return self._store

    async def load(self) -> int:
        async with self._lock:
            self._store = await self._storage.load()
            return len(self._store.records)

    async def reload(self) -> int:
        count = await self.load()
        log.info("Watchlist reloaded (%d records)", count)
        return count

    async def _persist(self, rollback: Rollback) -> None:
        try:
            await self._storage.save(self._store)
        except PersistenceError:
            rollback()
            log.error("Watchlist save failed, change rolled back")
            raise

    # ------------------------------------------------------------------
    # mutations
    # ------------------------------------------------------------------

    async def add_record(
        self,
        scope_user: str,
        scope_community: str,
        reason: str,
        added_by: str,
        *,
        watch_tier: Union[WatchTier, str, None] = None,
        username: Optional[str] = None,
        discriminator: Optional[str] = None,
    ) -> OperationResult:
        checked = validate_new_record(
            scope_user, scope_community, reason, added_by, watch_tier, username, discriminator
        )
        warnings = checked.warning_messages()
        try:
            checked.raise_for_errors()
        except ValidationError as e:
            return OperationResult.failure(str(e), e.warnings)

        user = scope_user.strip()
        community = scope_community.strip()
        key = record_key(user, community)

        async with self._lock:
            existing = self._store.records.get(key)
            if existing is not None and existing.active:
                return OperationResult.failure(str(DuplicateError(key)), warnings, record=existing)

            if watch_tier is not None:
                tier = WatchTier.parse(watch_tier)
            elif community == GLOBAL_SCOPE:
                tier = WatchTier.ALERT
            else:
                tier = self.get_settings(community).default_watch_tier

            record = Record(
                scope_user=user,
                scope_community=community,
                reason=reason.strip(),
                added_by=added_by.strip(),
                added_at=self._clock(),
                watch_tier=tier,
                username=(username or "Unknown").strip() or "Unknown",
                discriminator=str(discriminator) if discriminator is not None else "0",
            )
            self._store.records[key] = record

            def rollback() -> None:
                if existing is None:
                    self._store.records.pop(key, None)
                else:
                    self._store.records[key] = existing

            await self._persist(rollback)
        log.info("Added %s to watchlist %s at tier %s", user, community, tier.value)
        return OperationResult(success=True, record=record, warnings=warnings)

    async def add_global_record(
        self,
        scope_user: str,
        reason: str,
        added_by: str,
        *,
        watch_tier: Union[WatchTier, str, None] = None,
        username: Optional[str] = None,
        discriminator: Optional[str] = None,
    ) -> OperationResult:
        return await self.add_record(
            scope_user,
            GLOBAL_SCOPE,
            reason,
            added_by,
            watch_tier=watch_tier,
            username=username,
            discriminator=discriminator,
        )

    async def remove_record(self, scope_user: str, scope_community: str) -> OperationResult:
        async with self._lock:
            record = self.get_record(scope_user, scope_community)
            if record is None:
                return OperationResult.failure("not found")
            if not record.active:
                return OperationResult.failure("already removed", record=record)

            record.active = False
            record.removed_at = self._clock()

            def rollback() -> None:
                record.active = True
                record.removed_at = None

            await self._persist(rollback)
        log.info("Removed %s from watchlist %s", scope_user, scope_community)
        return OperationResult(success=True, record=record)

    async def add_note(self, scope_user: str, scope_community: str, text: str, moderator_id: str) -> OperationResult:
        checked = validate_note(text, moderator_id)
        try:
            checked.raise_for_errors()
        except ValidationError as e:
            return OperationResult.failure(str(e), e.warnings)

        async with self._lock:
            record = self._require_active(scope_user, scope_community)
            if isinstance(record, OperationResult):
                return record

            note = Note(id=_new_id(), moderator_id=moderator_id.strip(), text=text.strip(), timestamp=self._clock())
            record.notes.append(note)
            await self._persist(lambda: record.notes.remove(note))
        return OperationResult(success=True, record=record, note=note, warnings=checked.warning_messages())

    async def add_incident(
        self,
        scope_user: str,
        scope_community: str,
        kind: str,
        description: str,
        *,
        channel_ref: Optional[str] = None,
        message_ref: Optional[str] = None,
        severity: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> OperationResult:
        checked = validate_incident(kind, description, severity)
        try:
            checked.raise_for_errors()
        except ValidationError as e:
            return OperationResult.failure(str(e), e.warnings)

        async with self._lock:
            record = self._require_active(scope_user, scope_community)
            if isinstance(record, OperationResult):
                return record

            now = self._clock()
            kind = kind.strip().lower()
            incident = Incident(
                id=_new_id(),
                kind=kind,
                description=description.strip(),
                timestamp=now,
                severity=severity if severity is not None else severity_of(kind),
                channel_ref=str(channel_ref) if channel_ref is not None else None,
                message_ref=str(message_ref) if message_ref is not None else None,
                metadata=dict(metadata or {}),
            )
            previous_seen = record.last_seen
            record.incidents.append(incident)
            record.last_seen = now

            def rollback() -> None:
                record.incidents.remove(incident)
                record.last_seen = previous_seen

            await self._persist(rollback)
        return OperationResult(success=True, record=record, incident=incident)

    async def set_watch_tier(
        self, scope_user: str, scope_community: str, tier: Union[WatchTier, str]
    ) -> OperationResult:
        try:
            new_tier = WatchTier.parse(tier)
        except ValueError as e:
            return OperationResult.failure(f"Invalid data: watch_tier: {e}")

        async with self._lock:
            record = self._require_active(scope_user, scope_community)
            if isinstance(record, OperationResult):
                return record
            if record.watch_tier is new_tier:
                return OperationResult(success=True, record=record)

            previous = record.watch_tier
            record.watch_tier = new_tier

            def rollback() -> None:
                record.watch_tier = previous

            await self._persist(rollback)
        log.info("Watch tier for %s in %s: %s -> %s", scope_user, scope_community, previous.value, new_tier.value)
        return OperationResult(success=True, record=record)

    async def update_user_info(
        self,
        scope_user: str,
        *,
        username: Optional[str] = None,
        discriminator: Optional[str] = None,
        last_seen: Optional[datetime] = None,
    ) -> bool:
        """Refresh display info on every active record of a user. Returns whether anything changed."""
        async with self._lock:
            saved: List[tuple] = []
            for record in self._store.records.values():
                if record.scope_user != scope_user or not record.active:
                    continue
                before = (record, record.username, record.discriminator, record.last_seen)
                changed = False
                if username and record.username != username:
                    record.username = username
                    changed = True
                if discriminator is not None and record.discriminator != str(discriminator):
                    record.discriminator = str(discriminator)
                    changed = True
                if last_seen is not None and record.last_seen != last_seen:
                    record.last_seen = last_seen
                    changed = True
                if changed:
                    saved.append(before)

            if not saved:
                return False

            def rollback() -> None:
                for record, name, disc, seen in saved:
                    record.username = name
                    record.discriminator = disc
                    record.last_seen = seen

            await self._persist(rollback)
        return True

    async def set_settings(self, scope_community: str, **partial: Any) -> OperationResult:
        checked = validate_settings_update(partial)
        try:
            checked.raise_for_errors()
        except ValidationError as e:
            return OperationResult.failure(str(e), e.warnings)

        async with self._lock:
            previous = self._store.settings.get(scope_community)
            merged = self.get_settings(scope_community).to_dict()
            merged.update(partial)
            settings = CommunitySettings.from_dict(merged)
            self._store.settings[scope_community] = settings

            def rollback() -> None:
                if previous is None:
                    self._store.settings.pop(scope_community, None)
                else:
                    self._store.settings[scope_community] = previous

            await self._persist(rollback)
        log.info("Updated watchlist settings for %s: %s", scope_community, ", ".join(sorted(partial)))
        return OperationResult(success=True, settings=settings)

    def _require_active(self, scope_user: str, scope_community: str) -> Union[Record, OperationResult]:
        record = self.get_record(scope_user, scope_community)
        if record is None:
            return OperationResult.failure("not found")
        if not record.active:
            return OperationResult.failure("record is not active", record=record)
        return record

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def get_record(self, scope_user: str, scope_community: str) -> Optional[Record]:
        return self._store.records.get(record_key(scope_user, scope_community))

    def get_active_record(self, scope_user: str, scope_community: str) -> Optional[Record]:
        record = self.get_record(scope_user, scope_community)
        if record is None or not record.active:
            return None
        return record

    def is_watched(self, scope_user: str, scope_community: str) -> bool:
        return self.get_active_record(scope_user, scope_community) is not None

    def get_global_record(self, scope_user: str) -> Optional[Record]:
        return self.get_active_record(scope_user, GLOBAL_SCOPE)

    def list_community(self, scope_community: str) -> List[Record]:
        records = [
            r for r in self._store.records.values() if r.active and r.scope_community == scope_community
        ]
        return sorted(records, key=lambda r: r.added_at)

    def list_global(self) -> List[Record]:
        return self.list_community(GLOBAL_SCOPE)

    def watch_status(self, scope_user: str, scope_community: str) -> WatchStatus:
        community_record = self.get_active_record(scope_user, scope_community)
        global_record = self.get_global_record(scope_user)
        tiers = [r.watch_tier for r in (community_record, global_record) if r is not None]
        highest = max(tiers, key=lambda t: t.rank) if tiers else None
        return WatchStatus(community_record=community_record, global_record=global_record, highest_tier=highest)

    def user_history(self, scope_user: str) -> UserHistory:
        records = sorted(
            (r for r in self._store.records.values() if r.scope_user == scope_user and r.active),
            key=lambda r: r.added_at,
        )
        history = UserHistory(total_entries=len(records))
        for record in records:
            history.communities.append(
                CommunityHistory(
                    scope_community=record.scope_community,
                    reason=record.reason,
                    watch_tier=record.watch_tier,
                    added_at=record.added_at,
                    added_by=record.added_by,
                    incident_count=len(record.incidents),
                    note_count=len(record.notes),
                )
            )
            history.total_incidents += len(record.incidents)
            history.total_notes += len(record.notes)
            tier = record.watch_tier.value
            history.watch_tiers[tier] = history.watch_tiers.get(tier, 0) + 1
        if records:
            oldest, newest = records[0], records[-1]
            history.oldest = HistoryMarker(oldest.scope_community, oldest.added_at, oldest.reason)
            history.newest = HistoryMarker(newest.scope_community, newest.added_at, newest.reason)
        return history

    def get_settings(self, scope_community: str) -> CommunitySettings:
        return self._store.settings.get(scope_community) or CommunitySettings()

    def get_stats(self, scope_community: Optional[str] = None) -> WatchlistStats:
        cutoff = self._clock() - timedelta(hours=24)
        stats = WatchlistStats()
        for record in self._store.records.values():
            if scope_community is not None and record.scope_community != scope_community:
                continue
            stats.total += 1
            if not record.active:
                stats.inactive += 1
                continue
            stats.active += 1
            stats.watch_tiers[record.watch_tier.value] += 1
            stats.total_incidents += len(record.incidents)
            stats.total_notes += len(record.notes)
            stats.recent_incidents_24h += sum(1 for i in record.incidents if i.timestamp > cutoff)
        return stats

    def generate_report(self, scope_community: str) -> WatchlistReport:
        now = self._clock()
        day_ago = now - timedelta(hours=24)
        week_ago = now - timedelta(days=7)
        stats = self.get_stats(scope_community)

        rows: List[ReportRow] = []
        active_week = 0
        for record in self.list_community(scope_community):
            if record.last_seen is not None and record.last_seen > week_ago:
                active_week += 1
            rows.append(
                ReportRow(
                    scope_user=record.scope_user,
                    username=record.username,
                    watch_tier=record.watch_tier,
                    reason=record.reason,
                    added_at=record.added_at,
                    last_seen=record.last_seen,
                    incident_count=len(record.incidents),
                    recent_incidents=sum(1 for i in record.incidents if i.timestamp > day_ago),
                )
            )

        return WatchlistReport(
            scope_community=scope_community,
            generated_at=now,
            total_watched=stats.active,
            watch_tiers=dict(stats.watch_tiers),
            recent_incidents_24h=stats.recent_incidents_24h,
            active_users_week=active_week,
            rows=rows,
        )
