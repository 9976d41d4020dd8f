from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

GLOBAL_SCOPE = "GLOBAL"
SCHEMA_VERSION = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def parse_iso(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        parsed = datetime.fromisoformat(raw)
    else:
        raise ValueError(f"not a timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_optional_iso(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return parse_iso(value)


def record_key(scope_user: str, scope_community: str) -> str:
    return f"{scope_community}_{scope_user}"


class WatchTier(Enum):
    """Monitoring intensity for a watched user, lightest first."""

    OBSERVE = "observe"
    ALERT = "alert"
    ACTION = "action"

    @property
    def rank(self) -> int:
        return _TIER_RANKS[self]

    @classmethod
    def parse(cls, value: Any) -> "WatchTier":
        if isinstance(value, WatchTier):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        valid = ", ".join(t.value for t in cls)
        raise ValueError(f"watch_tier must be one of: {valid}")


_TIER_RANKS = {WatchTier.OBSERVE: 0, WatchTier.ALERT: 1, WatchTier.ACTION: 2}

# Older files stored incident severity as a word.
_LEGACY_SEVERITIES = {"low": 2, "medium": 3, "high": 4, "critical": 5}


def _coerce_severity(value: Any) -> int:
    if isinstance(value, bool):
        return 2
    if isinstance(value, int):
        return max(1, min(5, value))
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw.isdigit():
            return max(1, min(5, int(raw)))
        return _LEGACY_SEVERITIES.get(raw, 2)
    return 2


def _require_str(data: dict[str, Any], name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} is required and must be a string")
    return value


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


@dataclass
class Note:
    id: str
    moderator_id: str
    text: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "moderator_id": self.moderator_id,
            "text": self.text,
            "timestamp": to_iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Note":
        if not isinstance(data, dict):
            raise ValueError("note must be an object")
        return cls(
            id=_require_str(data, "id"),
            moderator_id=_require_str(data, "moderator_id"),
            text=_require_str(data, "text"),
            timestamp=parse_iso(data.get("timestamp")),
        )


@dataclass
class Incident:
    id: str
    kind: str
    description: str
    timestamp: datetime
    severity: int
    channel_ref: Optional[str] = None
    message_ref: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "description": self.description,
            "timestamp": to_iso(self.timestamp),
            "channel_ref": self.channel_ref,
            "message_ref": self.message_ref,
            "severity": self.severity,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Incident":
        if not isinstance(data, dict):
            raise ValueError("incident must be an object")
        metadata = data.get("metadata")
        return cls(
            id=_require_str(data, "id"),
            kind=_require_str(data, "kind"),
            description=_require_str(data, "description"),
            timestamp=parse_iso(data.get("timestamp")),
            severity=_coerce_severity(data.get("severity")),
            channel_ref=_optional_str(data.get("channel_ref")),
            message_ref=_optional_str(data.get("message_ref")),
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
        )


@dataclass
class Record:
    """One watch entry for a user in a community (or the global scope)."""

    scope_user: str
    scope_community: str
    reason: str
    added_by: str
    added_at: datetime
    watch_tier: WatchTier
    active: bool = True
    last_seen: Optional[datetime] = None
    removed_at: Optional[datetime] = None
    username: str = "Unknown"
    discriminator: str = "0"
    notes: list[Note] = field(default_factory=list)
    incidents: list[Incident] = field(default_factory=list)

    @property
    def key(self) -> str:
        return record_key(self.scope_user, self.scope_community)

    @property
    def is_global(self) -> bool:
        return self.scope_community == GLOBAL_SCOPE

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope_user": self.scope_user,
            "scope_community": self.scope_community,
            "reason": self.reason,
            "added_by": self.added_by,
            "added_at": to_iso(self.added_at),
            "last_seen": to_iso(self.last_seen),
            "watch_tier": self.watch_tier.value,
            "active": self.active,
            "removed_at": to_iso(self.removed_at),
            "username": self.username,
            "discriminator": self.discriminator,
            "notes": [n.to_dict() for n in self.notes],
            "incidents": [i.to_dict() for i in self.incidents],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Record":
        if not isinstance(data, dict):
            raise ValueError("record must be an object")
        active = data.get("active", True)
        if not isinstance(active, bool):
            raise ValueError("active must be a boolean")
        notes = data.get("notes") or []
        incidents = data.get("incidents") or []
        if not isinstance(notes, list) or not isinstance(incidents, list):
            raise ValueError("notes and incidents must be lists")
        return cls(
            scope_user=_require_str(data, "scope_user"),
            scope_community=_require_str(data, "scope_community"),
            reason=_require_str(data, "reason"),
            added_by=_require_str(data, "added_by"),
            added_at=parse_iso(data["added_at"]) if data.get("added_at") else utcnow(),
            last_seen=_parse_optional_iso(data.get("last_seen")),
            watch_tier=WatchTier.parse(data.get("watch_tier", WatchTier.OBSERVE.value)),
            active=active,
            removed_at=_parse_optional_iso(data.get("removed_at")),
            username=str(data.get("username") or "Unknown"),
            discriminator=str(data.get("discriminator") or "0"),
            notes=[Note.from_dict(n) for n in notes],
            incidents=[Incident.from_dict(i) for i in incidents],
        )


@dataclass
class CommunitySettings:
    enabled: bool = True
    default_watch_tier: WatchTier = WatchTier.OBSERVE
    auto_notifications: bool = True
    report_interval_hours: int = 24
    alert_channel_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "default_watch_tier": self.default_watch_tier.value,
            "auto_notifications": self.auto_notifications,
            "report_interval_hours": self.report_interval_hours,
            "alert_channel_id": self.alert_channel_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CommunitySettings":
        if not isinstance(data, dict):
            raise ValueError("settings must be an object")
        defaults = cls()
        return cls(
            enabled=bool(data.get("enabled", defaults.enabled)),
            default_watch_tier=WatchTier.parse(data.get("default_watch_tier", defaults.default_watch_tier)),
            auto_notifications=bool(data.get("auto_notifications", defaults.auto_notifications)),
            report_interval_hours=int(data.get("report_interval_hours", defaults.report_interval_hours)),
            alert_channel_id=_optional_str(data.get("alert_channel_id")),
        )


@dataclass
class StoreMetadata:
    schema_version: int = SCHEMA_VERSION
    created_at: datetime = field(default_factory=utcnow)
    last_modified_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "created_at": to_iso(self.created_at),
            "last_modified_at": to_iso(self.last_modified_at),
        }


@dataclass
class Store:
    metadata: StoreMetadata = field(default_factory=StoreMetadata)
    settings: dict[str, CommunitySettings] = field(default_factory=dict)
    records: dict[str, Record] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "settings": {k: v.to_dict() for k, v in self.settings.items()},
            "records": {k: v.to_dict() for k, v in self.records.items()},
        }


# ---------------------------------------------------------------------------
# Results and read models
# ---------------------------------------------------------------------------


@dataclass
class OperationResult:
    success: bool
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    record: Optional[Record] = None
    note: Optional[Note] = None
    incident: Optional[Incident] = None
    settings: Optional[CommunitySettings] = None

    @classmethod
    def failure(cls, error: str, warnings: Optional[list[str]] = None, record: Optional[Record] = None) -> "OperationResult":
        return cls(success=False, error=error, warnings=list(warnings or []), record=record)


@dataclass(frozen=True)
class HistoryMarker:
    scope_community: str
    added_at: datetime
    reason: str


@dataclass(frozen=True)
class CommunityHistory:
    scope_community: str
    reason: str
    watch_tier: WatchTier
    added_at: datetime
    added_by: str
    incident_count: int
    note_count: int


@dataclass
class UserHistory:
    total_entries: int = 0
    communities: list[CommunityHistory] = field(default_factory=list)
    total_incidents: int = 0
    total_notes: int = 0
    watch_tiers: dict[str, int] = field(default_factory=dict)
    oldest: Optional[HistoryMarker] = None
    newest: Optional[HistoryMarker] = None


@dataclass(frozen=True)
class WatchStatus:
    community_record: Optional[Record]
    global_record: Optional[Record]
    highest_tier: Optional[WatchTier]

    @property
    def on_any_watchlist(self) -> bool:
        return self.community_record is not None or self.global_record is not None


@dataclass
class WatchlistStats:
    total: int = 0
    active: int = 0
    inactive: int = 0
    watch_tiers: dict[str, int] = field(default_factory=lambda: {t.value: 0 for t in WatchTier})
    total_incidents: int = 0
    total_notes: int = 0
    recent_incidents_24h: int = 0


@dataclass(frozen=True)
class ReportRow:
    scope_user: str
    username: str
    watch_tier: WatchTier
    reason: str
    added_at: datetime
    last_seen: Optional[datetime]
    incident_count: int
    recent_incidents: int


@dataclass
class WatchlistReport:
    scope_community: str
    generated_at: datetime
    total_watched: int
    watch_tiers: dict[str, int]
    recent_incidents_24h: int
    active_users_week: int
    rows: list[ReportRow] = field(default_factory=list)
