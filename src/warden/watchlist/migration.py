from __future__ import annotations

import logging
from typing import Any, Dict

from .models import SCHEMA_VERSION, record_key

log = logging.getLogger("warden.migration")

# camelCase name in the version 2 flat layout -> current name
_ENTRY_FIELDS = {
    "userId": "scope_user",
    "guildId": "scope_community",
    "reason": "reason",
    "addedBy": "added_by",
    "addedAt": "added_at",
    "lastSeen": "last_seen",
    "watchLevel": "watch_tier",
    "active": "active",
    "removedAt": "removed_at",
    "username": "username",
    "discriminator": "discriminator",
}

_NOTE_FIELDS = {
    "id": "id",
    "moderatorId": "moderator_id",
    "note": "text",
    "timestamp": "timestamp",
}

_INCIDENT_FIELDS = {
    "id": "id",
    "type": "kind",
    "description": "description",
    "timestamp": "timestamp",
    "channelId": "channel_ref",
    "messageId": "message_ref",
    "severity": "severity",
    "metadata": "metadata",
}

_SETTINGS_FIELDS = {
    "enabled": "enabled",
    "defaultWatchLevel": "default_watch_tier",
    "autoNotifications": "auto_notifications",
    "reportIntervalHours": "report_interval_hours",
    "alertChannelId": "alert_channel_id",
}


def _rename(data: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
    return {new: data[old] for old, new in mapping.items() if old in data}


def is_legacy_entry(data: Any) -> bool:
    return isinstance(data, dict) and "userId" in data and "guildId" in data


def is_legacy_document(doc: Dict[str, Any]) -> bool:
    if "records" in doc:
        return False
    return "_metadata" in doc or "_settings" in doc or any(is_legacy_entry(v) for v in doc.values())


def migrate_entry(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert one version 2 entry to the current record layout."""
    entry = _rename(data, _ENTRY_FIELDS)
    for name in ("scope_user", "scope_community", "added_by"):
        if name in entry and entry[name] is not None:
            entry[name] = str(entry[name])
    notes = data.get("notes")
    if isinstance(notes, list):
        entry["notes"] = [_rename(n, _NOTE_FIELDS) if isinstance(n, dict) else n for n in notes]
    incidents = data.get("incidents")
    if isinstance(incidents, list):
        entry["incidents"] = [_rename(i, _INCIDENT_FIELDS) if isinstance(i, dict) else i for i in incidents]
    return entry


def migrate_legacy_document(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Migrate the flat version 2 document to the current layout.

    Version 2 kept entries at the top level next to ``_metadata`` and
    ``_settings``. Keys starting with ``_`` are bookkeeping; every other
    value that is not an entry is dropped.
    """
    old_meta = doc.get("_metadata") if isinstance(doc.get("_metadata"), dict) else {}
    metadata = {
        "schema_version": SCHEMA_VERSION,
        "created_at": old_meta.get("created"),
        "last_modified_at": old_meta.get("lastModified"),
    }

    settings: Dict[str, Any] = {}
    old_settings = doc.get("_settings") if isinstance(doc.get("_settings"), dict) else {}
    for community, values in old_settings.items():
        if isinstance(values, dict):
            settings[str(community)] = _rename(values, _SETTINGS_FIELDS)

    records: Dict[str, Any] = {}
    skipped = 0
    for key, value in doc.items():
        if key.startswith("_"):
            continue
        if not is_legacy_entry(value):
            skipped += 1
            continue
        entry = migrate_entry(value)
        records[record_key(entry["scope_user"], entry["scope_community"])] = entry

    if skipped:
        log.warning("Skipped %d unrecognised entries during migration", skipped)
    log.info(
        "Migrated legacy watchlist (version %s): %d records, %d communities with settings",
        old_meta.get("version", "2.0"),
        len(records),
        len(settings),
    )
    return {"metadata": metadata, "settings": settings, "records": records}


__all__ = [
    "is_legacy_document",
    "is_legacy_entry",
    "migrate_entry",
    "migrate_legacy_document",
]
