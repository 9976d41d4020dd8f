from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import ValidationError
from .models import GLOBAL_SCOPE, WatchTier, to_iso, utcnow

log = logging.getLogger("warden.validation")

MAX_REASON_LENGTH = 500
MAX_NOTE_LENGTH = 1000
MAX_DESCRIPTION_LENGTH = 2000
MIN_REASON_HINT = 3
MAX_USERNAME_LENGTH = 32

_SNOWFLAKE = re.compile(r"^\d{17,20}$")
_DISCRIMINATOR = re.compile(r"^(0|\d{4})$")

SETTINGS_KEYS = {
    "enabled",
    "default_watch_tier",
    "auto_notifications",
    "report_interval_hours",
    "alert_channel_id",
}


@dataclass
class ValidationIssue:
    """One finding against a field."""
    field: str
    message: str
    severity: str  # "error" or "warning"

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class ValidationResult:
    """Result of validation with errors and warnings."""

    def __init__(self) -> None:
        self.errors: List[ValidationIssue] = []
        self.warnings: List[ValidationIssue] = []

    def add_error(self, field: str, message: str) -> None:
        self.errors.append(ValidationIssue(field, message, "error"))

    def add_warning(self, field: str, message: str) -> None:
        self.warnings.append(ValidationIssue(field, message, "warning"))

    def warning_messages(self) -> List[str]:
        return [str(w) for w in self.warnings]

    def raise_for_errors(self) -> None:
        """Raise ValidationError if any error was collected."""
        if self.errors:
            raise ValidationError([str(e) for e in self.errors], self.warning_messages())


def _check_id(result: ValidationResult, field: str, value: Any, *, allow_global: bool = False) -> None:
    if not isinstance(value, str) or not value.strip():
        result.add_error(field, "is required")
        return
    if allow_global and value == GLOBAL_SCOPE:
        return
    if not _SNOWFLAKE.match(value):
        result.add_warning(field, "does not look like a Discord ID")


def _check_text(result: ValidationResult, field: str, value: Any, max_length: int) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        result.add_error(field, "is required")
        return None
    text = value.strip()
    if len(text) > max_length:
        result.add_error(field, f"must be at most {max_length} characters")
        return None
    return text


def validate_new_record(
    scope_user: Any,
    scope_community: Any,
    reason: Any,
    added_by: Any,
    watch_tier: Any = None,
    username: Any = None,
    discriminator: Any = None,
) -> ValidationResult:
    result = ValidationResult()
    _check_id(result, "scope_user", scope_user)
    _check_id(result, "scope_community", scope_community, allow_global=True)
    _check_id(result, "added_by", added_by)

    text = _check_text(result, "reason", reason, MAX_REASON_LENGTH)
    if text is not None and len(text) < MIN_REASON_HINT:
        result.add_warning("reason", "is very short")

    if watch_tier is not None:
        try:
            WatchTier.parse(watch_tier)
        except ValueError as e:
            result.add_error("watch_tier", str(e))

    if username is not None and (not isinstance(username, str) or len(username) > MAX_USERNAME_LENGTH):
        result.add_error("username", f"must be a string of at most {MAX_USERNAME_LENGTH} characters")

    if discriminator is not None and not _DISCRIMINATOR.match(str(discriminator)):
        result.add_warning("discriminator", "is not a 4-digit tag or 0")
    return result


def validate_note(text: Any, moderator_id: Any) -> ValidationResult:
    result = ValidationResult()
    _check_text(result, "text", text, MAX_NOTE_LENGTH)
    _check_id(result, "moderator_id", moderator_id)
    return result


def validate_incident(kind: Any, description: Any, severity: Any = None) -> ValidationResult:
    result = ValidationResult()
    if not isinstance(kind, str) or not kind.strip():
        result.add_error("kind", "is required")
    _check_text(result, "description", description, MAX_DESCRIPTION_LENGTH)
    if severity is not None and (
        isinstance(severity, bool) or not isinstance(severity, int) or not 1 <= severity <= 5
    ):
        result.add_error("severity", "must be an integer between 1 and 5")
    return result


def validate_settings_update(partial: Dict[str, Any]) -> ValidationResult:
    result = ValidationResult()
    for key, value in partial.items():
        if key not in SETTINGS_KEYS:
            result.add_error(key, "is not a known setting")
        elif key in ("enabled", "auto_notifications") and not isinstance(value, bool):
            result.add_error(key, "must be a boolean")
        elif key == "default_watch_tier":
            try:
                WatchTier.parse(value)
            except ValueError as e:
                result.add_error(key, str(e))
        elif key == "report_interval_hours":
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                result.add_error(key, "must be a positive integer")
        elif key == "alert_channel_id" and value is not None and not isinstance(value, str):
            result.add_error(key, "must be a string or null")
    return result


def repair_record_dict(key: str, data: Dict[str, Any]) -> List[str]:
    """Fill in defects that older or hand-edited files commonly carry.

    Mutates ``data`` in place and returns a description of each fix.
    """
    fixes: List[str] = []
    for name in ("notes", "incidents"):
        if not isinstance(data.get(name), list):
            data[name] = []
            fixes.append(f"{key}: reset {name}")
    if not isinstance(data.get("active"), bool):
        data["active"] = True
        fixes.append(f"{key}: defaulted active")
    if not data.get("added_at"):
        data["added_at"] = to_iso(utcnow())
        fixes.append(f"{key}: stamped added_at")
    if not data.get("watch_tier"):
        data["watch_tier"] = WatchTier.OBSERVE.value
        fixes.append(f"{key}: defaulted watch_tier")
    if data.get("active") is False and not data.get("removed_at"):
        data["removed_at"] = to_iso(utcnow())
        fixes.append(f"{key}: stamped removed_at")
    for fix in fixes:
        log.warning("Auto-fixed record %s", fix)
    return fixes
