"""Severity and escalation rules for watched-user activity.

Pure functions only; callers decide what to do with the answers.
"""
from __future__ import annotations

from enum import Enum
from typing import Union

from .models import WatchTier

DEFAULT_SEVERITY = 2

SEVERITY_BY_KIND = {
    "ban": 5,
    "kick": 5,
    "permanent_ban": 5,
    "timeout": 4,
    "mute": 4,
    "warning": 4,
    "role_remove": 4,
    "message_delete": 3,
    "nickname_change": 3,
    "role_add": 3,
    "channel_restriction": 3,
    "voice_disconnect": 2,
    "voice_move": 2,
    "reaction_remove": 2,
    "join": 1,
    "leave": 1,
    "message": 1,
    "voice_join": 1,
    "voice_leave": 1,
}

# A watched user arriving or speaking is worth telling alert and action
# tiers about even though the event itself is harmless.
PRESENCE_KINDS = frozenset({"join", "message"})
PRESENCE_NOTIFY_SEVERITY = 3

SEVERITY_LABELS = {
    1: "Minimal",
    2: "Low",
    3: "Medium",
    4: "High",
    5: "Critical",
}


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EscalationLevel(Enum):
    INITIAL = "initial"
    ELEVATED = "elevated"
    MODERATE = "moderate"
    SEVERE = "severe"


def severity_of(action_kind: str) -> int:
    """Severity 1..5 of an action kind; unknown kinds are 2."""
    if not isinstance(action_kind, str):
        return DEFAULT_SEVERITY
    return SEVERITY_BY_KIND.get(action_kind.strip().lower(), DEFAULT_SEVERITY)


def notification_severity(action_kind: str) -> int:
    """Severity used when deciding whether to notify about ``action_kind``."""
    severity = severity_of(action_kind)
    if isinstance(action_kind, str) and action_kind.strip().lower() in PRESENCE_KINDS:
        return max(severity, PRESENCE_NOTIFY_SEVERITY)
    return severity


def should_notify(watch_tier: Union[WatchTier, str], action_kind: str, severity: int) -> bool:
    """observe never notifies; alert needs severity >= 3; action needs >= 2."""
    tier = WatchTier.parse(watch_tier)
    if tier is WatchTier.OBSERVE:
        return False
    if tier is WatchTier.ALERT:
        return severity >= 3
    return severity >= 2


def escalation_level(
    prior_warning_count: int,
    risk: Union[RiskLevel, str],
    recent_detections: int = 0,
) -> EscalationLevel:
    risk = RiskLevel(risk.lower()) if isinstance(risk, str) else risk
    if risk is RiskLevel.CRITICAL or recent_detections >= 3:
        return EscalationLevel.SEVERE
    if risk is RiskLevel.HIGH or recent_detections >= 2 or prior_warning_count >= 2:
        return EscalationLevel.MODERATE
    if risk is RiskLevel.MEDIUM or recent_detections >= 1 or prior_warning_count >= 1:
        return EscalationLevel.ELEVATED
    return EscalationLevel.INITIAL


def severity_label(severity: int) -> str:
    return SEVERITY_LABELS.get(severity, "Unknown")
