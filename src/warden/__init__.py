"""Warden: watched-user tracking and moderator escalation for Discord communities."""

__version__ = "1.0.0"
