from __future__ import annotations

import os
from dataclasses import dataclass


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _get_str(name: str, default: str) -> str:
    return os.getenv(name, default).strip() or default


@dataclass(frozen=True)
class Settings:
    token: str
    log_level: str = "INFO"

    # Watchlist file
    watchlist_path: str = "data/watchlist.json"
    watchlist_max_retries: int = 3
    watchlist_retry_delay_seconds: float = 1.0
    watchlist_backup_interval_seconds: float = 300.0
    watchlist_lock_timeout_seconds: float = 10.0

    # Alert pacing per (user, community)
    notify_cooldown_seconds: float = 300.0
    notify_max_per_hour: int = 10
    rate_limit_sweep_seconds: float = 3600.0

    # Where alerts go when a community has no alert channel configured
    mod_logs_channel_name: str = "mod-logs"
    ops_channel_id: int = 0

    autowatch_enabled: bool = True
    autowatch_keywords_path: str = "data/watchlist_keywords.txt"

    # Message previews and keyword auto-watch need message content intent.
    message_content_intent: bool = True


def load_settings() -> Settings:
    token = os.getenv("DISCORD_TOKEN", "").strip()
    if not token:
        raise RuntimeError("DISCORD_TOKEN is required")
    return Settings(
        token=token,
        log_level=_get_str("LOG_LEVEL", "INFO"),
        watchlist_path=_get_str("WATCHLIST_PATH", "data/watchlist.json"),
        watchlist_max_retries=_get_int("WATCHLIST_MAX_RETRIES", 3),
        watchlist_retry_delay_seconds=_get_float("WATCHLIST_RETRY_DELAY_SECONDS", 1.0),
        watchlist_backup_interval_seconds=_get_float("WATCHLIST_BACKUP_INTERVAL_SECONDS", 300.0),
        watchlist_lock_timeout_seconds=_get_float("WATCHLIST_LOCK_TIMEOUT_SECONDS", 10.0),
        notify_cooldown_seconds=_get_float("NOTIFY_COOLDOWN_SECONDS", 300.0),
        notify_max_per_hour=_get_int("NOTIFY_MAX_PER_HOUR", 10),
        rate_limit_sweep_seconds=_get_float("RATE_LIMIT_SWEEP_SECONDS", 3600.0),
        mod_logs_channel_name=_get_str("MOD_LOGS_CHANNEL_NAME", "mod-logs"),
        ops_channel_id=_get_int("OPS_CHANNEL_ID", 0),
        autowatch_enabled=_get_bool("AUTOWATCH_ENABLED", True),
        autowatch_keywords_path=_get_str("AUTOWATCH_KEYWORDS_PATH", "data/watchlist_keywords.txt"),
        message_content_intent=_get_bool("MESSAGE_CONTENT_INTENT", True),
    )
