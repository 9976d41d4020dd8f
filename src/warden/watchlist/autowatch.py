from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import FrozenSet, List, Optional, Union

from ..errors import PersistenceError
from ..services.stats import RuntimeStats
from .alerts import AlertSink, NullAlertSink
from .models import Record, WatchTier
from .registry import WatchlistRegistry

log = logging.getLogger("warden.autowatch")


def read_keywords(path: Path) -> FrozenSet[str]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return frozenset()
    return frozenset(line.strip().lower() for line in text.splitlines() if line.strip())


class KeywordAutoWatch:
    """Puts authors of messages matching a keyword list on the global watchlist."""

    def __init__(
        self,
        registry: WatchlistRegistry,
        keywords_path: Union[str, Path],
        sink: Optional[AlertSink] = None,
        stats: Optional[RuntimeStats] = None,
    ) -> None:
        self._registry = registry
        self._path = Path(keywords_path)
        self._sink: AlertSink = sink or NullAlertSink()
        self._stats = stats or RuntimeStats()
        self._keywords: FrozenSet[str] = frozenset()

    @property
    def keywords(self) -> FrozenSet[str]:
        return self._keywords

    async def load(self) -> int:
        self._keywords = await asyncio.to_thread(read_keywords, self._path)
        log.info("Loaded %d auto-watch keywords from %s", len(self._keywords), self._path)
        return len(self._keywords)

    def matches(self, content: str, username: str, nickname: Optional[str] = None) -> List[str]:
        """Where a keyword was found, in the order message, username, nickname."""
        found: List[str] = []
        content_l = (content or "").lower()
        username_l = (username or "").lower()
        nickname_l = (nickname or "").lower()
        for keyword in sorted(self._keywords):
            if keyword in content_l and "message" not in found:
                found.append("message")
            if keyword in username_l and f"username ({username})" not in found:
                found.append(f"username ({username})")
            if nickname_l and keyword in nickname_l and f"nickname ({nickname})" not in found:
                found.append(f"nickname ({nickname})")
        return found

    async def handle_message(
        self,
        scope_user: str,
        content: str,
        username: str,
        added_by: str,
        nickname: Optional[str] = None,
    ) -> Optional[Record]:
        if not self._keywords:
            return None
        found = self.matches(content, username, nickname)
        if not found:
            return None
        if self._registry.get_global_record(scope_user) is not None:
            return None

        reason = f"[AUTO] Watched keyword detected in {', '.join(found)}"
        try:
            result = await self._registry.add_global_record(
                scope_user,
                reason[:500],
                added_by,
                watch_tier=WatchTier.OBSERVE,
                username=username[:32] if username else None,
            )
        except PersistenceError:
            log.exception("Could not persist auto-watch entry for %s", scope_user)
            return None
        if not result.success:
            log.warning("Auto-watch for %s rejected: %s", scope_user, result.error)
            return None

        self._stats.auto_watch_added += 1
        log.info("Auto-watched %s (%s): %s", username, scope_user, ", ".join(found))
        try:
            await self._sink.send_system_alert(
                "👀 Automatically added to the global watchlist",
                f"{username} ({scope_user}) matched a watched keyword.",
                [("Detected in", "\n".join(found)), ("Tier", WatchTier.OBSERVE.value)],
            )
        except Exception:
            log.exception("Failed to announce auto-watch entry for %s", scope_user)
        return result.record
