from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

log = logging.getLogger("warden.rate_limiter")

NotifyKey = Tuple[str, str]

HOUR_SECONDS = 3600.0
IDLE_SECONDS = 24 * HOUR_SECONDS


@dataclass(frozen=True)
class NotifyPolicy:
    cooldown_seconds: float = 300.0
    max_per_hour: int = 10
    sweep_every_seconds: float = 3600.0


@dataclass
class _KeyState:
    last_notified_at: float
    stamps: List[float] = field(default_factory=list)


class NotificationRateLimiter:
    """Per (user, community) cooldown plus a sliding hourly cap on alerts."""

    def __init__(self, policy: Optional[NotifyPolicy] = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._policy = policy or NotifyPolicy()
        self._clock = clock
        self._state: Dict[NotifyKey, _KeyState] = {}
        self._stop = asyncio.Event()
        self._runner: Optional[asyncio.Task[None]] = None

    @property
    def policy(self) -> NotifyPolicy:
        return self._policy

    def permits_notification(self, key: NotifyKey) -> bool:
        state = self._state.get(key)
        if state is None:
            return True
        now = self._clock()
        if now - state.last_notified_at < self._policy.cooldown_seconds:
            return False
        state.stamps = [t for t in state.stamps if now - t < HOUR_SECONDS]
        return len(state.stamps) < self._policy.max_per_hour

    def record_notification(self, key: NotifyKey) -> None:
        now = self._clock()
        state = self._state.get(key)
        if state is None:
            self._state[key] = _KeyState(last_notified_at=now, stamps=[now])
            return
        state.last_notified_at = now
        state.stamps.append(now)

    def sweep(self) -> int:
        """Drop state idle for a day and expired hourly stamps. Returns keys removed."""
        now = self._clock()
        removed = 0
        for key in list(self._state):
            state = self._state[key]
            if now - state.last_notified_at > IDLE_SECONDS:
                del self._state[key]
                removed += 1
                continue
            state.stamps = [t for t in state.stamps if now - t < HOUR_SECONDS]
        if removed:
            log.debug("Rate limiter sweep removed %d idle keys", removed)
        return removed

    def tracked_keys(self) -> int:
        return len(self._state)

    def start(self) -> None:
        if self._runner and not self._runner.done():
            return
        self._stop.clear()
        self._runner = asyncio.create_task(self._run(), name="warden-notify-sweeper")
        log.info(
            "Notification rate limiter started (cooldown=%ss max_per_hour=%s sweep_every=%ss)",
            self._policy.cooldown_seconds,
            self._policy.max_per_hour,
            self._policy.sweep_every_seconds,
        )

    async def stop(self) -> None:
        self._stop.set()
        if self._runner:
            await self._runner
            self._runner = None
        log.info("Notification rate limiter stopped")

    async def _run(self) -> None:
        interval = max(0.01, float(self._policy.sweep_every_seconds))
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                self.sweep()
