from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass
class RuntimeStats:
    started_at: float = field(default_factory=time.time)
    events_seen: int = 0
    incidents_recorded: int = 0
    alerts_sent: int = 0
    alerts_suppressed: int = 0
    alert_failures: int = 0
    auto_watch_added: int = 0

    def uptime_seconds(self) -> int:
        return int(time.time() - self.started_at)
