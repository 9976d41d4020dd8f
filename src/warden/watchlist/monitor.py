from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from ..errors import PersistenceError
from ..services.stats import RuntimeStats
from .alerts import AlertPayload, AlertSink, NullAlertSink, RecordSummary, system_fields
from .escalation import notification_severity, severity_of, should_notify
from .models import Incident, Record, WatchTier, utcnow
from .rate_limiter import NotificationRateLimiter
from .registry import WatchlistRegistry

log = logging.getLogger("warden.monitor")

PREVIEW_LENGTH = 200
SYSTEM_ALERT_SEVERITY = 3


@dataclass(frozen=True)
class EventContext:
    """What the event source knows about an event beyond who and where."""
    username: Optional[str] = None
    discriminator: Optional[str] = None
    channel_ref: Optional[str] = None
    message_ref: Optional[str] = None
    jump_url: Optional[str] = None
    description: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class EventOutcome:
    watched: bool = False
    tier: Optional[WatchTier] = None
    is_global: bool = False
    incident: Optional[Incident] = None
    severity: int = 0
    notified: bool = False
    suppressed_reason: Optional[str] = None
    operation_id: str = ""


def preview(content: str) -> str:
    if not content:
        return "[no text content]"
    if len(content) > PREVIEW_LENGTH:
        return content[:PREVIEW_LENGTH] + "..."
    return content


def _default_description(kind: str, content: Optional[str]) -> str:
    if kind == "join":
        return "Joined the server"
    if kind == "message":
        return f"Message sent: {preview(content or '')}"
    return f"Action performed: {kind}"


class WatchlistMonitor:
    """Entry points for community events about possibly-watched users.

    Every handler resolves the user's community record first and the global
    record second, records an incident, and decides whether moderators are
    told. Alert sink and persistence failures are logged, never raised.
    """

    def __init__(
        self,
        registry: WatchlistRegistry,
        limiter: NotificationRateLimiter,
        sink: Optional[AlertSink] = None,
        stats: Optional[RuntimeStats] = None,
    ) -> None:
        self._registry = registry
        self._limiter = limiter
        self._sink: AlertSink = sink or NullAlertSink()
        self._stats = stats or RuntimeStats()

    @property
    def stats(self) -> RuntimeStats:
        return self._stats

    async def handle_join(
        self, scope_user: str, scope_community: str, context: Optional[EventContext] = None
    ) -> EventOutcome:
        return await self._handle(scope_user, scope_community, "join", context)

    async def handle_message(
        self, scope_user: str, scope_community: str, content: str, context: Optional[EventContext] = None
    ) -> EventOutcome:
        return await self._handle(scope_user, scope_community, "message", context, content=content)

    async def handle_action(
        self, scope_user: str, scope_community: str, action_kind: str, context: Optional[EventContext] = None
    ) -> EventOutcome:
        return await self._handle(scope_user, scope_community, action_kind, context)

    def _resolve(self, scope_user: str, scope_community: str) -> tuple[Optional[Record], bool]:
        record = self._registry.get_active_record(scope_user, scope_community)
        if record is not None:
            return record, False
        record = self._registry.get_global_record(scope_user)
        return record, record is not None

    async def _handle(
        self,
        scope_user: str,
        scope_community: str,
        action_kind: str,
        context: Optional[EventContext],
        content: Optional[str] = None,
    ) -> EventOutcome:
        ctx = context or EventContext()
        operation_id = uuid.uuid4().hex[:12]
        self._stats.events_seen += 1

        settings = self._registry.get_settings(scope_community)
        if not settings.enabled:
            return EventOutcome(suppressed_reason="disabled", operation_id=operation_id)

        record, is_global = self._resolve(scope_user, scope_community)
        if record is None:
            return EventOutcome(operation_id=operation_id)

        kind = action_kind.strip().lower()
        severity = severity_of(kind)
        outcome = EventOutcome(
            watched=True,
            tier=record.watch_tier,
            is_global=is_global,
            severity=severity,
            operation_id=operation_id,
        )

        try:
            await self._registry.update_user_info(
                scope_user,
                username=ctx.username,
                discriminator=ctx.discriminator,
                last_seen=utcnow(),
            )
        except PersistenceError:
            log.exception("[%s] Could not persist last_seen for %s", operation_id, scope_user)

        if kind != "message" or record.watch_tier is not WatchTier.OBSERVE:
            outcome.incident = await self._record_incident(record, kind, severity, ctx, content, operation_id)

        await self._maybe_notify(record, kind, is_global, scope_community, outcome, ctx, content, settings.auto_notifications)
        return outcome

    async def _record_incident(
        self,
        record: Record,
        kind: str,
        severity: int,
        ctx: EventContext,
        content: Optional[str],
        operation_id: str,
    ) -> Optional[Incident]:
        metadata = dict(ctx.metadata)
        metadata["operation_id"] = operation_id
        if kind == "message":
            metadata["content_preview"] = preview(content or "")
        try:
            result = await self._registry.add_incident(
                record.scope_user,
                record.scope_community,
                kind,
                ctx.description or _default_description(kind, content),
                channel_ref=ctx.channel_ref,
                message_ref=ctx.message_ref,
                severity=severity,
                metadata=metadata,
            )
        except PersistenceError:
            log.exception("[%s] Failed to record %s incident for %s", operation_id, kind, record.scope_user)
            return None
        if not result.success:
            log.warning("[%s] Incident for %s rejected: %s", operation_id, record.scope_user, result.error)
            return None
        self._stats.incidents_recorded += 1
        return result.incident

    async def _maybe_notify(
        self,
        record: Record,
        kind: str,
        is_global: bool,
        scope_community: str,
        outcome: EventOutcome,
        ctx: EventContext,
        content: Optional[str],
        auto_notifications: bool,
    ) -> None:
        payload = AlertPayload(
            event_kind=kind,
            scope_user=record.scope_user,
            scope_community=scope_community,
            username=record.username,
            watch_tier=record.watch_tier,
            is_global=is_global,
            summary=RecordSummary.from_record(record),
            severity=outcome.severity,
            operation_id=outcome.operation_id,
            incident=outcome.incident,
            history=self._registry.user_history(record.scope_user),
            context={
                "channel_ref": ctx.channel_ref,
                "jump_url": ctx.jump_url,
                "content_preview": preview(content) if kind == "message" and content is not None else None,
            },
        )

        key = (record.scope_user, scope_community)
        if not should_notify(record.watch_tier, kind, notification_severity(kind)):
            outcome.suppressed_reason = "below_threshold"
        elif not auto_notifications:
            outcome.suppressed_reason = "notifications_disabled"
        elif not self._limiter.permits_notification(key):
            outcome.suppressed_reason = "rate_limited"
            self._stats.alerts_suppressed += 1
            log.debug("[%s] Alert for %s in %s rate limited", outcome.operation_id, *key)
        else:
            try:
                await self._sink.send_alert(payload)
            except Exception:
                outcome.suppressed_reason = "delivery_failed"
                self._stats.alert_failures += 1
                log.exception("[%s] Failed to deliver watchlist alert for %s", outcome.operation_id, record.scope_user)
            else:
                self._limiter.record_notification(key)
                outcome.notified = True
                self._stats.alerts_sent += 1

        if is_global and (kind == "join" or (kind != "message" and outcome.severity >= SYSTEM_ALERT_SEVERITY)):
            title = "🌐 Globally watched user joined" if kind == "join" else "🚨 High-severity action on global watchlist"
            try:
                await self._sink.send_system_alert(
                    title,
                    f"{record.username} ({record.scope_user}) in community {scope_community}",
                    system_fields(payload),
                )
            except Exception:
                log.exception("[%s] Failed to send system alert for %s", outcome.operation_id, record.scope_user)
