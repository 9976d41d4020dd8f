"""Where watchlist alerts go.

``AlertSink`` is the port the monitor talks to. ``NullAlertSink`` drops
everything; ``DiscordAlertSink`` posts embeds into a community's alert
channel and system alerts into an operator channel.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, List, Mapping, Optional, Protocol, Sequence, Tuple, runtime_checkable

import discord

from ..errors import AlertDeliveryError
from .escalation import severity_label
from .models import CommunitySettings, Incident, Record, UserHistory, WatchTier, utcnow

log = logging.getLogger("warden.alerts")

Field = Tuple[str, str]

TIER_COLOURS = {
    WatchTier.OBSERVE: 0x3498DB,
    WatchTier.ALERT: 0xF39C12,
    WatchTier.ACTION: 0xE74C3C,
}

TIER_EMOJI = {
    WatchTier.OBSERVE: "👁️",
    WatchTier.ALERT: "⚠️",
    WatchTier.ACTION: "🚨",
}

SYSTEM_COLOUR = 0xE74C3C


@dataclass(frozen=True)
class RecordSummary:
    reason: str
    added_by: str
    added_at: datetime
    incident_total: int
    incidents_24h: int
    note_count: int

    @classmethod
    def from_record(cls, record: Record, now: Optional[datetime] = None) -> "RecordSummary":
        cutoff = (now or utcnow()) - timedelta(hours=24)
        return cls(
            reason=record.reason,
            added_by=record.added_by,
            added_at=record.added_at,
            incident_total=len(record.incidents),
            incidents_24h=sum(1 for i in record.incidents if i.timestamp > cutoff),
            note_count=len(record.notes),
        )


@dataclass(frozen=True)
class AlertPayload:
    event_kind: str
    scope_user: str
    scope_community: str
    username: str
    watch_tier: WatchTier
    is_global: bool
    summary: RecordSummary
    severity: int
    operation_id: str
    incident: Optional[Incident] = None
    history: UserHistory = field(default_factory=UserHistory)
    context: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class AlertSink(Protocol):
    async def send_alert(self, payload: AlertPayload) -> None:
        ...

    async def send_system_alert(self, title: str, description: str, fields: Sequence[Field] = ()) -> None:
        ...


class NullAlertSink:
    async def send_alert(self, payload: AlertPayload) -> None:
        log.debug("Dropping alert for %s in %s (no sink configured)", payload.scope_user, payload.scope_community)

    async def send_system_alert(self, title: str, description: str, fields: Sequence[Field] = ()) -> None:
        log.debug("Dropping system alert %r (no sink configured)", title)


def _describe_event(payload: AlertPayload) -> str:
    if payload.event_kind == "join":
        return "A watched user joined the server"
    if payload.event_kind == "message":
        return "A watched user sent a message"
    return f"A watched user was involved in an action: {payload.event_kind}"


def build_alert_embed(payload: AlertPayload) -> discord.Embed:
    tier = payload.watch_tier
    emoji = TIER_EMOJI[tier]
    scope = "🌐 Global" if payload.is_global else "🏠 Local"
    prefix = "🌐 " if payload.is_global else ""

    e = discord.Embed(
        title=f"🔍 {prefix}Watched user activity - {emoji} {tier.value.upper()}",
        description=_describe_event(payload),
        colour=TIER_COLOURS[tier],
        timestamp=utcnow(),
    )
    e.add_field(name="User", value=f"{payload.username} ({payload.scope_user})", inline=True)
    e.add_field(name="Watch tier", value=f"{emoji} {tier.value}", inline=True)
    e.add_field(name="Scope", value=scope, inline=True)
    e.add_field(name="Severity", value=f"{payload.severity} ({severity_label(payload.severity)})", inline=True)

    channel_ref = payload.context.get("channel_ref")
    if channel_ref:
        e.add_field(name="Channel", value=f"<#{channel_ref}>", inline=True)
    preview = payload.context.get("content_preview")
    if preview:
        e.add_field(name="Content", value=f"```{preview}```", inline=False)
    jump_url = payload.context.get("jump_url")
    if jump_url:
        e.add_field(name="Message", value=f"[Jump to message]({jump_url})", inline=True)

    history = payload.history
    if history.total_entries > 0:
        lines = [
            f"**Watched in:** {history.total_entries} scope(s)",
            f"**Incidents:** {history.total_incidents}",
            f"**Notes:** {history.total_notes}",
        ]
        e.add_field(name="History", value="\n".join(lines), inline=False)
        if history.watch_tiers:
            tiers = " • ".join(f"{name}: {count}" for name, count in history.watch_tiers.items())
            e.add_field(name="Watch tiers", value=tiers, inline=False)

    if payload.incident is not None:
        e.add_field(name="Incident", value=f"`{payload.incident.id}`", inline=True)
        extra = "\n".join(
            f"**{k}:** {v}" for k, v in payload.incident.metadata.items() if v is not None and k != "operation_id"
        )
        if extra:
            e.add_field(name="Metadata", value=extra[:1000], inline=False)

    summary = payload.summary
    e.add_field(name="Incidents (total)", value=str(summary.incident_total), inline=True)
    e.add_field(name="Incidents (24h)", value=str(summary.incidents_24h), inline=True)
    e.add_field(name="Notes", value=str(summary.note_count), inline=True)
    e.add_field(name="Reason", value=summary.reason[:1000], inline=False)
    e.add_field(name="Added by", value=f"<@{summary.added_by}>", inline=True)
    e.add_field(name="Added", value=summary.added_at.strftime("%Y-%m-%d"), inline=True)
    e.set_footer(text=f"Watchlist • Op: {payload.operation_id}")
    return e


class DiscordAlertSink:
    def __init__(
        self,
        bot: discord.Client,
        settings_for: Callable[[str], CommunitySettings],
        *,
        fallback_channel_name: str = "mod-logs",
        ops_channel_id: int = 0,
    ) -> None:
        self._bot = bot
        self._settings_for = settings_for
        self._fallback_channel_name = fallback_channel_name
        self._ops_channel_id = ops_channel_id

    def _alert_channel(self, scope_community: str) -> Optional[discord.abc.Messageable]:
        try:
            guild = self._bot.get_guild(int(scope_community))
        except ValueError:
            return None
        if guild is None:
            return None
        configured = self._settings_for(scope_community).alert_channel_id
        if configured:
            try:
                channel = guild.get_channel(int(configured))
            except ValueError:
                channel = None
            if channel is not None:
                return channel
            log.warning("Alert channel %s not found in %s, using #%s", configured, scope_community, self._fallback_channel_name)
        return discord.utils.get(guild.text_channels, name=self._fallback_channel_name)

    async def send_alert(self, payload: AlertPayload) -> None:
        channel = self._alert_channel(payload.scope_community)
        if channel is None:
            raise AlertDeliveryError(f"no alert channel for community {payload.scope_community}")
        await channel.send(embed=build_alert_embed(payload))

    async def send_system_alert(self, title: str, description: str, fields: Sequence[Field] = ()) -> None:
        if not self._ops_channel_id:
            log.info("System alert (no ops channel configured): %s - %s", title, description)
            return
        channel = self._bot.get_channel(self._ops_channel_id)
        if channel is None:
            raise AlertDeliveryError(f"ops channel {self._ops_channel_id} not found")
        e = discord.Embed(title=title, description=description, colour=SYSTEM_COLOUR, timestamp=utcnow())
        for name, value in fields:
            e.add_field(name=name, value=value[:1000], inline=False)
        await channel.send(embed=e)


def system_fields(payload: AlertPayload) -> List[Field]:
    return [
        ("User", f"{payload.username} ({payload.scope_user})"),
        ("Community", payload.scope_community),
        ("Event", payload.event_kind),
        ("Severity", f"{payload.severity} ({severity_label(payload.severity)})"),
        ("Reason", payload.summary.reason),
    ]
