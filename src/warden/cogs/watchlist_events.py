from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import discord
from discord.ext import commands

from ..watchlist.monitor import EventContext

log = logging.getLogger("warden.cogs.watchlist_events")


def _member_context(member: Any, **extra: Any) -> EventContext:
    metadata: Dict[str, Any] = dict(extra.pop("metadata", {}) or {})
    created_at = getattr(member, "created_at", None)
    if created_at is not None:
        metadata.setdefault("account_created", created_at.isoformat())
    return EventContext(
        username=getattr(member, "name", None),
        discriminator=str(getattr(member, "discriminator", "0") or "0"),
        metadata=metadata,
        **extra,
    )


class WatchlistEventsCog(commands.Cog):
    """Feeds member, message and voice events into the watchlist monitor."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot  # type: ignore[assignment]
        self.monitor = bot.monitor
        self.autowatch = bot.autowatch if bot.settings.autowatch_enabled else None

    async def _action(self, member: Any, guild: Any, kind: str, ctx: Optional[EventContext] = None) -> None:
        await self.monitor.handle_action(str(member.id), str(guild.id), kind, ctx or _member_context(member))

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        if member.bot:
            return
        await self.monitor.handle_join(str(member.id), str(member.guild.id), _member_context(member))

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.guild is None or message.author.bot:
            return
        author = message.author
        ctx = _member_context(
            author,
            channel_ref=str(message.channel.id),
            message_ref=str(message.id),
            jump_url=getattr(message, "jump_url", None),
        )
        await self.monitor.handle_message(str(author.id), str(message.guild.id), message.content or "", ctx)

        if self.autowatch is not None:
            me = self.bot.user
            await self.autowatch.handle_message(
                str(author.id),
                message.content or "",
                author.name,
                str(me.id) if me is not None else "0",
                nickname=getattr(author, "nick", None),
            )

    @commands.Cog.listener()
    async def on_member_ban(self, guild: discord.Guild, user: discord.User) -> None:
        await self._action(user, guild, "ban")

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member) -> None:
        if member.bot:
            return
        await self._action(member, member.guild, "leave")

    @commands.Cog.listener()
    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        if after.bot:
            return
        guild = after.guild

        timed_out_until = getattr(after, "timed_out_until", None)
        if timed_out_until is not None and timed_out_until != getattr(before, "timed_out_until", None):
            ctx = _member_context(
                after,
                description=f"Timed out until {timed_out_until.isoformat()}",
                metadata={"timed_out_until": timed_out_until.isoformat()},
            )
            await self._action(after, guild, "timeout", ctx)

        b = {r.id for r in before.roles}
        a = {r.id for r in after.roles}
        added = [r.name for r in after.roles if r.id in (a - b)]
        removed = [r.name for r in before.roles if r.id in (b - a)]
        if added:
            ctx = _member_context(after, description=f"Roles added: {', '.join(added)}"[:2000], metadata={"roles": ", ".join(added)})
            await self._action(after, guild, "role_add", ctx)
        if removed:
            ctx = _member_context(after, description=f"Roles removed: {', '.join(removed)}"[:2000], metadata={"roles": ", ".join(removed)})
            await self._action(after, guild, "role_remove", ctx)

        if before.nick != after.nick:
            ctx = _member_context(
                after,
                description=f"Nickname changed: {before.nick or '(none)'} -> {after.nick or '(none)'}",
                metadata={"before": before.nick, "after": after.nick},
            )
            await self._action(after, guild, "nickname_change", ctx)

    @commands.Cog.listener()
    async def on_voice_state_update(
        self, member: discord.Member, before: discord.VoiceState, after: discord.VoiceState
    ) -> None:
        if member.bot:
            return
        if before.channel is None and after.channel is not None:
            kind, channel = "voice_join", after.channel
        elif before.channel is not None and after.channel is None:
            kind, channel = "voice_leave", before.channel
        elif before.channel is not None and after.channel is not None and before.channel.id != after.channel.id:
            kind, channel = "voice_move", after.channel
        else:
            return
        ctx = _member_context(member, channel_ref=str(channel.id), metadata={"channel": channel.name})
        await self._action(member, member.guild, kind, ctx)
