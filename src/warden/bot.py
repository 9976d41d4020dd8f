from __future__ import annotations

import logging

import discord
from discord.ext import commands

from .config import Settings
from .services.stats import RuntimeStats
from .watchlist.alerts import DiscordAlertSink
from .watchlist.autowatch import KeywordAutoWatch
from .watchlist.monitor import WatchlistMonitor
from .watchlist.persistence import WatchlistFile
from .watchlist.rate_limiter import NotificationRateLimiter, NotifyPolicy
from .watchlist.registry import WatchlistRegistry

log = logging.getLogger("warden.bot")


class WardenBot(commands.Bot):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.members = True
        intents.voice_states = True
        intents.message_content = bool(settings.message_content_intent)

        log.info("INTENTS: guilds=%s members=%s message_content=%s", intents.guilds, intents.members, intents.message_content)

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            allowed_mentions=discord.AllowedMentions(everyone=False, roles=False, users=True),
            help_command=None,
        )

        self.settings = settings
        self.stats = RuntimeStats()

        self.watchlist_file = WatchlistFile(
            settings.watchlist_path,
            max_retries=settings.watchlist_max_retries,
            retry_delay=settings.watchlist_retry_delay_seconds,
            backup_interval=settings.watchlist_backup_interval_seconds,
            lock_timeout=settings.watchlist_lock_timeout_seconds,
        )
        self.watchlist = WatchlistRegistry(self.watchlist_file)
        self.rate_limiter = NotificationRateLimiter(
            NotifyPolicy(
                cooldown_seconds=settings.notify_cooldown_seconds,
                max_per_hour=settings.notify_max_per_hour,
                sweep_every_seconds=settings.rate_limit_sweep_seconds,
            )
        )
        self.alert_sink = DiscordAlertSink(
            self,
            self.watchlist.get_settings,
            fallback_channel_name=settings.mod_logs_channel_name,
            ops_channel_id=settings.ops_channel_id,
        )
        self.monitor = WatchlistMonitor(self.watchlist, self.rate_limiter, self.alert_sink, self.stats)
        self.autowatch = KeywordAutoWatch(
            self.watchlist, settings.autowatch_keywords_path, self.alert_sink, self.stats
        )

    async def setup_hook(self) -> None:
        count = await self.watchlist.load()
        log.info("Watchlist ready with %d records", count)

        if self.settings.autowatch_enabled and not self.intents.message_content:
            log.warning("AUTOWATCH_ENABLED but message_content intent is disabled; only usernames will be checked")
        if self.settings.autowatch_enabled:
            await self.autowatch.load()

        self.rate_limiter.start()

        # Loaded defensively so a broken cog does not take the bot down with it.
        try:
            from .cogs.watchlist_events import WatchlistEventsCog

            await self.add_cog(WatchlistEventsCog(self))
            log.info("Loaded cog: WatchlistEventsCog")
        except Exception:
            log.exception("Failed to load cog: WatchlistEventsCog")

    async def close(self) -> None:
        try:
            await self.rate_limiter.stop()
            log.info(
                "Shutting down after %ss: events=%d incidents=%d alerts_sent=%d suppressed=%d failures=%d auto_watched=%d",
                self.stats.uptime_seconds(),
                self.stats.events_seen,
                self.stats.incidents_recorded,
                self.stats.alerts_sent,
                self.stats.alerts_suppressed,
                self.stats.alert_failures,
                self.stats.auto_watch_added,
            )
        finally:
            await super().close()
