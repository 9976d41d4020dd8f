from __future__ import annotations

from datetime import datetime
from typing import Any

import discord


class FakeTextChannel:
    """Fake Discord TextChannel that records what is sent to it."""

    def __init__(self, id: int = 555666777888999000, name: str = "mod-logs"):
        self.id = id
        self.name = name
        self.mention = f"<#{id}>"
        self.guild = None  # Will be set by context
        self.sent: list[dict[str, Any]] = []

    async def send(self, content: str | None = None, **kwargs) -> None:
        self.sent.append({"content": content, **kwargs})

    def __str__(self):
        return self.name

    def __repr__(self):
        return f"<FakeTextChannel id={self.id} name={self.name}>"


class FakeVoiceChannel:
    """Fake Discord VoiceChannel for testing."""

    def __init__(self, id: int = 666777888999000111, name: str = "voice"):
        self.id = id
        self.name = name

    def __repr__(self):
        return f"<FakeVoiceChannel id={self.id} name={self.name}>"


class FakeRole:
    def __init__(self, id: int = 777888999000111222, name: str = "Member"):
        self.id = id
        self.name = name

    def __repr__(self):
        return f"<FakeRole id={self.id} name={self.name}>"


class FakeGuild:
    """Fake Discord Guild for testing."""

    def __init__(self, id: int = 111222333444555666, name: str = "TestGuild"):
        self.id = id
        self.name = name
        self.member_count = 100
        self.text_channels: list[FakeTextChannel] = []

    def __str__(self):
        return self.name

    def __repr__(self):
        return f"<FakeGuild id={self.id} name={self.name}>"

    def get_channel(self, channel_id: int) -> FakeTextChannel | None:
        for channel in self.text_channels:
            if channel.id == channel_id:
                return channel
        return None


class FakeMember:
    """Fake Discord Member for testing."""

    def __init__(
        self,
        id: int = 123456789012345678,
        name: str = "TestUser",
        discriminator: str = "0",
        guild: FakeGuild | None = None,
        nick: str | None = None,
        roles: list[FakeRole] | None = None,
        bot: bool = False,
        timed_out_until: datetime | None = None,
    ):
        self.id = id
        self.name = name
        self.discriminator = discriminator
        self.display_name = nick or name
        self.nick = nick
        self.mention = f"<@{id}>"
        self.bot = bot
        self.guild = guild or FakeGuild()
        self.roles = list(roles or [])
        self.timed_out_until = timed_out_until
        self.created_at = discord.utils.utcnow()

    def __str__(self):
        return self.name

    def __repr__(self):
        return f"<FakeMember id={self.id} name={self.name}>"


class FakeUser:
    """Fake Discord User for testing."""

    def __init__(self, id: int = 123456789012345678, name: str = "TestUser", discriminator: str = "0", bot: bool = False):
        self.id = id
        self.name = name
        self.discriminator = discriminator
        self.mention = f"<@{id}>"
        self.bot = bot
        self.created_at = discord.utils.utcnow()

    def __repr__(self):
        return f"<FakeUser id={self.id} name={self.name}>"


class FakeMessage:
    """Fake Discord Message for testing."""

    def __init__(
        self,
        content: str = "Test message",
        author: FakeMember | None = None,
        channel: FakeTextChannel | None = None,
        guild: FakeGuild | None = None,
        id: int = 999888777666555444,
    ):
        self.content = content
        self.author = author or FakeMember()
        self.channel = channel or FakeTextChannel(name="general")
        self.guild = guild if guild is not None else self.author.guild
        self.id = id
        self.jump_url = f"https://discord.com/channels/{self.guild.id}/{self.channel.id}/{id}"

    def __str__(self):
        return self.content


class FakeVoiceState:
    def __init__(self, channel: FakeVoiceChannel | None = None):
        self.channel = channel


class FakeClient:
    """Just enough of discord.Client for alert delivery."""

    def __init__(self, guilds: list[FakeGuild] | None = None, channels: list[FakeTextChannel] | None = None):
        self.user = FakeUser(id=100200300400500600, name="Warden", bot=True)
        self._guilds = {g.id: g for g in (guilds or [])}
        self._channels = {c.id: c for c in (channels or [])}

    def get_guild(self, guild_id: int) -> FakeGuild | None:
        return self._guilds.get(guild_id)

    def get_channel(self, channel_id: int) -> FakeTextChannel | None:
        return self._channels.get(channel_id)
