from datetime import timedelta
from types import SimpleNamespace

import discord
import pytest

from warden.cogs.watchlist_events import WatchlistEventsCog
from warden.testing.fakes import (
    FakeClient,
    FakeGuild,
    FakeMember,
    FakeMessage,
    FakeRole,
    FakeUser,
    FakeVoiceChannel,
    FakeVoiceState,
)
from warden.watchlist.autowatch import KeywordAutoWatch
from warden.watchlist.monitor import WatchlistMonitor

USER = "123456789012345678"
GUILD = "111222333444555666"
MOD = "876543210987654321"


class RecordingMonitor:
    def __init__(self):
        self.calls = []

    async def handle_join(self, scope_user, scope_community, context=None):
        self.calls.append(("join", scope_user, scope_community, context))

    async def handle_message(self, scope_user, scope_community, content, context=None):
        self.calls.append(("message", scope_user, scope_community, context))

    async def handle_action(self, scope_user, scope_community, action_kind, context=None):
        self.calls.append((action_kind, scope_user, scope_community, context))

    @property
    def kinds(self):
        return [c[0] for c in self.calls]


def make_bot(monitor, autowatch=None):
    return SimpleNamespace(
        monitor=monitor,
        autowatch=autowatch,
        settings=SimpleNamespace(autowatch_enabled=autowatch is not None),
        user=FakeClient().user,
    )


@pytest.fixture
def recorder():
    return RecordingMonitor()


@pytest.fixture
def cog(recorder):
    return WatchlistEventsCog(make_bot(recorder))


@pytest.mark.asyncio
async def test_join_and_leave(cog, recorder):
    member = FakeMember(name="Mallory")

    await cog.on_member_join(member)
    await cog.on_member_remove(member)

    assert recorder.kinds == ["join", "leave"]
    _, user, guild, ctx = recorder.calls[0]
    assert (user, guild) == (USER, GUILD)
    assert ctx.username == "Mallory"
    assert "account_created" in ctx.metadata


@pytest.mark.asyncio
async def test_bots_are_ignored(cog, recorder):
    bot_member = FakeMember(bot=True)

    await cog.on_member_join(bot_member)
    await cog.on_message(FakeMessage(author=bot_member))
    await cog.on_voice_state_update(bot_member, FakeVoiceState(), FakeVoiceState(FakeVoiceChannel()))

    assert recorder.calls == []


@pytest.mark.asyncio
async def test_message_carries_channel_and_jump_url(cog, recorder):
    message = FakeMessage(content="hello")

    await cog.on_message(message)

    kind, user, guild, ctx = recorder.calls[0]
    assert kind == "message"
    assert ctx.channel_ref == str(message.channel.id)
    assert ctx.message_ref == str(message.id)
    assert ctx.jump_url == message.jump_url


@pytest.mark.asyncio
async def test_direct_messages_are_ignored(cog, recorder):
    message = FakeMessage()
    message.guild = None

    await cog.on_message(message)

    assert recorder.calls == []


@pytest.mark.asyncio
async def test_ban(cog, recorder):
    await cog.on_member_ban(FakeGuild(), FakeUser())
    assert recorder.kinds == ["ban"]


@pytest.mark.asyncio
async def test_member_update_timeout_roles_and_nick(cog, recorder):
    guild = FakeGuild()
    keep = FakeRole(id=1, name="Member")
    old = FakeRole(id=2, name="Verified")
    new = FakeRole(id=3, name="Muted")
    until = discord.utils.utcnow() + timedelta(minutes=10)
    before = FakeMember(guild=guild, nick="old", roles=[keep, old])
    after = FakeMember(guild=guild, nick="new", roles=[keep, new], timed_out_until=until)

    await cog.on_member_update(before, after)

    assert recorder.kinds == ["timeout", "role_add", "role_remove", "nickname_change"]
    contexts = {c[0]: c[3] for c in recorder.calls}
    assert contexts["role_add"].description == "Roles added: Muted"
    assert contexts["role_remove"].description == "Roles removed: Verified"
    assert contexts["nickname_change"].metadata["before"] == "old"
    assert contexts["timeout"].metadata["timed_out_until"] == until.isoformat()


@pytest.mark.asyncio
async def test_member_update_without_changes(cog, recorder):
    role = FakeRole()
    await cog.on_member_update(FakeMember(roles=[role]), FakeMember(roles=[role]))
    assert recorder.calls == []


@pytest.mark.asyncio
async def test_voice_transitions(cog, recorder):
    member = FakeMember()
    lobby = FakeVoiceChannel(id=10, name="lobby")
    games = FakeVoiceChannel(id=11, name="games")

    await cog.on_voice_state_update(member, FakeVoiceState(), FakeVoiceState(lobby))
    await cog.on_voice_state_update(member, FakeVoiceState(lobby), FakeVoiceState(games))
    await cog.on_voice_state_update(member, FakeVoiceState(games), FakeVoiceState(games))
    await cog.on_voice_state_update(member, FakeVoiceState(games), FakeVoiceState())

    assert recorder.kinds == ["voice_join", "voice_move", "voice_leave"]
    assert recorder.calls[1][3].channel_ref == "11"
    assert recorder.calls[2][3].metadata["channel"] == "games"


@pytest.mark.asyncio
async def test_end_to_end_alert(registry, limiter, sink):
    await registry.add_record(USER, GUILD, "spam", MOD, watch_tier="action")
    cog = WatchlistEventsCog(make_bot(WatchlistMonitor(registry, limiter, sink)))

    await cog.on_member_ban(FakeGuild(), FakeUser(name="Mallory"))

    assert len(sink.alerts) == 1
    assert sink.alerts[0].event_kind == "ban"
    assert registry.get_record(USER, GUILD).username == "Mallory"


@pytest.mark.asyncio
async def test_message_feeds_autowatch(registry, limiter, sink, tmp_path):
    keywords = tmp_path / "keywords.txt"
    keywords.write_text("free nitro\n", encoding="utf-8")
    autowatch = KeywordAutoWatch(registry, keywords, sink)
    await autowatch.load()
    bot = make_bot(WatchlistMonitor(registry, limiter, sink), autowatch)
    cog = WatchlistEventsCog(bot)

    await cog.on_message(FakeMessage(content="FREE NITRO giveaway"))

    record = registry.get_global_record(USER)
    assert record is not None
    assert record.added_by == str(bot.user.id)
