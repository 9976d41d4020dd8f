import pytest

from warden.config import load_settings
from warden.errors import AlertDeliveryError
from warden.testing.fakes import FakeClient, FakeGuild, FakeTextChannel
from warden.watchlist.alerts import (
    TIER_COLOURS,
    AlertPayload,
    DiscordAlertSink,
    RecordSummary,
    build_alert_embed,
    system_fields,
)
from warden.watchlist.models import CommunitySettings, Incident, Record, UserHistory, WatchTier, utcnow

USER = "123456789012345678"
GUILD = "111222333444555666"


def make_payload(**overrides) -> AlertPayload:
    record = Record(
        scope_user=USER,
        scope_community=GUILD,
        reason="phishing links",
        added_by="876543210987654321",
        added_at=utcnow(),
        watch_tier=WatchTier.ALERT,
        username="Mallory",
    )
    fields = dict(
        event_kind="message",
        scope_user=USER,
        scope_community=GUILD,
        username="Mallory",
        watch_tier=WatchTier.ALERT,
        is_global=False,
        summary=RecordSummary.from_record(record),
        severity=3,
        operation_id="abc123",
        context={"channel_ref": "555", "content_preview": "hello", "jump_url": "https://example.invalid/m/1"},
    )
    fields.update(overrides)
    return AlertPayload(**fields)


def field_map(embed):
    return {f.name: f.value for f in embed.fields}


class TestEmbed:
    def test_core_fields(self):
        embed = build_alert_embed(make_payload())

        fields = field_map(embed)
        assert embed.colour.value == TIER_COLOURS[WatchTier.ALERT]
        assert fields["User"] == f"Mallory ({USER})"
        assert fields["Severity"] == "3 (Medium)"
        assert fields["Channel"] == "<#555>"
        assert fields["Content"] == "```hello```"
        assert fields["Reason"] == "phishing links"
        assert embed.footer.text == "Watchlist • Op: abc123"
        assert "History" not in fields

    def test_global_history_and_incident(self):
        incident = Incident(
            id="inc1",
            kind="timeout",
            description="timed out",
            timestamp=utcnow(),
            severity=4,
            metadata={"operation_id": "abc123", "duration": "10m"},
        )
        history = UserHistory(total_entries=2, total_incidents=3, total_notes=1, watch_tiers={"alert": 2})

        embed = build_alert_embed(
            make_payload(is_global=True, incident=incident, history=history, watch_tier=WatchTier.ACTION, context={})
        )

        fields = field_map(embed)
        assert embed.title.startswith("🔍 🌐")
        assert fields["Scope"] == "🌐 Global"
        assert "**Incidents:** 3" in fields["History"]
        assert fields["Watch tiers"] == "alert: 2"
        assert fields["Incident"] == "`inc1`"
        assert fields["Metadata"] == "**duration:** 10m"
        assert "Channel" not in fields

    def test_system_fields(self):
        fields = dict(system_fields(make_payload(event_kind="ban", severity=5)))
        assert fields["Event"] == "ban"
        assert fields["Severity"] == "5 (Critical)"


class TestDiscordAlertSink:
    @pytest.mark.asyncio
    async def test_falls_back_to_named_channel(self):
        guild = FakeGuild()
        mod_logs = FakeTextChannel()
        guild.text_channels.append(mod_logs)
        sink = DiscordAlertSink(FakeClient(guilds=[guild]), lambda _: CommunitySettings())

        await sink.send_alert(make_payload())

        assert len(mod_logs.sent) == 1
        assert mod_logs.sent[0]["embed"].footer.text.endswith("abc123")

    @pytest.mark.asyncio
    async def test_configured_channel_wins(self):
        guild = FakeGuild()
        mod_logs = FakeTextChannel()
        alerts = FakeTextChannel(id=42, name="watchlist-alerts")
        guild.text_channels.extend([mod_logs, alerts])
        sink = DiscordAlertSink(FakeClient(guilds=[guild]), lambda _: CommunitySettings(alert_channel_id="42"))

        await sink.send_alert(make_payload())

        assert len(alerts.sent) == 1
        assert mod_logs.sent == []

    @pytest.mark.asyncio
    async def test_missing_channel_raises(self):
        sink = DiscordAlertSink(FakeClient(guilds=[FakeGuild()]), lambda _: CommunitySettings())
        with pytest.raises(AlertDeliveryError):
            await sink.send_alert(make_payload())

    @pytest.mark.asyncio
    async def test_unknown_guild_raises(self):
        sink = DiscordAlertSink(FakeClient(), lambda _: CommunitySettings())
        with pytest.raises(AlertDeliveryError):
            await sink.send_alert(make_payload())

    @pytest.mark.asyncio
    async def test_system_alert_to_ops_channel(self):
        ops = FakeTextChannel(id=77, name="ops")
        sink = DiscordAlertSink(FakeClient(channels=[ops]), lambda _: CommunitySettings(), ops_channel_id=77)

        await sink.send_system_alert("title", "desc", [("User", "Mallory")])

        embed = ops.sent[0]["embed"]
        assert embed.title == "title"
        assert field_map(embed) == {"User": "Mallory"}

    @pytest.mark.asyncio
    async def test_system_alert_without_ops_channel_is_logged(self):
        sink = DiscordAlertSink(FakeClient(), lambda _: CommunitySettings())
        await sink.send_system_alert("title", "desc")

    @pytest.mark.asyncio
    async def test_system_alert_missing_ops_channel_raises(self):
        sink = DiscordAlertSink(FakeClient(), lambda _: CommunitySettings(), ops_channel_id=77)
        with pytest.raises(AlertDeliveryError):
            await sink.send_system_alert("title", "desc")


class TestSettings:
    def test_token_required(self, monkeypatch):
        monkeypatch.delenv("DISCORD_TOKEN", raising=False)
        with pytest.raises(RuntimeError):
            load_settings()

    def test_env_overrides_and_bad_values(self, monkeypatch):
        monkeypatch.setenv("DISCORD_TOKEN", "token")
        monkeypatch.setenv("NOTIFY_COOLDOWN_SECONDS", "60")
        monkeypatch.setenv("NOTIFY_MAX_PER_HOUR", "not-a-number")
        monkeypatch.setenv("AUTOWATCH_ENABLED", "off")
        monkeypatch.setenv("OPS_CHANNEL_ID", "77")

        settings = load_settings()

        assert settings.notify_cooldown_seconds == 60.0
        assert settings.notify_max_per_hour == 10
        assert settings.autowatch_enabled is False
        assert settings.ops_channel_id == 77
        assert settings.mod_logs_channel_name == "mod-logs"
