import pytest

from warden.watchlist.escalation import (
    EscalationLevel,
    RiskLevel,
    escalation_level,
    notification_severity,
    severity_label,
    severity_of,
    should_notify,
)
from warden.watchlist.models import WatchTier


class TestSeverity:
    @pytest.mark.parametrize(
        "kind,expected",
        [
            ("ban", 5),
            ("permanent_ban", 5),
            ("timeout", 4),
            ("role_remove", 4),
            ("nickname_change", 3),
            ("voice_move", 2),
            ("join", 1),
            ("voice_leave", 1),
        ],
    )
    def test_known_kinds(self, kind, expected):
        assert severity_of(kind) == expected

    def test_lookup_is_case_insensitive(self):
        assert severity_of("KICK") == 5
        assert severity_of("  Mute ") == 4

    def test_unknown_kind_defaults_to_two(self):
        assert severity_of("sticker_spam") == 2

    def test_presence_events_notify_at_medium(self):
        assert severity_of("join") == 1
        assert notification_severity("join") == 3
        assert notification_severity("message") == 3
        assert notification_severity("leave") == 1
        assert notification_severity("ban") == 5

    def test_labels(self):
        assert severity_label(5) == "Critical"
        assert severity_label(1) == "Minimal"
        assert severity_label(9) == "Unknown"


class TestShouldNotify:
    def test_observe_never_notifies(self):
        for severity in range(1, 6):
            assert should_notify(WatchTier.OBSERVE, "ban", severity) is False

    def test_alert_needs_medium_or_higher(self):
        assert should_notify(WatchTier.ALERT, "voice_move", 2) is False
        assert should_notify(WatchTier.ALERT, "nickname_change", 3) is True
        assert should_notify("alert", "timeout", 4) is True

    def test_action_needs_low_or_higher(self):
        assert should_notify(WatchTier.ACTION, "leave", 1) is False
        assert should_notify(WatchTier.ACTION, "voice_move", 2) is True

    def test_deterministic(self):
        results = {should_notify(WatchTier.ALERT, "mute", 4) for _ in range(20)}
        assert results == {True}


class TestEscalationLevel:
    def test_initial(self):
        assert escalation_level(0, RiskLevel.LOW) is EscalationLevel.INITIAL

    def test_elevated(self):
        assert escalation_level(1, "low") is EscalationLevel.ELEVATED
        assert escalation_level(0, "medium") is EscalationLevel.ELEVATED
        assert escalation_level(0, RiskLevel.LOW, recent_detections=1) is EscalationLevel.ELEVATED

    def test_moderate(self):
        assert escalation_level(2, "low") is EscalationLevel.MODERATE
        assert escalation_level(0, "high") is EscalationLevel.MODERATE
        assert escalation_level(0, "low", recent_detections=2) is EscalationLevel.MODERATE

    def test_severe(self):
        assert escalation_level(0, "critical") is EscalationLevel.SEVERE
        assert escalation_level(0, "low", recent_detections=3) is EscalationLevel.SEVERE
        assert escalation_level(10, RiskLevel.CRITICAL, 5) is EscalationLevel.SEVERE
