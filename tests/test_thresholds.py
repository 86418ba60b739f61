"""Tests for threshold and preference parsing, validation and defaults."""
import pytest
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import yaml
from alerts.thresholds import ThresholdStore, parse_configuration, merge_configuration
from alerts.preferences import PreferencesStore, parse_preferences
from models.enums import AlertSeverity, AlertType, NotificationChannel, ThresholdOperator
from utils.errors import ValidationError


# ── Alert configuration ─────────────────────────────────

def test_default_configuration():
    config = ThresholdStore().get("u1")
    assert [t.value for t in config.drawdown_limits] == [5, 10]
    assert config.drawdown_limits[1].severity == AlertSeverity.CRITICAL
    assert config.drawdown_limits[1].suspend_strategy is True
    assert config.performance_milestones[0].metric == "profitFactor"
    assert config.market_condition_thresholds.volume_change == 50
    assert config.statistical_significance_settings.minimum_trades == 30
    assert config.global_settings.max_alerts_per_day == 10
    assert config.global_settings.auto_resolve_after_days == 7


def test_get_returns_copies():
    store = ThresholdStore()
    store.get("u1").global_settings.enable_alerts = False
    assert store.get("u1").global_settings.enable_alerts is True


def test_parse_full_rule():
    config = parse_configuration({"drawdown_limits": [{
        "id": "dd", "metric": "currentDrawdown", "operator": "greater_than", "value": 8,
        "severity": "High", "notification_channels": ["InApp", "SMS"], "strategy_id": "s1",
    }]})
    rule = config.drawdown_limits[0]
    assert rule.operator == ThresholdOperator.GREATER_THAN
    assert rule.notification_channels == [NotificationChannel.IN_APP, NotificationChannel.SMS]
    assert rule.applies_to("s1") and not rule.applies_to("s2")


@pytest.mark.parametrize("data", [
    {"drawdown_limits": [{"id": "dd", "metric": "maxDrawdown", "value": 0}]},
    {"drawdown_limits": [{"id": "dd", "metric": "maxDrawdown", "value": 150}]},
    {"drawdown_limits": [{"id": "dd", "metric": "winRate", "value": 5}]},
    {"drawdown_limits": [{"id": "dd", "metric": "maxDrawdown", "value": 5, "operator": "approx"}]},
    {"drawdown_limits": [{"id": "dd", "metric": "maxDrawdown", "value": 5, "notification_channels": ["Fax"]}]},
    {"drawdown_limits": [{"id": "dd", "metric": "maxDrawdown", "value": 5, "severity": "Urgent"}]},
    {"drawdown_limits": [{"metric": "maxDrawdown", "value": 5}]},
    {"performance_milestones": [{"id": "m", "metric": "profitFactor", "value": "lots"}]},
    {"market_condition_thresholds": {"volatility_change": -1}},
    {"statistical_significance_settings": {"minimum_trades": -3}},
    {"statistical_significance_settings": {"required_confidence": 120}},
    {"global_settings": {"max_alerts_per_day": 0}},
    {"surprise": {}},
])
def test_invalid_configuration(data):
    with pytest.raises(ValidationError):
        parse_configuration(data)


def test_duplicate_threshold_ids():
    with pytest.raises(ValidationError) as exc:
        parse_configuration({
            "drawdown_limits": [{"id": "x", "metric": "maxDrawdown", "value": 5}],
            "performance_milestones": [{"id": "x", "metric": "profitFactor", "value": 2}],
        })
    assert "duplicate" in str(exc.value)


def test_validation_collects_all_errors():
    with pytest.raises(ValidationError) as exc:
        parse_configuration({
            "market_condition_thresholds": {"volatility_change": 0},
            "global_settings": {"auto_resolve_after_days": 0},
        })
    assert len(exc.value.errors) == 2


def test_merge_replaces_lists_and_merges_mappings():
    base = ThresholdStore().get("u1")
    merged = merge_configuration(base, {
        "drawdown_limits": [{"id": "only", "metric": "maxDrawdown", "value": 20}],
        "global_settings": {"max_alerts_per_day": 3},
    })
    config = parse_configuration(merged)
    assert [t.id for t in config.drawdown_limits] == ["only"]
    assert config.global_settings.max_alerts_per_day == 3
    assert config.global_settings.auto_resolve_after_days == 7
    assert len(config.performance_milestones) == 1


def test_configuration_round_trips_through_dict():
    config = ThresholdStore().get("u1")
    assert parse_configuration(config.to_dict()) == config


def test_missing_defaults_file(tmp_path):
    store = ThresholdStore(tmp_path / "missing.yaml")
    assert store.get("u1").drawdown_limits == []


def test_custom_defaults_file(tmp_path):
    path = tmp_path / "defaults.yaml"
    path.write_text(yaml.safe_dump({"alert_configuration": {"global_settings": {"max_alerts_per_day": 4}}}))
    assert ThresholdStore(path).get("u1").global_settings.max_alerts_per_day == 4


# ── Notification preferences ────────────────────────────

def test_default_preferences():
    prefs = PreferencesStore().get("u1")
    assert prefs.user_id == "u1"
    assert prefs.channels[AlertType.DRAWDOWN_LIMIT] == [NotificationChannel.IN_APP, NotificationChannel.EMAIL]
    assert prefs.severity_filters[NotificationChannel.SMS] == [AlertSeverity.CRITICAL]
    assert prefs.quiet_hours.enabled is True
    assert AlertType.DRAWDOWN_LIMIT in prefs.frequency.immediate
    assert AlertType.MARKET_CONDITION_CHANGE in prefs.frequency.weekly


@pytest.mark.parametrize("data", [
    {"channels": {"Meltdown": ["InApp"]}},
    {"channels": {"DrawdownLimit": ["Pager"]}},
    {"channels": {"DrawdownLimit": "InApp"}},
    {"severity_filters": {"Email": ["Severe"]}},
    {"frequency": {"hourly": ["DrawdownLimit"]}},
    {"quiet_hours": {"enabled": True, "start": "25:00", "end": "08:00"}},
    {"quiet_hours": {"enabled": True, "start": "22:00", "end": "08:00", "timezone": "Mars/Olympus"}},
])
def test_invalid_preferences(data):
    with pytest.raises(ValidationError):
        parse_preferences(data)


def test_preferences_update_replaces_sections():
    store = PreferencesStore()
    prefs = store.update("u1", {"severity_filters": {"InApp": ["High", "Critical"]}})
    assert prefs.severity_filters == {NotificationChannel.IN_APP: [AlertSeverity.HIGH, AlertSeverity.CRITICAL]}
    assert prefs.channels[AlertType.DRAWDOWN_LIMIT] == [NotificationChannel.IN_APP, NotificationChannel.EMAIL]


def test_invalid_update_keeps_previous_preferences():
    store = PreferencesStore()
    with pytest.raises(ValidationError):
        store.update("u1", {"quiet_hours": {"start": "noon"}})
    assert store.get("u1").quiet_hours.start == "22:00"


def test_preferences_persist(temp_db):
    PreferencesStore(db=temp_db).update("u1", {"quiet_hours": {"enabled": False}})
    assert PreferencesStore(db=temp_db).get("u1").quiet_hours.enabled is False
