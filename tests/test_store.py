"""Tests for the alert store: lifecycle, open-condition index and auto-resolution."""
import pytest
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import timedelta
from alerts.store import AlertStore, is_dismissal
from models.alerts import StrategyAlert, ThresholdSnapshot
from models.enums import AlertType, AlertSeverity, AlertStatus
from utils.errors import NotFoundError, InvalidTransitionError, DuplicateAlertError
from conftest import FixedClock, NOW


def _alert(alert_id="a1", user_id="u1", strategy_id="s1", metric="maxDrawdown",
           severity=AlertSeverity.HIGH, created_at=NOW):
    return StrategyAlert(
        id=alert_id, user_id=user_id, strategy_id=strategy_id, strategy_name="Breakout",
        type=AlertType.DRAWDOWN_LIMIT, severity=severity, title="Drawdown Alert",
        message="drawdown", threshold=ThresholdSnapshot(metric=metric, value=5.0),
        created_at=created_at,
    )


@pytest.fixture
def store():
    return AlertStore(clock=FixedClock())


def test_create_is_active(store):
    alert = store.create(_alert())
    assert alert.status == AlertStatus.ACTIVE
    assert store.get_active("u1") == [alert]


def test_create_rejects_open_duplicate(store):
    store.create(_alert("a1"))
    with pytest.raises(DuplicateAlertError) as exc:
        store.create(_alert("a2"))
    assert exc.value.existing_id == "a1"


def test_same_condition_allowed_after_resolution(store):
    store.create(_alert("a1"))
    store.resolve("a1", "u1")
    store.create(_alert("a2"))
    assert [a.id for a in store.get_active("u1")] == ["a2"]


def test_different_metric_is_a_different_condition(store):
    store.create(_alert("a1", metric="maxDrawdown"))
    store.create(_alert("a2", metric="currentDrawdown"))
    assert len(store.get_active("u1")) == 2


def test_acknowledge_sets_timestamp(store):
    store.create(_alert())
    alert = store.acknowledge("a1", "u1")
    assert alert.status == AlertStatus.ACKNOWLEDGED
    assert alert.acknowledged_at == NOW
    # still open, still blocks duplicates
    assert store.find_open("u1", "s1", AlertType.DRAWDOWN_LIMIT, "maxDrawdown") is alert


def test_acknowledge_twice_is_noop(store):
    store.create(_alert())
    first = store.acknowledge("a1", "u1").acknowledged_at
    assert store.acknowledge("a1", "u1").acknowledged_at == first


def test_resolve_removes_from_active(store):
    store.create(_alert())
    alert = store.resolve("a1", "u1", reason="fixed position sizing")
    assert alert.status == AlertStatus.RESOLVED
    assert alert.resolved_at == NOW
    assert alert.metadata["resolution"] == "fixed position sizing"
    assert store.get_active("u1") == []
    assert store.get_all("u1") == [alert]


@pytest.mark.parametrize("reason", ["false positive", "Dismissed", " not relevant "])
def test_dismissal_reasons(store, reason):
    store.create(_alert())
    assert store.resolve("a1", "u1", reason=reason).status == AlertStatus.DISMISSED


def test_is_dismissal():
    assert is_dismissal("false_positive")
    assert not is_dismissal("resolved")
    assert not is_dismissal(None)


def test_terminal_states_are_final(store):
    store.create(_alert())
    store.resolve("a1", "u1")
    with pytest.raises(InvalidTransitionError):
        store.acknowledge("a1", "u1")
    with pytest.raises(InvalidTransitionError):
        store.resolve("a1", "u1")


def test_unknown_or_foreign_alert_not_found(store):
    store.create(_alert())
    with pytest.raises(NotFoundError):
        store.acknowledge("missing", "u1")
    with pytest.raises(NotFoundError):
        store.resolve("a1", "someone-else")


def test_get_active_newest_first_and_by_strategy(store):
    store.create(_alert("old", strategy_id="s1", created_at=NOW - timedelta(hours=2)))
    store.create(_alert("new", strategy_id="s2", created_at=NOW))
    assert [a.id for a in store.get_active("u1")] == ["new", "old"]
    assert [a.id for a in store.get_active("u1", "s1")] == ["old"]


def test_escalate_raises_severity_only(store):
    store.create(_alert(severity=AlertSeverity.HIGH))
    assert store.escalate("a1", AlertSeverity.MEDIUM) is None
    alert = store.escalate("a1", AlertSeverity.CRITICAL, current_value=14.0)
    assert alert.severity == AlertSeverity.CRITICAL
    assert alert.current_value == 14.0
    assert alert.metadata["escalations"][0]["from"] == "High"


def test_record_action(store):
    store.create(_alert())
    assert store.record_action("a1", "u1", "reduced size").metadata["actionTaken"] == "reduced size"


def test_auto_resolve_stale_alerts(store):
    store.create(_alert("stale", strategy_id="s1", created_at=NOW - timedelta(days=8)))
    store.create(_alert("fresh", strategy_id="s2", created_at=NOW - timedelta(days=2)))
    resolved = store.auto_resolve("u1", 7, now=NOW)
    assert [a.id for a in resolved] == ["stale"]
    assert resolved[0].metadata["autoResolved"] is True
    assert [a.id for a in store.get_active("u1")] == ["fresh"]


def test_auto_resolve_counts_acknowledgement_as_activity(store):
    store.create(_alert(created_at=NOW - timedelta(days=10)))
    store._clock = lambda: NOW - timedelta(days=1)
    store.acknowledge("a1", "u1")
    assert store.auto_resolve("u1", 7, now=NOW) == []


def test_load_rebuilds_open_index(store):
    open_alert = _alert("a1")
    closed = _alert("a2", strategy_id="s2")
    closed.status = AlertStatus.RESOLVED
    store.load([open_alert, closed])
    assert store.find_open("u1", "s1", AlertType.DRAWDOWN_LIMIT, "maxDrawdown") is open_alert
    assert store.find_open("u1", "s2", AlertType.DRAWDOWN_LIMIT, "maxDrawdown") is None


def test_count_created_on(store):
    store.create(_alert("a1", strategy_id="s1"))
    store.create(_alert("a2", strategy_id="s2", created_at=NOW - timedelta(days=1)))
    assert store.count_created_on("u1", NOW.date()) == 1
