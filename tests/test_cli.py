"""Tests for CLI commands."""
import pytest
import sys
import os
import json
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import yaml
from click.testing import CliRunner
from main import cli

USER = ["--user", "trader-1"]


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cfg(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "database": {"path": str(tmp_path / "alerts.db")},
        "logging": {"level": "WARNING"},
        "engine": {"max_workers": 0},
        "channels": {"file": {"path": str(tmp_path / "notifications.jsonl")}, "console": {"enabled": False}},
    }))
    return str(path)


def _write(tmp_path, name, data):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return str(path)


def _invoke(runner, cfg, *args):
    return runner.invoke(cli, ["--config", cfg, *args])


def _active(runner, cfg):
    result = _invoke(runner, cfg, "alerts", "list", *USER, "--json")
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


@pytest.fixture
def drawdown_file(tmp_path):
    return _write(tmp_path, "update.yaml", {
        "strategy": {"id": "s1", "title": "Breakout"},
        "current": {"total_trades": 12, "max_drawdown": 12.0},
    })


def test_cli_help(runner):
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "Strategy Performance Alert Engine" in result.output


def test_cli_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


@pytest.mark.parametrize("group,commands", [
    ("alerts", ["list", "ack", "resolve", "dismiss", "evaluate", "market", "metrics", "auto-resolve"]),
    ("thresholds", ["show", "set"]),
    ("prefs", ["show", "set"]),
    ("digest", ["show", "flush"]),
    ("scheduler", ["run"]),
])
def test_group_help(runner, group, commands):
    result = runner.invoke(cli, [group, "--help"])
    assert result.exit_code == 0
    for command in commands:
        assert command in result.output


def test_evaluate_and_list(runner, cfg, drawdown_file):
    result = _invoke(runner, cfg, "alerts", "evaluate", drawdown_file, *USER)
    assert result.exit_code == 0, result.output
    assert "1 alert(s) raised" in result.output

    alerts = _active(runner, cfg)
    assert len(alerts) == 1
    assert alerts[0]["severity"] == "Critical"
    assert alerts[0]["type"] == "DrawdownLimit"

    again = _invoke(runner, cfg, "alerts", "evaluate", drawdown_file, *USER)
    assert "no new alerts" in again.output
    assert len(_active(runner, cfg)) == 1


def test_lifecycle_commands(runner, cfg, drawdown_file):
    _invoke(runner, cfg, "alerts", "evaluate", drawdown_file, *USER)
    alert_id = _active(runner, cfg)[0]["id"]

    result = _invoke(runner, cfg, "alerts", "ack", alert_id, *USER)
    assert result.exit_code == 0
    assert _active(runner, cfg)[0]["status"] == "Acknowledged"

    result = _invoke(runner, cfg, "alerts", "resolve", alert_id, *USER, "--reason", "false positive")
    assert result.exit_code == 0
    assert "dismissed" in result.output
    assert _active(runner, cfg) == []


def test_unknown_alert(runner, cfg):
    result = _invoke(runner, cfg, "alerts", "ack", "missing-id", *USER)
    assert result.exit_code == 1
    assert "Alert not found" in result.output


def test_empty_list(runner, cfg):
    result = _invoke(runner, cfg, "alerts", "list", *USER)
    assert result.exit_code == 0
    assert "All clear" in result.output


def test_market_command(runner, cfg, tmp_path):
    path = _write(tmp_path, "market.yaml", {
        "market": {"volatility_change": 30.0},
        "strategies": [{"id": "s1", "title": "Breakout"}],
    })
    result = _invoke(runner, cfg, "alerts", "market", path, *USER)
    assert result.exit_code == 0, result.output
    assert "Market Condition Change" in result.output


def test_metrics_json(runner, cfg, drawdown_file):
    _invoke(runner, cfg, "alerts", "evaluate", drawdown_file, *USER)
    result = _invoke(runner, cfg, "alerts", "metrics", *USER, "--json")
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["total_alerts"] == 1
    assert data["alerts_by_severity"]["Critical"] == 1


def test_thresholds_show_and_set(runner, cfg, tmp_path):
    result = _invoke(runner, cfg, "thresholds", "show", *USER)
    assert result.exit_code == 0
    assert yaml.safe_load(result.stdout)["global_settings"]["max_alerts_per_day"] == 10

    good = _write(tmp_path, "good.yaml", {"global_settings": {"max_alerts_per_day": 4}})
    assert _invoke(runner, cfg, "thresholds", "set", good, *USER).exit_code == 0
    shown = yaml.safe_load(_invoke(runner, cfg, "thresholds", "show", *USER).stdout)
    assert shown["global_settings"]["max_alerts_per_day"] == 4

    bad = _write(tmp_path, "bad.yaml", {"market_condition_thresholds": {"volume_change": -10}})
    result = _invoke(runner, cfg, "thresholds", "set", bad, *USER)
    assert result.exit_code == 1
    assert "Invalid thresholds" in result.output


def test_prefs_and_digest(runner, cfg, tmp_path):
    quiet_off = _write(tmp_path, "prefs.yaml", {"quiet_hours": {"enabled": False}})
    assert _invoke(runner, cfg, "prefs", "set", quiet_off, *USER).exit_code == 0
    shown = yaml.safe_load(_invoke(runner, cfg, "prefs", "show", *USER).stdout)
    assert shown["quiet_hours"]["enabled"] is False

    milestone = _write(tmp_path, "milestone.yaml", {
        "strategy": {"id": "s1", "title": "Breakout"},
        "previous": {"profit_factor": 1.8},
        "current": {"profit_factor": 2.2},
    })
    assert _invoke(runner, cfg, "alerts", "evaluate", milestone, *USER).exit_code == 0

    shown = _invoke(runner, cfg, "digest", "show", "--bucket", "daily")
    assert "Daily strategy alert digest (1)" in shown.output

    flushed = _invoke(runner, cfg, "digest", "flush", "--bucket", "daily")
    assert "Sent 1 daily digest(s)" in flushed.output
    assert "No pending daily digests" in _invoke(runner, cfg, "digest", "show").output


def test_auto_resolve_command(runner, cfg):
    result = _invoke(runner, cfg, "alerts", "auto-resolve")
    assert result.exit_code == 0
    assert "Auto-resolved 0 alert(s)" in result.output
