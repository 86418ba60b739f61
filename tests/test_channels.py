"""Tests for notification sinks and the dispatcher."""
import pytest
import sys
import os
import json
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from concurrent.futures import ThreadPoolExecutor
from io import StringIO
from rich.console import Console
from alerts.channels import (
    ChannelSink, InAppChannel, ConsoleChannel, FileChannel, NotificationDispatcher, build_dispatcher,
)
from alerts.notifications import NotificationDecision
from models.alerts import StrategyAlert
from models.enums import AlertType, AlertSeverity, NotificationChannel, FrequencyBucket
from utils.errors import DispatchFailure


def _alert():
    return StrategyAlert(id="a1", user_id="u1", strategy_id="s1", type=AlertType.DRAWDOWN_LIMIT,
                         severity=AlertSeverity.CRITICAL, title="Drawdown Alert: Breakout",
                         message="Strategy drawdown of 12.00% exceeds threshold of 10%")


def _now(channel):
    return NotificationDecision(channel=channel, deliver_now=True, bucket=FrequencyBucket.IMMEDIATE)


class MockSink:
    def __init__(self, fail=False):
        self.sent = []
        self.texts = []
        self.fail = fail

    def send(self, alert, user_id):
        if self.fail:
            raise DispatchFailure("sink down")
        self.sent.append((alert.id, user_id))

    def send_text(self, user_id, subject, text):
        if self.fail:
            raise DispatchFailure("sink down")
        self.texts.append((user_id, subject, text))


class CaptureSink:
    def __init__(self):
        self.severities = []

    def send(self, alert, user_id):
        self.severities.append(alert.severity)

    def send_text(self, user_id, subject, text):
        pass


class DeferredExecutor:
    """Holds submitted work until run() is called."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args):
        self.pending.append((fn, args))

    def run(self):
        for fn, args in self.pending:
            fn(*args)


def test_sinks_satisfy_protocol(tmp_path):
    assert isinstance(InAppChannel(), ChannelSink)
    assert isinstance(FileChannel(tmp_path / "n.jsonl"), ChannelSink)
    assert isinstance(ConsoleChannel(Console(file=StringIO())), ChannelSink)


def test_in_app_inbox_is_bounded():
    sink = InAppChannel(inbox_size=2)
    for _ in range(3):
        sink.send(_alert(), "u1")
    sink.send_text("u1", "Digest", "body")
    box = sink.inbox("u1")
    assert len(box) == 2
    assert box[-1]["kind"] == "digest"
    assert sink.inbox("nobody") == []


def test_file_channel_writes_jsonl(tmp_path):
    path = tmp_path / "logs" / "notifications.jsonl"
    sink = FileChannel(path)
    sink.send(_alert(), "u1")
    sink.send_text("u1", "Daily digest", "line")
    lines = [json.loads(l) for l in path.read_text().splitlines()]
    assert lines[0]["alert_id"] == "a1"
    assert lines[0]["severity"] == "Critical"
    assert lines[1]["subject"] == "Daily digest"


def test_file_channel_failure_raises_dispatch_failure(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    with pytest.raises(DispatchFailure):
        FileChannel(blocker / "n.jsonl").send(_alert(), "u1")


def test_console_channel_prints():
    buf = StringIO()
    ConsoleChannel(Console(file=buf, width=200)).send(_alert(), "u1")
    assert "Drawdown Alert: Breakout" in buf.getvalue()


def test_dispatch_only_immediate_decisions():
    sink = MockSink()
    dispatcher = NotificationDispatcher({NotificationChannel.IN_APP: [sink]})
    decisions = [
        _now(NotificationChannel.IN_APP),
        NotificationDecision(NotificationChannel.IN_APP, False, FrequencyBucket.DAILY),
    ]
    sent = dispatcher.dispatch(decisions, _alert(), "u1")
    assert sent == [NotificationChannel.IN_APP]
    assert sink.sent == [("a1", "u1")]


def test_dispatch_skips_channels_without_sinks():
    dispatcher = NotificationDispatcher()
    assert dispatcher.dispatch([_now(NotificationChannel.SMS)], _alert(), "u1") == []


def test_dispatch_failure_is_contained():
    good, bad = MockSink(), MockSink(fail=True)
    dispatcher = NotificationDispatcher({NotificationChannel.EMAIL: [bad, good]})
    dispatcher.dispatch([_now(NotificationChannel.EMAIL)], _alert(), "u1")
    assert good.sent == [("a1", "u1")]


def test_dispatch_on_executor():
    sink = MockSink()
    with ThreadPoolExecutor(max_workers=2) as pool:
        dispatcher = NotificationDispatcher({NotificationChannel.IN_APP: [sink]}, executor=pool)
        dispatcher.dispatch([_now(NotificationChannel.IN_APP)], _alert(), "u1")
    assert sink.sent == [("a1", "u1")]


def test_dispatch_sends_alert_as_it_was_when_dispatched():
    sink, executor = CaptureSink(), DeferredExecutor()
    dispatcher = NotificationDispatcher({NotificationChannel.IN_APP: [sink]}, executor=executor)
    alert = _alert()
    dispatcher.dispatch([_now(NotificationChannel.IN_APP)], alert, "u1")
    alert.severity = AlertSeverity.LOW
    executor.run()
    assert sink.severities == [AlertSeverity.CRITICAL]


def test_send_digest_reports_success():
    good, bad = MockSink(), MockSink(fail=True)
    dispatcher = NotificationDispatcher({NotificationChannel.IN_APP: [good], NotificationChannel.PUSH: [bad]})
    assert dispatcher.send_digest("u1", NotificationChannel.IN_APP, "Digest", "body") is True
    assert good.texts == [("u1", "Digest", "body")]
    assert dispatcher.send_digest("u1", NotificationChannel.PUSH, "Digest", "body") is False
    assert dispatcher.send_digest("u1", NotificationChannel.SMS, "Digest", "body") is False


def test_build_dispatcher_from_config(tmp_path):
    config = {"channels": {
        "in_app": {"inbox_size": 5},
        "file": {"enabled": True, "path": str(tmp_path / "n.jsonl")},
        "console": {"enabled": False},
    }}
    dispatcher = build_dispatcher(config)
    assert isinstance(dispatcher.sinks[NotificationChannel.IN_APP][0], InAppChannel)
    assert len(dispatcher.sinks[NotificationChannel.IN_APP]) == 1
    for channel in (NotificationChannel.EMAIL, NotificationChannel.PUSH, NotificationChannel.SMS):
        assert isinstance(dispatcher.sinks[channel][0], FileChannel)
