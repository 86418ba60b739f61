"""Notification dispatch: per-channel sinks and a non-blocking dispatcher."""
import copy
import json
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

from models.enums import NotificationChannel
from utils.errors import DispatchFailure
from utils.formatters import format_alert_line

logger = logging.getLogger("stratalerts.alerts.channels")


@runtime_checkable
class ChannelSink(Protocol):
    def send(self, alert, user_id) -> None: ...

    def send_text(self, user_id, subject, text) -> None: ...


class InAppChannel:
    """Keeps a bounded inbox of notifications per user for the UI layer to read."""

    def __init__(self, inbox_size=200):
        self.inbox_size = inbox_size
        self._inboxes = {}
        self._lock = threading.Lock()

    def _push(self, user_id, entry):
        with self._lock:
            box = self._inboxes.setdefault(user_id, deque(maxlen=self.inbox_size))
            box.append(entry)

    def send(self, alert, user_id):
        self._push(user_id, {
            "kind": "alert",
            "alert_id": alert.id,
            "severity": alert.severity.value,
            "title": alert.title,
            "message": alert.message,
            "at": datetime.now(timezone.utc).isoformat(),
        })

    def send_text(self, user_id, subject, text):
        self._push(user_id, {
            "kind": "digest",
            "title": subject,
            "message": text,
            "at": datetime.now(timezone.utc).isoformat(),
        })

    def inbox(self, user_id):
        with self._lock:
            return list(self._inboxes.get(user_id, []))


class ConsoleChannel:
    """Print notifications to the terminal with rich formatting."""

    def __init__(self, console=None):
        from rich.console import Console
        self.console = console or Console()

    def send(self, alert, user_id):
        self.console.print(f"[dim]{user_id}[/dim] {format_alert_line(alert, with_markup=True)}")

    def send_text(self, user_id, subject, text):
        self.console.print(f"[bold]{subject}[/bold] [dim]({user_id})[/dim]")
        self.console.print(text, markup=False)


class FileChannel:
    """Append notifications to a JSON lines log file."""

    def __init__(self, log_path="data/notifications.jsonl"):
        self.log_path = Path(log_path)

    def _append(self, entry):
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            raise DispatchFailure(f"Failed to write notification to {self.log_path}: {e}") from e

    def send(self, alert, user_id):
        self._append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "user_id": user_id,
            "alert_id": alert.id,
            "strategy_id": alert.strategy_id,
            "type": alert.type.value,
            "severity": alert.severity.value,
            "title": alert.title,
            "message": alert.message,
        })

    def send_text(self, user_id, subject, text):
        self._append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "user_id": user_id,
            "subject": subject,
            "message": text,
        })


class NotificationDispatcher:
    """Routes resolver decisions to channel sinks without blocking the caller.

    Each notification channel maps to zero or more sinks. Send failures are
    logged and never propagate; retries belong to the sinks themselves.
    """

    def __init__(self, sinks=None, executor=None):
        self.sinks = {}
        for channel, channel_sinks in (sinks or {}).items():
            for sink in channel_sinks:
                self.register(channel, sink)
        self.executor = executor

    def register(self, channel, sink):
        self.sinks.setdefault(NotificationChannel(channel), []).append(sink)

    def _submit(self, fn, *args):
        if self.executor is None:
            fn(*args)
        else:
            self.executor.submit(fn, *args)

    def _deliver(self, sink, channel, alert, user_id):
        try:
            sink.send(alert, user_id)
            logger.debug(f"Sent {alert.id} via {channel.value} to {user_id}")
        except Exception as e:
            logger.warning(f"Dispatch failure on {channel.value} for alert {alert.id}: {e}")

    def dispatch(self, decisions, alert, user_id):
        """Deliver the decisions marked deliver_now. Returns the channels handed to sinks."""
        sent = []
        # sinks render a snapshot, not the live alert other threads may change
        snapshot = copy.deepcopy(alert)
        for decision in decisions:
            if not decision.deliver_now:
                continue
            sinks = self.sinks.get(decision.channel, [])
            if not sinks:
                logger.debug(f"No sink registered for {decision.channel.value}; skipping {alert.id}")
                continue
            for sink in sinks:
                self._submit(self._deliver, sink, decision.channel, snapshot, user_id)
            sent.append(decision.channel)
        return sent

    def send_digest(self, user_id, channel, subject, text):
        """Synchronous digest delivery; True when every sink for the channel accepted it."""
        sinks = self.sinks.get(NotificationChannel(channel), [])
        if not sinks:
            logger.debug(f"No sink registered for {channel}; digest for {user_id} not sent")
            return False
        ok = True
        for sink in sinks:
            try:
                sink.send_text(user_id, subject, text)
            except Exception as e:
                logger.warning(f"Digest dispatch failure on {channel} for {user_id}: {e}")
                ok = False
        return ok


def build_dispatcher(config, executor=None):
    """Dispatcher with the sinks enabled in the app config."""
    channels_cfg = config.get("channels", {})
    dispatcher = NotificationDispatcher(executor=executor)
    in_app = InAppChannel(inbox_size=channels_cfg.get("in_app", {}).get("inbox_size", 200))
    dispatcher.register(NotificationChannel.IN_APP, in_app)
    file_cfg = channels_cfg.get("file", {})
    if file_cfg.get("enabled", True):
        file_sink = FileChannel(file_cfg.get("path", "data/notifications.jsonl"))
        for channel in (NotificationChannel.EMAIL, NotificationChannel.PUSH, NotificationChannel.SMS):
            dispatcher.register(channel, file_sink)
    if channels_cfg.get("console", {}).get("enabled", False):
        dispatcher.register(NotificationChannel.IN_APP, ConsoleChannel())
    return dispatcher
