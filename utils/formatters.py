"""Formatting utilities for display."""
from datetime import datetime, timezone

from rich.markup import escape

SEVERITY_STYLES = {
    "Critical": "bold white on red",
    "High": "bold red",
    "Medium": "bold yellow",
    "Low": "bold blue",
}

SEVERITY_ICONS = {"Critical": "!!!", "High": "!!", "Medium": "!", "Low": "i"}


def format_rate(value):
    """Format a 0..1 fraction as a whole percentage."""
    if value is None:
        return "N/A"
    return f"{float(value) * 100:.0f}%"


def format_hours(hours):
    if hours is None:
        return "N/A"
    hours = float(hours)
    if hours < 1:
        return f"{hours * 60:.0f}m"
    if hours < 48:
        return f"{hours:.1f}h"
    return f"{hours / 24:.1f}d"


def format_timestamp(ts):
    """Format a datetime to human-readable string."""
    if ts is None:
        return "N/A"
    if isinstance(ts, str):
        return ts
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%d %H:%M UTC")


def time_ago(dt, now=None):
    """Return human-readable time since dt. E.g., '3h ago', '2d ago'."""
    if dt is None:
        return "N/A"
    now = now or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    seconds = int((now - dt).total_seconds())

    if seconds < 60:
        return f"{seconds}s ago"
    elif seconds < 3600:
        return f"{seconds // 60}m ago"
    elif seconds < 86400:
        return f"{seconds // 3600}h ago"
    else:
        return f"{seconds // 86400}d ago"


def format_alert_line(alert, with_markup=False):
    """One-line summary of an alert: '[!!] [High] Title: message'."""
    sev = alert.severity.value
    line = f"[{SEVERITY_ICONS.get(sev, '?')}] [{sev}] {alert.title}: {alert.message}"
    if with_markup:
        style = SEVERITY_STYLES.get(sev, "")
        return f"[{style}]{escape(line)}[/]"
    return line

