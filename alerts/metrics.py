"""Alert effectiveness metrics over a trailing window."""
from datetime import datetime, timezone, timedelta

from models.alerts import AlertMetrics, UserEngagement
from models.enums import AlertType, AlertSeverity, AlertStatus, Timeframe


def alerts_in_window(alerts, timeframe, now=None):
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=Timeframe(timeframe).days)
    return [a for a in alerts if a.created_at >= cutoff]


def _engaged(alert):
    if alert.acknowledged_at is not None:
        return True
    return alert.status.is_terminal and not alert.metadata.get("autoResolved")


def compute_metrics(alerts):
    """Aggregate counts, resolution time, false-positive rate and engagement."""
    metrics = AlertMetrics()
    total = len(alerts)
    if total == 0:
        return metrics

    metrics.total_alerts = total
    metrics.alerts_by_type = {t: 0 for t in AlertType}
    metrics.alerts_by_severity = {s: 0 for s in AlertSeverity}
    for alert in alerts:
        metrics.alerts_by_type[alert.type] += 1
        metrics.alerts_by_severity[alert.severity] += 1

    resolved = [a for a in alerts if a.status == AlertStatus.RESOLVED and a.resolved_at is not None]
    dismissed = [a for a in alerts if a.status == AlertStatus.DISMISSED]
    if resolved:
        metrics.average_resolution_time = sum(a.resolution_hours for a in resolved) / len(resolved)
    closed = len(resolved) + len(dismissed)
    if closed:
        metrics.false_positive_rate = len(dismissed) / closed

    metrics.user_engagement = UserEngagement(
        acknowledged_rate=sum(1 for a in alerts if _engaged(a)) / total,
        action_taken_rate=sum(1 for a in alerts if a.metadata.get("actionTaken")) / total,
    )
    return metrics


class MetricsAggregator:
    def __init__(self, clock=None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def compute(self, alerts, timeframe=Timeframe.WEEK, now=None):
        return compute_metrics(alerts_in_window(alerts, timeframe, now or self._clock()))
