"""In-memory alert store and lifecycle state machine.

Alerts are kept by id, indexed per user, and an explicit secondary index maps
each open condition ``(user, strategy, type, metric)`` to the one alert that
currently represents it. "Open" means Active or Acknowledged; Resolved and
Dismissed are terminal.
"""
import copy
import logging
import threading
from datetime import datetime, timezone, timedelta

from models.enums import AlertStatus
from utils.errors import NotFoundError, InvalidTransitionError, DuplicateAlertError

logger = logging.getLogger("stratalerts.alerts.store")

DISMISS_REASONS = {"dismiss", "dismissed", "false positive", "false_positive", "not relevant"}
# survive an escalation that replaces the rest of the metadata
CARRIED_METADATA = ("escalations", "actionTaken")


def is_dismissal(reason):
    return reason is not None and reason.strip().lower() in DISMISS_REASONS


class AlertStore:
    def __init__(self, clock=None):
        self._alerts = {}
        self._by_user = {}
        self._open_index = {}
        self._lock = threading.RLock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _index_key(self, alert):
        return (alert.user_id,) + alert.condition_key

    def load(self, alerts):
        """Rebuild the store from persisted records."""
        with self._lock:
            for alert in alerts:
                self._alerts[alert.id] = alert
                self._by_user.setdefault(alert.user_id, []).append(alert.id)
                if alert.status.is_open:
                    self._open_index[self._index_key(alert)] = alert.id
        logger.debug(f"Loaded {len(alerts)} alerts")

    def find_open(self, user_id, strategy_id, alert_type, metric):
        with self._lock:
            alert_id = self._open_index.get((user_id, strategy_id, alert_type, metric))
            return self._alerts.get(alert_id) if alert_id else None

    def create(self, alert):
        """Store a new Active alert; rejects it if the same condition is already open."""
        with self._lock:
            key = self._index_key(alert)
            existing = self._open_index.get(key)
            if existing is not None:
                raise DuplicateAlertError(existing)
            alert.status = AlertStatus.ACTIVE
            self._alerts[alert.id] = alert
            self._by_user.setdefault(alert.user_id, []).append(alert.id)
            self._open_index[key] = alert.id
        logger.debug(f"Created alert {alert.id} ({alert.type.value}/{alert.severity.value})")
        return alert

    def get(self, alert_id, user_id):
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.user_id != user_id:
                raise NotFoundError(alert_id)
            return alert

    def acknowledge(self, alert_id, user_id):
        with self._lock:
            alert = self.get(alert_id, user_id)
            if alert.status.is_terminal:
                raise InvalidTransitionError(f"Cannot acknowledge {alert.status.value} alert {alert_id}")
            if alert.status == AlertStatus.ACTIVE:
                alert.status = AlertStatus.ACKNOWLEDGED
                alert.acknowledged_at = self._clock()
            return alert

    def resolve(self, alert_id, user_id, reason=None, dismiss=False):
        """Close an open alert as Resolved, or Dismissed when the reason says so."""
        with self._lock:
            alert = self.get(alert_id, user_id)
            if alert.status.is_terminal:
                raise InvalidTransitionError(f"Alert {alert_id} is already {alert.status.value}")
            dismissed = dismiss or is_dismissal(reason)
            alert.status = AlertStatus.DISMISSED if dismissed else AlertStatus.RESOLVED
            alert.resolved_at = self._clock()
            if reason:
                alert.metadata["resolution"] = reason
            self._open_index.pop(self._index_key(alert), None)
            return alert

    def record_action(self, alert_id, user_id, action):
        with self._lock:
            alert = self.get(alert_id, user_id)
            alert.metadata["actionTaken"] = action
            return alert

    def escalate(self, alert_id, severity, current_value=None, suggested_actions=None, source=None):
        """Raise an open alert's severity when a stronger tier of its condition fires.

        ``source`` is the stronger breach: its message, threshold, metadata and
        recommendations replace the weaker ones, keeping the escalation history
        and any recorded action.
        """
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                raise NotFoundError(alert_id)
            if not alert.status.is_open or severity.rank <= alert.severity.rank:
                return None
            previous = alert.severity
            alert.severity = severity
            if source is not None:
                carried = {k: alert.metadata[k] for k in CARRIED_METADATA if k in alert.metadata}
                alert.title = source.title
                alert.message = source.message
                alert.actionable = source.actionable
                alert.threshold = source.threshold
                alert.recommendations = copy.deepcopy(source.recommendations)
                alert.metadata = {**copy.deepcopy(source.metadata), **carried}
                alert.current_value = source.current_value
                alert.suggested_actions = (list(source.suggested_actions)
                                           if source.suggested_actions is not None else None)
            if current_value is not None:
                alert.current_value = current_value
            if suggested_actions is not None:
                alert.suggested_actions = list(suggested_actions)
            alert.metadata.setdefault("escalations", []).append({
                "from": previous.value,
                "to": severity.value,
                "at": self._clock().isoformat(),
            })
        logger.info(f"Escalated alert {alert_id}: {previous.value} -> {severity.value}")
        return alert

    def auto_resolve(self, user_id, older_than_days, now=None):
        """Resolve open alerts with no activity for ``older_than_days``."""
        now = now or self._clock()
        cutoff = now - timedelta(days=older_than_days)
        resolved = []
        with self._lock:
            for alert in self.get_active(user_id):
                last_activity = max(alert.created_at, alert.acknowledged_at or alert.created_at)
                if last_activity > cutoff:
                    continue
                alert.status = AlertStatus.RESOLVED
                alert.resolved_at = now
                alert.metadata["resolution"] = f"auto-resolved after {older_than_days} days"
                alert.metadata["autoResolved"] = True
                self._open_index.pop(self._index_key(alert), None)
                resolved.append(alert)
        if resolved:
            logger.info(f"Auto-resolved {len(resolved)} alert(s) for {user_id}")
        return resolved

    def get_active(self, user_id, strategy_id=None):
        """Non-terminal alerts, newest first."""
        with self._lock:
            alerts = [self._alerts[i] for i in self._by_user.get(user_id, [])]
        alerts = [a for a in alerts if a.status.is_open]
        if strategy_id is not None:
            alerts = [a for a in alerts if a.strategy_id == strategy_id]
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)

    def get_all(self, user_id):
        with self._lock:
            alerts = [self._alerts[i] for i in self._by_user.get(user_id, [])]
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)

    def count_created_on(self, user_id, day):
        with self._lock:
            return sum(1 for i in self._by_user.get(user_id, [])
                       if self._alerts[i].created_at.astimezone(timezone.utc).date() == day)

    def users(self):
        with self._lock:
            return sorted(self._by_user)
