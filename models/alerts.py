"""Dataclasses for strategy alerts, recommendations and alert metrics."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from models.enums import (
    AlertType, AlertSeverity, AlertStatus, ThresholdOperator, RecommendationAction,
)


def new_alert_id(prefix, strategy_id):
    return f"{prefix}-{strategy_id}-{uuid.uuid4().hex[:12]}"


def _parse_dt(value):
    if value is None or isinstance(value, datetime):
        return value
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _iso(dt):
    return dt.isoformat() if dt is not None else None


@dataclass
class ThresholdSnapshot:
    """The (metric, operator, value) rule an alert was raised against."""
    metric: str = ""
    operator: ThresholdOperator = ThresholdOperator.GREATER_THAN
    value: float = 0.0

    def to_dict(self):
        return {"metric": self.metric, "operator": self.operator.value, "value": self.value}

    @classmethod
    def from_dict(cls, d):
        return cls(
            metric=d.get("metric", ""),
            operator=ThresholdOperator(d.get("operator", "greater_than")),
            value=float(d.get("value", 0.0)),
        )


@dataclass
class StrategyRecommendation:
    strategy_id: str = ""
    strategy_name: str = ""
    action: RecommendationAction = RecommendationAction.MONITOR
    reason: str = ""
    confidence: float = 0.0

    def to_dict(self):
        return {
            "strategy_id": self.strategy_id,
            "strategy_name": self.strategy_name,
            "action": self.action.value,
            "reason": self.reason,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, d):
        return cls(
            strategy_id=d.get("strategy_id", ""),
            strategy_name=d.get("strategy_name", ""),
            action=RecommendationAction(d.get("action", "Monitor")),
            reason=d.get("reason", ""),
            confidence=float(d.get("confidence", 0.0)),
        )


@dataclass
class StrategyAlert:
    id: str = ""
    user_id: str = ""
    strategy_id: str = ""
    strategy_name: str = ""
    type: AlertType = AlertType.DRAWDOWN_LIMIT
    severity: AlertSeverity = AlertSeverity.LOW
    status: AlertStatus = AlertStatus.ACTIVE
    title: str = ""
    message: str = ""
    actionable: bool = False
    threshold: Optional[ThresholdSnapshot] = None
    current_value: Optional[float] = None
    suggested_actions: Optional[list] = None
    recommendations: list = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @property
    def condition_key(self):
        """Identity of the detected condition: (strategy, type, metric)."""
        metric = self.threshold.metric if self.threshold else ""
        return (self.strategy_id, self.type, metric)

    @property
    def resolution_hours(self):
        if self.resolved_at is None:
            return None
        return (self.resolved_at - self.created_at).total_seconds() / 3600

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "strategy_id": self.strategy_id,
            "strategy_name": self.strategy_name,
            "type": self.type.value,
            "severity": self.severity.value,
            "status": self.status.value,
            "title": self.title,
            "message": self.message,
            "actionable": self.actionable,
            "threshold": self.threshold.to_dict() if self.threshold else None,
            "current_value": self.current_value,
            "suggested_actions": list(self.suggested_actions) if self.suggested_actions is not None else None,
            "recommendations": [r.to_dict() for r in self.recommendations],
            "metadata": dict(self.metadata),
            "created_at": _iso(self.created_at),
            "acknowledged_at": _iso(self.acknowledged_at),
            "resolved_at": _iso(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, d):
        threshold = d.get("threshold")
        return cls(
            id=d["id"],
            user_id=d.get("user_id", ""),
            strategy_id=d.get("strategy_id", ""),
            strategy_name=d.get("strategy_name", ""),
            type=AlertType(d["type"]),
            severity=AlertSeverity(d["severity"]),
            status=AlertStatus(d.get("status", "Active")),
            title=d.get("title", ""),
            message=d.get("message", ""),
            actionable=bool(d.get("actionable", False)),
            threshold=ThresholdSnapshot.from_dict(threshold) if threshold else None,
            current_value=d.get("current_value"),
            suggested_actions=d.get("suggested_actions"),
            recommendations=[StrategyRecommendation.from_dict(r) for r in d.get("recommendations") or []],
            metadata=dict(d.get("metadata") or {}),
            created_at=_parse_dt(d.get("created_at")) or datetime.now(timezone.utc),
            acknowledged_at=_parse_dt(d.get("acknowledged_at")),
            resolved_at=_parse_dt(d.get("resolved_at")),
        )


@dataclass
class UserEngagement:
    acknowledged_rate: float = 0.0
    action_taken_rate: float = 0.0


@dataclass
class AlertMetrics:
    total_alerts: int = 0
    alerts_by_type: dict = field(default_factory=lambda: {t: 0 for t in AlertType})
    alerts_by_severity: dict = field(default_factory=lambda: {s: 0 for s in AlertSeverity})
    average_resolution_time: float = 0.0
    false_positive_rate: float = 0.0
    user_engagement: UserEngagement = field(default_factory=UserEngagement)

    def to_dict(self):
        return {
            "total_alerts": self.total_alerts,
            "alerts_by_type": {t.value: n for t, n in self.alerts_by_type.items()},
            "alerts_by_severity": {s.value: n for s, n in self.alerts_by_severity.items()},
            "average_resolution_time": self.average_resolution_time,
            "false_positive_rate": self.false_positive_rate,
            "user_engagement": {
                "acknowledged_rate": self.user_engagement.acknowledged_rate,
                "action_taken_rate": self.user_engagement.action_taken_rate,
            },
        }
