"""Dataclasses for per-user alert thresholds and notification preferences."""
from dataclasses import dataclass, field
from typing import Optional

from models.enums import (
    AlertType, AlertSeverity, NotificationChannel, ThresholdOperator, FrequencyBucket,
)


@dataclass
class AlertThreshold:
    id: str = ""
    metric: str = ""
    operator: ThresholdOperator = ThresholdOperator.GREATER_THAN
    value: float = 0.0
    enabled: bool = True
    description: str = ""
    strategy_id: Optional[str] = None

    def applies_to(self, strategy_id):
        return self.strategy_id is None or self.strategy_id == strategy_id

    def to_dict(self):
        d = {
            "id": self.id,
            "metric": self.metric,
            "operator": self.operator.value,
            "value": self.value,
            "enabled": self.enabled,
            "description": self.description,
        }
        if self.strategy_id is not None:
            d["strategy_id"] = self.strategy_id
        return d


@dataclass
class DrawdownThreshold(AlertThreshold):
    suspend_strategy: bool = False
    notification_channels: list = field(default_factory=lambda: [NotificationChannel.IN_APP])
    severity: Optional[AlertSeverity] = None

    def to_dict(self):
        d = super().to_dict()
        d["suspend_strategy"] = self.suspend_strategy
        d["notification_channels"] = [c.value for c in self.notification_channels]
        if self.severity is not None:
            d["severity"] = self.severity.value
        return d


@dataclass
class PerformanceMilestone(AlertThreshold):
    celebratory: bool = True
    suggest_position_increase: bool = False

    def to_dict(self):
        d = super().to_dict()
        d["celebratory"] = self.celebratory
        d["suggest_position_increase"] = self.suggest_position_increase
        return d


@dataclass
class MarketConditionThresholds:
    volatility_change: float = 25.0
    volume_change: float = 50.0
    correlation_change: float = 30.0


@dataclass
class StatisticalSignificanceSettings:
    minimum_trades: int = 30
    required_confidence: float = 95.0
    enable_notifications: bool = True


@dataclass
class GlobalSettings:
    enable_alerts: bool = True
    max_alerts_per_day: int = 10
    auto_resolve_after_days: int = 7


@dataclass
class AlertConfiguration:
    drawdown_limits: list = field(default_factory=list)
    performance_milestones: list = field(default_factory=list)
    market_condition_thresholds: MarketConditionThresholds = field(default_factory=MarketConditionThresholds)
    statistical_significance_settings: StatisticalSignificanceSettings = field(
        default_factory=StatisticalSignificanceSettings)
    global_settings: GlobalSettings = field(default_factory=GlobalSettings)

    def drawdown_limits_for(self, strategy_id):
        return [t for t in self.drawdown_limits if t.applies_to(strategy_id)]

    def milestones_for(self, strategy_id):
        return [m for m in self.performance_milestones if m.applies_to(strategy_id)]

    def to_dict(self):
        m = self.market_condition_thresholds
        s = self.statistical_significance_settings
        g = self.global_settings
        return {
            "drawdown_limits": [t.to_dict() for t in self.drawdown_limits],
            "performance_milestones": [t.to_dict() for t in self.performance_milestones],
            "market_condition_thresholds": {
                "volatility_change": m.volatility_change,
                "volume_change": m.volume_change,
                "correlation_change": m.correlation_change,
            },
            "statistical_significance_settings": {
                "minimum_trades": s.minimum_trades,
                "required_confidence": s.required_confidence,
                "enable_notifications": s.enable_notifications,
            },
            "global_settings": {
                "enable_alerts": g.enable_alerts,
                "max_alerts_per_day": g.max_alerts_per_day,
                "auto_resolve_after_days": g.auto_resolve_after_days,
            },
        }


@dataclass
class QuietHours:
    enabled: bool = False
    start: str = "22:00"
    end: str = "08:00"
    timezone: str = "UTC"


@dataclass
class NotificationFrequency:
    immediate: list = field(default_factory=list)
    daily: list = field(default_factory=list)
    weekly: list = field(default_factory=list)

    def bucket_for(self, alert_type):
        """Immediate wins over daily over weekly; unlisted types are immediate.

        The quiet-hours override for Critical alerts follows this bucket, so
        an unlisted Critical type still breaks through at night.
        """
        if alert_type in self.immediate:
            return FrequencyBucket.IMMEDIATE
        if alert_type in self.daily:
            return FrequencyBucket.DAILY
        if alert_type in self.weekly:
            return FrequencyBucket.WEEKLY
        return FrequencyBucket.IMMEDIATE


@dataclass
class NotificationPreferences:
    user_id: str = ""
    channels: dict = field(default_factory=lambda: {t: [NotificationChannel.IN_APP] for t in AlertType})
    quiet_hours: QuietHours = field(default_factory=QuietHours)
    frequency: NotificationFrequency = field(default_factory=NotificationFrequency)
    severity_filters: dict = field(default_factory=lambda: {c: list(AlertSeverity) for c in NotificationChannel})

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "channels": {t.value: [c.value for c in chans] for t, chans in self.channels.items()},
            "quiet_hours": {
                "enabled": self.quiet_hours.enabled,
                "start": self.quiet_hours.start,
                "end": self.quiet_hours.end,
                "timezone": self.quiet_hours.timezone,
            },
            "frequency": {
                "immediate": [t.value for t in self.frequency.immediate],
                "daily": [t.value for t in self.frequency.daily],
                "weekly": [t.value for t in self.frequency.weekly],
            },
            "severity_filters": {c.value: [s.value for s in sevs] for c, sevs in self.severity_filters.items()},
        }
