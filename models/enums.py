"""Enums for alert types, severities, lifecycle states and notification routing."""
from enum import Enum


class AlertType(str, Enum):
    DRAWDOWN_LIMIT = "DrawdownLimit"
    PERFORMANCE_MILESTONE = "PerformanceMilestone"
    MARKET_CONDITION_CHANGE = "MarketConditionChange"
    STATISTICAL_SIGNIFICANCE = "StatisticalSignificance"
    STRATEGY_CORRELATION = "StrategyCorrelation"
    DISCIPLINE_VIOLATION = "DisciplineViolation"


class AlertSeverity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self):
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    AlertSeverity.LOW: 0,
    AlertSeverity.MEDIUM: 1,
    AlertSeverity.HIGH: 2,
    AlertSeverity.CRITICAL: 3,
}


class AlertStatus(str, Enum):
    ACTIVE = "Active"
    ACKNOWLEDGED = "Acknowledged"
    RESOLVED = "Resolved"
    DISMISSED = "Dismissed"

    @property
    def is_open(self):
        return self in (AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED)

    @property
    def is_terminal(self):
        return self in (AlertStatus.RESOLVED, AlertStatus.DISMISSED)


class NotificationChannel(str, Enum):
    IN_APP = "InApp"
    EMAIL = "Email"
    PUSH = "Push"
    SMS = "SMS"


class ThresholdOperator(str, Enum):
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EQUALS = "equals"


class FrequencyBucket(str, Enum):
    IMMEDIATE = "immediate"
    DAILY = "daily"
    WEEKLY = "weekly"


class RecommendationAction(str, Enum):
    INCREASE = "Increase"
    DECREASE = "Decrease"
    SUSPEND = "Suspend"
    ACTIVATE = "Activate"
    MONITOR = "Monitor"


class SignificanceMilestone(str, Enum):
    MINIMUM_TRADES = "MinimumTrades"
    CONFIDENCE_LEVEL = "ConfidenceLevel"


class Timeframe(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"

    @property
    def days(self):
        return {"day": 1, "week": 7, "month": 30}[self.value]
