"""Data models."""
from models.enums import (
    AlertType, AlertSeverity, AlertStatus, NotificationChannel, ThresholdOperator,
    FrequencyBucket, RecommendationAction, SignificanceMilestone, Timeframe,
)
from models.alerts import StrategyAlert, StrategyRecommendation, ThresholdSnapshot, AlertMetrics, UserEngagement
from models.config import AlertConfiguration, NotificationPreferences
from models.performance import StrategyInfo, StrategyPerformance, MarketData
