"""Rule evaluators: map a strategy's performance state and a user's thresholds to new alerts.

Every evaluator is a pure function. None of them touch the alert store or
perform I/O, and none raise on missing performance data: a metric that is
absent from the snapshot simply cannot breach anything yet.
"""
import logging
from datetime import datetime, timezone

from models.alerts import StrategyAlert, ThresholdSnapshot, StrategyRecommendation, new_alert_id
from models.enums import (
    AlertType, AlertSeverity, ThresholdOperator, RecommendationAction, SignificanceMilestone,
)

logger = logging.getLogger("stratalerts.alerts.evaluators")

EQUALS_TOLERANCE = 0.001
EXCEPTIONAL_MULTIPLIER = 1.5
CRITICAL_DRAWDOWN_MULTIPLIER = 2.0

DRAWDOWN_METRICS = {"maxDrawdown", "currentDrawdown"}
MILESTONE_METRICS = {"profitFactor", "expectancy", "sharpeRatio", "winRate", "totalReturn"}

OPERATOR_MAP = {
    ThresholdOperator.GREATER_THAN: lambda v, t: v > t,
    ThresholdOperator.LESS_THAN: lambda v, t: v < t,
    ThresholdOperator.EQUALS: lambda v, t: abs(v - t) < EQUALS_TOLERANCE,
}

_OPERATOR_WORDS = {
    ThresholdOperator.GREATER_THAN: "exceeds",
    ThresholdOperator.LESS_THAN: "is below",
    ThresholdOperator.EQUALS: "reached",
}

# (minimum trades, confidence %) bands, highest first
CONFIDENCE_BANDS = [(100, 95.0), (50, 90.0), (30, 80.0), (20, 70.0), (0, 60.0)]

POSITION_INCREASE_ACTION = "Consider increasing position size for this high-performing strategy"
SUSPEND_ACTION = "IMMEDIATE ACTION: Consider suspending this strategy"


def confidence_for_trade_count(total_trades):
    """Confidence level (%) implied by sample size; a non-decreasing step function."""
    for min_trades, confidence in CONFIDENCE_BANDS:
        if total_trades >= min_trades:
            return confidence
    return CONFIDENCE_BANDS[-1][1]


def reliable_metrics(performance):
    """Metrics whose values can be trusted at the snapshot's sample size."""
    trades = performance.total_trades or 0
    reliable = []
    if trades >= 30:
        reliable += ["Win Rate", "Profit Factor", "Expectancy"]
    if trades >= 50:
        reliable += ["Average Win/Loss Ratio", "Maximum Drawdown"]
    if trades >= 100 and performance.sharpe_ratio:
        reliable += ["Sharpe Ratio", "Risk-Adjusted Returns"]
    return reliable


def threshold_breached(operator, value, threshold):
    if value is None:
        return False
    func = OPERATOR_MAP.get(operator)
    if func is None:
        return False
    return func(value, threshold)


def drawdown_value(performance, metric):
    if metric == "currentDrawdown":
        if performance.current_drawdown is not None:
            return performance.current_drawdown
        return performance.max_drawdown
    if metric == "maxDrawdown":
        return performance.max_drawdown
    return None


def milestone_value(performance, metric):
    if performance is None:
        return None
    if metric == "profitFactor":
        return performance.profit_factor
    if metric == "expectancy":
        return performance.expectancy
    if metric == "sharpeRatio":
        return performance.sharpe_ratio
    if metric == "winRate":
        return performance.win_rate
    if metric == "totalReturn":
        if performance.expectancy is None or performance.total_trades is None:
            return None
        return performance.expectancy * performance.total_trades
    return None


def _now(now):
    return now or datetime.now(timezone.utc)


# ── Drawdown ────────────────────────────────────────────

def drawdown_severity(rule, current_value):
    if rule.severity is not None:
        return rule.severity
    if current_value >= CRITICAL_DRAWDOWN_MULTIPLIER * rule.value:
        return AlertSeverity.CRITICAL
    return AlertSeverity.HIGH


def evaluate_drawdown(strategy, performance, config, now=None):
    """One alert per breached drawdown metric, carrying the most severe breached tier."""
    if not config.global_settings.enable_alerts:
        return []

    strongest = {}
    for rule in config.drawdown_limits_for(strategy.id):
        if not rule.enabled:
            continue
        value = drawdown_value(performance, rule.metric)
        if not threshold_breached(rule.operator, value, rule.value):
            continue
        severity = drawdown_severity(rule, value)
        best = strongest.get(rule.metric)
        if best is None or (severity.rank, rule.value) > (best[1].rank, best[0].value):
            strongest[rule.metric] = (rule, severity, value)

    return [_drawdown_alert(strategy, performance, rule, severity, value, now)
            for rule, severity, value in strongest.values()]


def _drawdown_alert(strategy, performance, rule, severity, value, now):
    actions = [
        "Review recent trades for pattern analysis",
        "Consider reducing position size temporarily",
        "Evaluate if market conditions have changed",
    ]
    if rule.suspend_strategy and severity == AlertSeverity.CRITICAL:
        actions += [
            SUSPEND_ACTION,
            "Review all recent trades for systematic issues",
            "Do not resume trading until issues are identified and resolved",
        ]
    else:
        actions.append("Monitor closely")

    return StrategyAlert(
        id=new_alert_id("drawdown", strategy.id),
        strategy_id=strategy.id,
        strategy_name=strategy.title,
        type=AlertType.DRAWDOWN_LIMIT,
        severity=severity,
        title=f"Drawdown Alert: {strategy.title}",
        message=(f"Strategy drawdown of {value:.2f}% {_OPERATOR_WORDS[rule.operator]} "
                 f"threshold of {rule.value:g}%"),
        actionable=True,
        threshold=ThresholdSnapshot(metric=rule.metric, operator=rule.operator, value=rule.value),
        current_value=value,
        suggested_actions=actions,
        metadata={
            "thresholdId": rule.id,
            "totalTrades": performance.total_trades,
            "winRate": performance.win_rate,
            "profitFactor": performance.profit_factor,
            "suspendStrategy": rule.suspend_strategy,
            "notificationChannels": [c.value for c in rule.notification_channels],
        },
        created_at=_now(now),
    )


# ── Milestones ──────────────────────────────────────────

def milestone_crossed(operator, target, previous, current):
    """True only on the transition into the target region, never while already inside it."""
    if previous is None or current is None:
        return False
    if operator == ThresholdOperator.GREATER_THAN:
        return previous < target <= current
    if operator == ThresholdOperator.LESS_THAN:
        return previous > target >= current
    if operator == ThresholdOperator.EQUALS:
        return abs(previous - target) >= EQUALS_TOLERANCE and abs(current - target) < EQUALS_TOLERANCE
    return False


def evaluate_milestones(strategy, previous, current, config, now=None):
    if not config.global_settings.enable_alerts or previous is None or current is None:
        return []

    alerts = []
    for milestone in config.milestones_for(strategy.id):
        if not milestone.enabled:
            continue
        prev_value = milestone_value(previous, milestone.metric)
        curr_value = milestone_value(current, milestone.metric)
        if not milestone_crossed(milestone.operator, milestone.value, prev_value, curr_value):
            continue
        alerts.append(_milestone_alert(strategy, current, milestone, curr_value, now))
    return alerts


def _milestone_alert(strategy, performance, milestone, value, now):
    actions = None
    if milestone.suggest_position_increase:
        actions = [
            "Review and document what makes this strategy successful",
            "Analyze if performance can be replicated in similar strategies",
        ]
        if milestone.value > 0 and value >= EXCEPTIONAL_MULTIPLIER * milestone.value:
            actions.insert(0, POSITION_INCREASE_ACTION)
            actions.append("Review risk management parameters for potential optimization")

    return StrategyAlert(
        id=new_alert_id("milestone", strategy.id),
        strategy_id=strategy.id,
        strategy_name=strategy.title,
        type=AlertType.PERFORMANCE_MILESTONE,
        severity=AlertSeverity.LOW,
        title=f"Performance Milestone: {strategy.title}",
        message=(f"Strategy achieved {milestone.metric} of {value:.2f}, "
                 f"{_OPERATOR_WORDS[milestone.operator]} target of {milestone.value:g}"),
        actionable=milestone.suggest_position_increase,
        threshold=ThresholdSnapshot(metric=milestone.metric, operator=milestone.operator, value=milestone.value),
        current_value=value,
        suggested_actions=actions,
        metadata={
            "thresholdId": milestone.id,
            "celebratory": milestone.celebratory,
            "totalTrades": performance.total_trades,
            "statisticallySignificant": performance.statistically_significant,
        },
        created_at=_now(now),
    )


# ── Market conditions ───────────────────────────────────

MARKET_STRATEGY_ID = "market"

_MARKET_CONDITIONS = [
    # (label, threshold metric, change attr, threshold attr, previous attr, current attr)
    ("Volatility", "volatilityChange", "volatility_change", "volatility_change",
     "previous_volatility", "current_volatility"),
    ("Volume", "volumeChange", "volume_change", "volume_change",
     "previous_volume", "current_volume"),
    ("Correlation", "correlationChange", "correlation_change", "correlation_change",
     "previous_correlation", "current_correlation"),
]


def _latest_return(performances, strategy_id):
    perf = (performances or {}).get(strategy_id)
    if perf is None or not perf.monthly_returns:
        return None
    return perf.monthly_returns[-1]


def recommend(condition, change, threshold, strategy, latest_return):
    """Recommendation for one strategy, or None when the strategy is unaffected."""
    severe = abs(change) >= CRITICAL_DRAWDOWN_MULTIPLIER * threshold
    if not strategy.is_active:
        if condition == "Volatility" and change < 0 and latest_return is not None and latest_return > 0:
            return RecommendationAction.ACTIVATE, "calmer markets suit this strategy's recent results"
        return None
    if severe and latest_return is not None and latest_return < 0:
        return RecommendationAction.SUSPEND, "severe shift while the strategy is already losing"
    if condition == "Volatility" and change > 0:
        return RecommendationAction.DECREASE, "higher volatility widens expected losses"
    if condition == "Volatility" and latest_return is not None and latest_return > 0:
        return RecommendationAction.INCREASE, "lower volatility with positive recent returns"
    return RecommendationAction.MONITOR, "watch for changes in fill quality and signal reliability"


def evaluate_market_conditions(strategies, market, config, performances=None, now=None):
    """At most one alert per breached market condition, with per-strategy recommendations."""
    if not config.global_settings.enable_alerts or market is None:
        return []

    thresholds = config.market_condition_thresholds
    alerts = []
    for label, metric, change_attr, thr_attr, prev_attr, curr_attr in _MARKET_CONDITIONS:
        change = getattr(market, change_attr)
        threshold = getattr(thresholds, thr_attr)
        if change is None or abs(change) <= threshold:
            continue

        recommendations = []
        for strategy in strategies:
            rec = recommend(label, change, threshold, strategy, _latest_return(performances, strategy.id))
            if rec is None:
                continue
            action, why = rec
            recommendations.append(StrategyRecommendation(
                strategy_id=strategy.id,
                strategy_name=strategy.title,
                action=action,
                reason=f"{label} change of {change:.1f}% may impact performance: {why}",
                confidence=round(min(0.95, 0.5 + abs(change) / (4 * threshold)), 2),
            ))

        severity = (AlertSeverity.HIGH if abs(change) >= CRITICAL_DRAWDOWN_MULTIPLIER * threshold
                    else AlertSeverity.MEDIUM)
        alerts.append(StrategyAlert(
            id=new_alert_id("market", label.lower()),
            strategy_id=MARKET_STRATEGY_ID,
            strategy_name="Market",
            type=AlertType.MARKET_CONDITION_CHANGE,
            severity=severity,
            title=f"Market Condition Change: {label}",
            message=f"{label} changed by {change:+.1f}%, beyond the {threshold:g}% threshold",
            actionable=bool(recommendations),
            threshold=ThresholdSnapshot(metric=metric, operator=ThresholdOperator.GREATER_THAN, value=threshold),
            current_value=change,
            suggested_actions=[f"{r.action.value} {r.strategy_name}" for r in recommendations] or None,
            recommendations=recommendations,
            metadata={
                "condition": label,
                "previousValue": getattr(market, prev_attr),
                "currentValue": getattr(market, curr_attr),
                "changePercentage": change,
                "affectedStrategies": [r.strategy_id for r in recommendations],
            },
            created_at=_now(now),
        ))
    return alerts


# ── Statistical significance ────────────────────────────

_MILESTONE_METRIC = {
    SignificanceMilestone.MINIMUM_TRADES: "totalTrades",
    SignificanceMilestone.CONFIDENCE_LEVEL: "confidenceLevel",
}


def significance_metric(milestone):
    return _MILESTONE_METRIC[milestone]


def evaluate_statistical_significance(strategy, performance, config, reached=(), now=None):
    """At most one alert: the first significance milestone satisfied and not yet reached."""
    settings = config.statistical_significance_settings
    if (not config.global_settings.enable_alerts or not settings.enable_notifications
            or performance is None or performance.statistically_significant):
        return []

    trades = performance.total_trades
    confidence = performance.confidence_level
    if confidence is None and trades is not None:
        confidence = confidence_for_trade_count(trades)

    checks = [
        (SignificanceMilestone.MINIMUM_TRADES,
         trades is not None and trades >= settings.minimum_trades,
         trades, settings.minimum_trades),
        (SignificanceMilestone.CONFIDENCE_LEVEL,
         confidence is not None and confidence >= settings.required_confidence,
         confidence, settings.required_confidence),
    ]
    # every milestone this snapshot satisfies is reached, even the ones not announced
    satisfied_now = [m.value for m, satisfied, _, _ in checks if satisfied]
    for milestone, satisfied, value, target in checks:
        if milestone in reached or not satisfied:
            continue
        if milestone == SignificanceMilestone.MINIMUM_TRADES:
            message = (f'Strategy "{strategy.title}" has reached {settings.minimum_trades} trades. '
                       "Performance metrics are now statistically significant.")
        else:
            message = (f'Strategy "{strategy.title}" has achieved {settings.required_confidence:g}% '
                       "confidence level. Reliable conclusions can now be drawn.")
        return [StrategyAlert(
            id=new_alert_id("stat-sig", strategy.id),
            strategy_id=strategy.id,
            strategy_name=strategy.title,
            type=AlertType.STATISTICAL_SIGNIFICANCE,
            severity=AlertSeverity.LOW,
            title=f"Statistical Significance: {strategy.title}",
            message=message,
            threshold=ThresholdSnapshot(metric=significance_metric(milestone),
                                        operator=ThresholdOperator.GREATER_THAN, value=float(target)),
            current_value=float(value),
            metadata={
                "milestone": milestone.value,
                "milestonesReached": satisfied_now,
                "tradesRequired": settings.minimum_trades,
                "currentTrades": trades,
                "confidenceLevel": confidence,
                "reliableMetrics": reliable_metrics(performance),
            },
            created_at=_now(now),
        )]
    return []
