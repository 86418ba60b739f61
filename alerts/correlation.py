"""Cross-strategy correlation detection.

A detector is any object with ``detect(strategies, performances, config, now=None)``
returning a list of alerts. Detectors must never raise and must finish in time
bounded by the number of strategies they are handed.
"""
import logging
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

import numpy as np

from models.alerts import StrategyAlert, ThresholdSnapshot, new_alert_id
from models.enums import AlertType, AlertSeverity, ThresholdOperator

logger = logging.getLogger("stratalerts.alerts.correlation")


@runtime_checkable
class CorrelationDetector(Protocol):
    def detect(self, strategies, performances, config, now=None) -> list: ...


class NullCorrelationDetector:
    """Reports nothing."""

    def detect(self, strategies, performances, config, now=None):
        return []


class ReturnCorrelationDetector:
    """Flags groups of active strategies whose recent returns fall together.

    Two strategies are linked when their monthly return series correlate at or
    above ``min_correlation`` over their common tail and the mean of each one's
    last ``lookback`` returns is negative. Linked strategies form one group and
    each group yields one alert.
    """

    def __init__(self, min_correlation=0.7, min_periods=3, lookback=3, max_strategies=200):
        self.min_correlation = min_correlation
        self.min_periods = min_periods
        self.lookback = lookback
        self.max_strategies = max_strategies

    @classmethod
    def from_config(cls, config):
        cfg = (config or {}).get("correlation", {})
        return cls(
            min_correlation=float(cfg.get("min_correlation", 0.7)),
            min_periods=int(cfg.get("min_periods", 3)),
            lookback=int(cfg.get("lookback", 3)),
            max_strategies=int(cfg.get("max_strategies", 200)),
        )

    def detect(self, strategies, performances, config, now=None):
        if not config.global_settings.enable_alerts:
            return []
        try:
            return self._detect(strategies, performances or {}, now or datetime.now(timezone.utc))
        except Exception as e:
            logger.warning(f"Correlation detection failed: {e}")
            return []

    def _degrading(self, returns):
        tail = returns[-self.lookback:]
        return len(tail) > 0 and float(np.mean(tail)) < 0

    def _detect(self, strategies, performances, now):
        candidates = []
        for strategy in strategies:
            if not strategy.is_active:
                continue
            perf = performances.get(strategy.id)
            if perf is None or len(perf.monthly_returns) < self.min_periods:
                continue
            returns = np.asarray(perf.monthly_returns, dtype=float)
            if self._degrading(returns):
                candidates.append((strategy, returns))

        if len(candidates) > self.max_strategies:
            logger.info(f"Correlation scan capped at {self.max_strategies} of {len(candidates)} strategies")
            candidates = candidates[:self.max_strategies]

        n = len(candidates)
        parent = list(range(n))

        def find(i):
            while parent[i] != i:
                parent[i] = parent[parent[i]]
                i = parent[i]
            return i

        links = {}
        for i in range(n):
            for j in range(i + 1, n):
                corr = self._correlation(candidates[i][1], candidates[j][1])
                if corr is None or corr < self.min_correlation:
                    continue
                parent[find(i)] = find(j)
                links[(i, j)] = corr

        groups = {}
        for i in range(n):
            groups.setdefault(find(i), []).append(i)

        alerts = []
        for members in groups.values():
            if len(members) < 2:
                continue
            member_set = set(members)
            corrs = [c for (i, j), c in links.items() if i in member_set and j in member_set]
            alerts.append(self._alert([candidates[i][0] for i in members], max(corrs), now))
        return alerts

    def _correlation(self, a, b):
        k = min(len(a), len(b))
        if k < self.min_periods:
            return None
        x, y = a[-k:], b[-k:]
        if np.std(x) == 0 or np.std(y) == 0:
            return None
        corr = float(np.corrcoef(x, y)[0, 1])
        return None if np.isnan(corr) else corr

    def _alert(self, strategies, peak_corr, now):
        ids = sorted(s.id for s in strategies)
        names = ", ".join(s.title for s in sorted(strategies, key=lambda s: s.id))
        return StrategyAlert(
            id=new_alert_id("correlation", ids[0]),
            strategy_id=ids[0],
            strategy_name=names,
            type=AlertType.STRATEGY_CORRELATION,
            severity=AlertSeverity.MEDIUM,
            title="Correlated Performance Issues Detected",
            message=(f"{len(ids)} strategies show correlated performance degradation "
                     f"(peak correlation {peak_corr:.2f}): {names}"),
            actionable=True,
            threshold=ThresholdSnapshot(metric=f"correlation:{','.join(ids)}",
                                        operator=ThresholdOperator.GREATER_THAN,
                                        value=self.min_correlation),
            current_value=round(peak_corr, 4),
            suggested_actions=[
                "Review market conditions affecting these strategies",
                "Consider systematic issues in shared methodology",
                "Evaluate if strategy parameters need adjustment",
            ],
            metadata={"strategyIds": ids, "peakCorrelation": round(peak_corr, 4)},
            created_at=now,
        )
