"""Dataclasses for strategy records, performance snapshots and market deltas."""
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class StrategyInfo:
    id: str = ""
    title: str = ""
    is_active: bool = True
    methodology: str = ""
    primary_timeframe: str = ""

    @classmethod
    def from_dict(cls, d):
        return cls(
            id=str(d.get("id", "")),
            title=d.get("title", ""),
            is_active=bool(d.get("is_active", True)),
            methodology=d.get("methodology", ""),
            primary_timeframe=d.get("primary_timeframe", ""),
        )


@dataclass
class StrategyPerformance:
    """Already-computed performance metrics for one strategy. Missing values are None."""
    total_trades: Optional[int] = None
    max_drawdown: Optional[float] = None
    current_drawdown: Optional[float] = None
    profit_factor: Optional[float] = None
    expectancy: Optional[float] = None
    sharpe_ratio: Optional[float] = None
    win_rate: Optional[float] = None
    confidence_level: Optional[float] = None
    statistically_significant: bool = False
    monthly_returns: list = field(default_factory=list)
    performance_trend: Optional[str] = None

    @classmethod
    def from_dict(cls, d):
        d = d or {}
        return cls(
            total_trades=d.get("total_trades"),
            max_drawdown=d.get("max_drawdown"),
            current_drawdown=d.get("current_drawdown"),
            profit_factor=d.get("profit_factor"),
            expectancy=d.get("expectancy"),
            sharpe_ratio=d.get("sharpe_ratio"),
            win_rate=d.get("win_rate"),
            confidence_level=d.get("confidence_level"),
            statistically_significant=bool(d.get("statistically_significant", False)),
            monthly_returns=[float(r) for r in d.get("monthly_returns") or []],
            performance_trend=d.get("performance_trend"),
        )


@dataclass
class MarketData:
    """Percentage changes in market conditions since the previous observation."""
    volatility_change: Optional[float] = None
    volume_change: Optional[float] = None
    correlation_change: Optional[float] = None
    previous_volatility: Optional[float] = None
    current_volatility: Optional[float] = None
    previous_volume: Optional[float] = None
    current_volume: Optional[float] = None
    previous_correlation: Optional[float] = None
    current_correlation: Optional[float] = None

    @classmethod
    def from_dict(cls, d):
        d = d or {}
        return cls(**{k: d.get(k) for k in cls.__dataclass_fields__})
