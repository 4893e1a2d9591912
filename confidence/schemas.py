"""
Data structures for confidence threshold optimization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping

import config

Outcome = Literal["PROFIT", "LOSS", "NEUTRAL"]


class RiskTolerance(str, Enum):
    CONSERVATIVE = "CONSERVATIVE"
    MODERATE = "MODERATE"
    AGGRESSIVE = "AGGRESSIVE"


@dataclass(slots=True)
class ThresholdMarketContext:
    """
    Market conditions that move the confidence bar.

    ``volatility`` is annualized realized volatility as a fraction (0.25 ==
    25%); the optimizer divides it by ``ThresholdSettings.volatility_scale``
    before banding. The categorical fields accept the upper-case labels used
    by the adjustment tables; unknown labels contribute nothing.
    """

    volatility: float = 0.0
    trend: str = "NEUTRAL"  # STRONG_BULLISH, BULLISH, NEUTRAL, BEARISH, STRONG_BEARISH
    volume: str = "NORMAL"  # HIGH, NORMAL, LOW
    liquidity: str = "NORMAL"  # HIGH, NORMAL, LOW
    sentiment: str = "NEUTRAL"  # FEAR, NEUTRAL, GREED
    time_of_day: str = "REGULAR"  # OPENING, REGULAR, CLOSING, AFTER_HOURS
    news_impact: str = "NONE"  # HIGH, MEDIUM, LOW, NONE

    def as_dict(self) -> Dict[str, Any]:
        return {
            "volatility": self.volatility,
            "trend": self.trend,
            "volume": self.volume,
            "liquidity": self.liquidity,
            "sentiment": self.sentiment,
            "time_of_day": self.time_of_day,
            "news_impact": self.news_impact,
        }


@dataclass(slots=True)
class PerformanceMetrics:
    recent_accuracy: float = 0.5
    confidence_accuracy: float = 0.5
    sharpe_ratio: float = 1.0
    max_drawdown: float = 0.1
    sample_size: int = 0


@dataclass(slots=True, frozen=True)
class ThresholdAdjustment:
    base_threshold: float
    threshold: float
    volatility_adjustment: float
    performance_adjustment: float
    risk_adjustment: float
    market_adjustment: float
    reasons: tuple[str, ...] = ()

    @property
    def total_adjustment(self) -> float:
        return self.threshold - self.base_threshold


@dataclass(slots=True, frozen=True)
class ConfidenceRecord:
    """Append-only outcome log entry."""

    timestamp: datetime
    symbol: str
    confidence: float
    threshold: float
    outcome: Outcome
    pnl: float
    executed: bool
    market_context: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class CandidateScore:
    threshold: float
    score: float
    accuracy: float
    profit_factor: float
    trade_count: int
    max_drawdown: float


@dataclass(slots=True, frozen=True)
class OptimizationResult:
    previous_threshold: float
    new_threshold: float
    records_evaluated: int
    candidates: List[CandidateScore]
    optimized_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


@dataclass(slots=True)
class ThresholdSettings:
    base_threshold: float = 0.65
    min_threshold: float = 0.4
    max_threshold: float = 0.9
    step: float = 0.05
    target_trades: int = 50
    reoptimize_every: int = 100
    reoptimize_hours: float = 24.0
    recent_window: int = 50
    reference_equity: float = 1000.0
    # Realized volatility is divided by this before the 0.10/0.25/0.40 bands apply.
    volatility_scale: float = 1.0

    @classmethod
    def load(cls, overrides: Mapping[str, Any] | None = None) -> "ThresholdSettings":
        from services.storage.settings_store import merged_settings

        values = merged_settings("thresholds", config.THRESHOLD_SETTINGS)
        if overrides:
            values.update(overrides)
        return cls(
            base_threshold=float(values["base_threshold"]),
            min_threshold=float(values["min_threshold"]),
            max_threshold=float(values["max_threshold"]),
            step=float(values["step"]),
            target_trades=int(values["target_trades"]),
            reoptimize_every=int(values["reoptimize_every"]),
            reoptimize_hours=float(values["reoptimize_hours"]),
            recent_window=int(values["recent_window"]),
            reference_equity=float(values["reference_equity"]),
            volatility_scale=float(values["volatility_scale"]),
        )
