"""
Volatility regime classification and adaptive risk parameter derivation.

The regime for a symbol is decided by where its current realized volatility
sits within that symbol's own recent history, not against a global constant.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, Sequence

import numpy as np

from data_pipeline.indicators import IndicatorCalculator
from risk.schemas import (
    AdaptiveRiskParameters,
    RiskSettings,
    SizingMethod,
    VolatilityMetrics,
    VolatilityRegime,
    VolatilityTrend,
)

logger = logging.getLogger(__name__)

HISTORY_SIZE = 100
REGIME_THRESHOLDS = (
    (20.0, VolatilityRegime.LOW),
    (40.0, VolatilityRegime.NORMAL),
    (80.0, VolatilityRegime.HIGH),
)
RISK_MULTIPLIERS = {
    VolatilityRegime.LOW: 1.5,
    VolatilityRegime.NORMAL: 1.0,
    VolatilityRegime.HIGH: 0.7,
    VolatilityRegime.EXTREME: 0.4,
}
TAKE_PROFIT_FACTORS = {
    VolatilityRegime.LOW: 0.8,
    VolatilityRegime.NORMAL: 1.0,
    VolatilityRegime.HIGH: 1.2,
    VolatilityRegime.EXTREME: 1.5,
}
BASE_STOP_MULTIPLIER = 2.0
BASE_TAKE_PROFIT_MULTIPLIER = 3.0
MIN_REWARD_RISK = 2.0
RISK_PER_TRADE_BOUNDS = (0.5, 10.0)
MAX_DAILY_LOSS_BOUNDS = (1.0, 20.0)
TREND_CHANGE = 0.10


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def regime_for_percentile(percentile: float) -> VolatilityRegime:
    for bound, regime in REGIME_THRESHOLDS:
        if percentile < bound:
            return regime
    return VolatilityRegime.EXTREME


class VolatilityClassifier:
    """Classify per-symbol volatility against a bounded rolling history."""

    def __init__(
        self,
        *,
        calculator: IndicatorCalculator | None = None,
        history_size: int = HISTORY_SIZE,
    ) -> None:
        self.calculator = calculator or IndicatorCalculator()
        self.history_size = history_size
        self._history: Dict[str, Deque[float]] = {}

    def classify(
        self,
        symbol: str,
        prices: Sequence[float],
        volumes: Sequence[float],
        *,
        highs: Sequence[float] | None = None,
        lows: Sequence[float] | None = None,
    ) -> VolatilityMetrics:
        """
        Compute volatility metrics for ``symbol``.

        ``prices`` are closes, oldest first. When highs/lows are not provided
        the true range degenerates to close-to-close moves.
        """
        realized = self.calculator.realized_volatility(prices) or 0.0
        history = self._history.setdefault(symbol, deque(maxlen=self.history_size))
        previous = history[-1] if history else None

        percentile = self._percentile_rank(history, realized)
        # Without any spread in the history there is nothing to rank against.
        if all(sample == realized for sample in history):
            regime = VolatilityRegime.NORMAL
        else:
            regime = regime_for_percentile(percentile)
        history.append(realized)

        atr = self.calculator.average_true_range(
            highs if highs is not None else prices,
            lows if lows is not None else prices,
            prices,
        ) or 0.0
        last_price = float(prices[-1]) if len(prices) else 0.0
        atr_percent = atr / last_price * 100 if last_price > 0 else 0.0
        volume_ratio = self.calculator.volume_ratio(volumes) or 1.0

        metrics = VolatilityMetrics(
            symbol=symbol,
            realized_volatility=realized,
            percentile_rank=percentile,
            regime=regime,
            atr=atr,
            atr_percent=atr_percent,
            volume_ratio=volume_ratio,
            trend=self._trend(previous, realized),
        )
        logger.debug(
            "Volatility %s: realized=%.4f pct=%.1f regime=%s atr%%=%.3f",
            symbol,
            realized,
            percentile,
            regime.value,
            atr_percent,
        )
        return metrics

    def history(self, symbol: str) -> list[float]:
        return list(self._history.get(symbol, ()))

    @staticmethod
    def _percentile_rank(history: Sequence[float], value: float) -> float:
        # With no history the current sample is the median by definition.
        if not history:
            return 50.0
        samples = np.asarray(history, dtype="float64")
        below = float(np.count_nonzero(samples < value))
        equal = float(np.count_nonzero(samples == value))
        return (below + 0.5 * equal) / len(samples) * 100

    @staticmethod
    def _trend(previous: float | None, current: float) -> VolatilityTrend:
        if previous is None or previous <= 0:
            return VolatilityTrend.STABLE
        change = (current - previous) / previous
        if change > TREND_CHANGE:
            return VolatilityTrend.RISING
        if change < -TREND_CHANGE:
            return VolatilityTrend.FALLING
        return VolatilityTrend.STABLE


def base_parameters(settings: RiskSettings) -> AdaptiveRiskParameters:
    """Parameters used when no volatility regime is known."""
    return AdaptiveRiskParameters(
        risk_per_trade_percent=_clamp(settings.risk_per_trade_percent, *RISK_PER_TRADE_BOUNDS),
        max_daily_loss_percent=_clamp(settings.max_daily_loss_percent, *MAX_DAILY_LOSS_BOUNDS),
        stop_loss_multiplier=BASE_STOP_MULTIPLIER,
        take_profit_multiplier=BASE_STOP_MULTIPLIER * MIN_REWARD_RISK,
        max_concurrent_positions=settings.max_concurrent_positions,
        sizing_method=SizingMethod.ADAPTIVE,
        regime=None,
    )


def derive_parameters(metrics: VolatilityMetrics, settings: RiskSettings) -> AdaptiveRiskParameters:
    """Adapt the base risk policy to the measured volatility regime."""
    regime = metrics.regime
    factor = RISK_MULTIPLIERS[regime]
    risk_per_trade = _clamp(settings.risk_per_trade_percent * factor, *RISK_PER_TRADE_BOUNDS)
    max_daily_loss = _clamp(settings.max_daily_loss_percent * factor, *MAX_DAILY_LOSS_BOUNDS)

    atr_pct = max(metrics.atr_percent, 0.0)
    if regime is VolatilityRegime.LOW:
        stop_multiplier = max(1.5, BASE_STOP_MULTIPLIER - atr_pct * 0.5)
    elif regime is VolatilityRegime.HIGH:
        stop_multiplier = BASE_STOP_MULTIPLIER + atr_pct * 0.5
    elif regime is VolatilityRegime.EXTREME:
        stop_multiplier = min(4.0, BASE_STOP_MULTIPLIER + atr_pct * 0.75)
    else:
        stop_multiplier = BASE_STOP_MULTIPLIER

    take_profit_multiplier = max(
        BASE_TAKE_PROFIT_MULTIPLIER * TAKE_PROFIT_FACTORS[regime],
        stop_multiplier * MIN_REWARD_RISK,
    )

    base_positions = settings.max_concurrent_positions
    if regime is VolatilityRegime.LOW:
        max_positions = min(base_positions + 2, 10)
    elif regime is VolatilityRegime.HIGH:
        max_positions = max(base_positions - 1, 2)
    elif regime is VolatilityRegime.EXTREME:
        max_positions = max(base_positions - 2, 1)
    else:
        max_positions = base_positions

    if regime is VolatilityRegime.EXTREME:
        method = SizingMethod.FIXED
    elif regime is VolatilityRegime.HIGH:
        method = SizingMethod.VOLATILITY
    elif metrics.volume_ratio > 1.5:
        method = SizingMethod.KELLY
    else:
        method = SizingMethod.ADAPTIVE

    return AdaptiveRiskParameters(
        risk_per_trade_percent=risk_per_trade,
        max_daily_loss_percent=max_daily_loss,
        stop_loss_multiplier=stop_multiplier,
        take_profit_multiplier=take_profit_multiplier,
        max_concurrent_positions=max_positions,
        sizing_method=method,
        regime=regime,
    )
