"""
Confidence threshold optimizer.

The minimum confidence a consensus needs before the engine acts starts from a
base threshold and moves with market conditions, recent performance and risk
tolerance. The base itself is periodically re-fit by replaying the recorded
outcome log against a sweep of candidate thresholds.
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from accounts.repository import TradingRepository
from confidence.schemas import (
    CandidateScore,
    ConfidenceRecord,
    OptimizationResult,
    Outcome,
    PerformanceMetrics,
    RiskTolerance,
    ThresholdAdjustment,
    ThresholdMarketContext,
    ThresholdSettings,
)

logger = logging.getLogger(__name__)

RISK_TOLERANCE_OFFSETS = {
    RiskTolerance.CONSERVATIVE: 0.10,
    RiskTolerance.MODERATE: 0.0,
    RiskTolerance.AGGRESSIVE: -0.05,
}
TREND_OFFSETS = {"STRONG_BULLISH": -0.03, "STRONG_BEARISH": -0.03, "NEUTRAL": 0.02}
VOLUME_OFFSETS = {"HIGH": -0.02, "LOW": 0.03}
LIQUIDITY_OFFSETS = {"LOW": 0.04}
SENTIMENT_OFFSETS = {"FEAR": 0.03, "GREED": 0.03}
TIME_OF_DAY_OFFSETS = {"OPENING": 0.02, "CLOSING": 0.01, "AFTER_HOURS": 0.05}
NEWS_OFFSETS = {"HIGH": 0.08, "MEDIUM": 0.03, "LOW": -0.01}
NEUTRAL_PNL_BAND = 1e-9


def outcome_for_pnl(pnl: float) -> Outcome:
    if pnl > NEUTRAL_PNL_BAND:
        return "PROFIT"
    if pnl < -NEUTRAL_PNL_BAND:
        return "LOSS"
    return "NEUTRAL"


class ConfidenceThresholdOptimizer:
    """Service object owning the confidence bar and its outcome log."""

    def __init__(
        self,
        settings: ThresholdSettings | None = None,
        *,
        repository: TradingRepository | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or ThresholdSettings.load()
        self._repository = repository
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._lock = threading.Lock()
        self._base_threshold = self._clamp(self.settings.base_threshold)
        self._records: List[ConfidenceRecord] = (
            list(repository.list_confidence_records()) if repository is not None else []
        )
        self._records_since_optimization = 0
        self._last_optimized_at = self._clock()
        self._history: List[OptimizationResult] = []

    @property
    def base_threshold(self) -> float:
        return self._base_threshold

    # ------------------------------------------------------------------ threshold
    def get_threshold(
        self,
        market: ThresholdMarketContext,
        performance: PerformanceMetrics | None = None,
        risk_tolerance: RiskTolerance | str = RiskTolerance.MODERATE,
    ) -> ThresholdAdjustment:
        performance = performance or self.performance_metrics()
        tolerance = RiskTolerance(risk_tolerance)
        reasons: List[str] = []

        volatility = self._scaled_volatility(market.volatility)
        volatility_adj = self._volatility_adjustment(volatility, reasons)
        performance_adj = self._performance_adjustment(performance, reasons)
        risk_adj = self._risk_adjustment(tolerance, performance.max_drawdown, reasons)
        market_adj = self._market_adjustment(market, reasons)

        base = self._base_threshold
        raw = base + volatility_adj + performance_adj + risk_adj + market_adj
        threshold = self._clamp(raw)
        if threshold != raw:
            reasons.append(f"clamped {raw:.3f} to {threshold:.3f}")
        return ThresholdAdjustment(
            base_threshold=base,
            threshold=threshold,
            volatility_adjustment=volatility_adj,
            performance_adjustment=performance_adj,
            risk_adjustment=risk_adj,
            market_adjustment=market_adj,
            reasons=tuple(reasons),
        )

    def _scaled_volatility(self, volatility: float) -> float:
        scale = self.settings.volatility_scale
        return volatility / scale if scale > 0 else volatility

    @staticmethod
    def _volatility_adjustment(volatility: float, reasons: List[str]) -> float:
        if volatility > 0.4:
            reasons.append("extreme volatility +0.15")
            return 0.15
        if volatility > 0.25:
            reasons.append("high volatility +0.08")
            return 0.08
        if volatility < 0.1:
            reasons.append("low volatility -0.05")
            return -0.05
        return 0.0

    @staticmethod
    def _performance_adjustment(performance: PerformanceMetrics, reasons: List[str]) -> float:
        adjustment = 0.0
        if performance.recent_accuracy > 0.75:
            adjustment -= 0.05
            reasons.append("strong recent accuracy -0.05")
        elif performance.recent_accuracy < 0.5:
            adjustment += 0.10
            reasons.append("weak recent accuracy +0.10")

        if performance.confidence_accuracy > 0.8:
            adjustment -= 0.03
        elif performance.confidence_accuracy < 0.5:
            adjustment += 0.05

        if performance.sharpe_ratio > 2.0:
            adjustment -= 0.02
        elif performance.sharpe_ratio < 0.5:
            adjustment += 0.05
        return adjustment

    @staticmethod
    def _risk_adjustment(tolerance: RiskTolerance, max_drawdown: float, reasons: List[str]) -> float:
        adjustment = RISK_TOLERANCE_OFFSETS[tolerance]
        if adjustment:
            reasons.append(f"{tolerance.value.lower()} tolerance {adjustment:+.2f}")
        if max_drawdown > 0.15:
            adjustment += 0.05
            reasons.append("deep drawdown +0.05")
        elif max_drawdown < 0.05:
            adjustment -= 0.02
        return adjustment

    @staticmethod
    def _market_adjustment(market: ThresholdMarketContext, reasons: List[str]) -> float:
        parts = (
            TREND_OFFSETS.get(market.trend.upper(), 0.0),
            VOLUME_OFFSETS.get(market.volume.upper(), 0.0),
            LIQUIDITY_OFFSETS.get(market.liquidity.upper(), 0.0),
            SENTIMENT_OFFSETS.get(market.sentiment.upper(), 0.0),
            TIME_OF_DAY_OFFSETS.get(market.time_of_day.upper(), 0.0),
            NEWS_OFFSETS.get(market.news_impact.upper(), 0.0),
        )
        adjustment = sum(parts)
        if adjustment:
            reasons.append(f"market conditions {adjustment:+.2f}")
        return adjustment

    def _clamp(self, value: float) -> float:
        return max(self.settings.min_threshold, min(self.settings.max_threshold, value))

    # ------------------------------------------------------------------ outcome log
    def record_outcome(
        self,
        *,
        symbol: str,
        confidence: float,
        threshold: float,
        pnl: float,
        executed: bool,
        market: ThresholdMarketContext | None = None,
    ) -> ConfidenceRecord:
        """Append an outcome and re-optimize when the count or time trigger fires."""
        record = ConfidenceRecord(
            timestamp=self._clock(),
            symbol=symbol,
            confidence=confidence,
            threshold=threshold,
            outcome=outcome_for_pnl(pnl),
            pnl=pnl,
            executed=executed,
            market_context=market.as_dict() if market else {},
        )
        with self._lock:
            self._records.append(record)
            self._records_since_optimization += 1
        if self._repository is not None:
            self._repository.record_confidence(record)
        if self._should_reoptimize():
            self.reoptimize()
        return record

    def records(self) -> List[ConfidenceRecord]:
        with self._lock:
            return list(self._records)

    def _should_reoptimize(self) -> bool:
        if self._records_since_optimization >= self.settings.reoptimize_every:
            return True
        elapsed = self._clock() - self._last_optimized_at
        return elapsed >= timedelta(hours=self.settings.reoptimize_hours) and self._records_since_optimization > 0

    # ------------------------------------------------------------------ optimization
    def candidate_thresholds(self) -> List[float]:
        start, stop, step = self.settings.min_threshold, self.settings.max_threshold, self.settings.step
        count = int(math.floor((stop - start) / step + 1e-9)) + 1
        return [round(start + i * step, 4) for i in range(count)]

    def score_threshold(self, threshold: float, records: Sequence[ConfidenceRecord]) -> CandidateScore:
        """
        Score the trades a threshold would have taken.

        A record counts as taken when its confidence clears the threshold and it
        was executed (only executed records carry a realized pnl).
        """
        taken = [r for r in records if r.executed and r.confidence >= threshold]
        if not taken:
            return CandidateScore(threshold, 0.0, 0.0, 0.0, 0, 0.0)
        wins = [r.pnl for r in taken if r.outcome == "PROFIT"]
        losses = [r.pnl for r in taken if r.outcome == "LOSS"]
        accuracy = len(wins) / len(taken)
        gross_loss = abs(sum(losses))
        gross_profit = sum(wins)
        if gross_loss > 0:
            profit_factor = gross_profit / gross_loss
        else:
            profit_factor = 3.0 if gross_profit > 0 else 0.0

        target = max(self.settings.target_trades, 1)
        frequency = max(0.0, 1 - abs(len(taken) - target) / target)
        drawdown = self._max_drawdown([r.pnl for r in taken])
        drawdown_score = max(0.0, 1 - drawdown / 0.2)

        score = (
            accuracy * 0.3
            + min(profit_factor, 3.0) / 3.0 * 0.3
            + frequency * 0.2
            + drawdown_score * 0.2
        )
        return CandidateScore(threshold, score, accuracy, profit_factor, len(taken), drawdown)

    def reoptimize(self) -> Optional[OptimizationResult]:
        records = self.records()
        if not any(r.executed for r in records):
            logger.info("Threshold re-optimization skipped: no executed outcomes yet.")
            with self._lock:
                self._records_since_optimization = 0
                self._last_optimized_at = self._clock()
            return None

        candidates = [self.score_threshold(t, records) for t in self.candidate_thresholds()]
        best = max(candidates, key=lambda c: (c.score, -abs(c.threshold - self._base_threshold)))
        previous = self._base_threshold
        with self._lock:
            self._base_threshold = self._clamp(best.threshold)
            self._records_since_optimization = 0
            self._last_optimized_at = self._clock()
        result = OptimizationResult(
            previous_threshold=previous,
            new_threshold=self._base_threshold,
            records_evaluated=len(records),
            candidates=candidates,
            optimized_at=self._last_optimized_at,
        )
        self._history.append(result)
        logger.info(
            "Confidence base threshold re-optimized %.2f -> %.2f over %d records (score %.3f)",
            previous,
            self._base_threshold,
            len(records),
            best.score,
        )
        return result

    def _max_drawdown(self, pnls: Sequence[float]) -> float:
        if not pnls:
            return 0.0
        equity = self.settings.reference_equity + np.cumsum(np.asarray(pnls, dtype="float64"))
        equity = np.concatenate(([self.settings.reference_equity], equity))
        peaks = np.maximum.accumulate(equity)
        drawdowns = (peaks - equity) / np.where(peaks > 0, peaks, 1.0)
        return float(drawdowns.max())

    # ------------------------------------------------------------------ analytics
    def performance_metrics(self) -> PerformanceMetrics:
        records = self.records()
        executed = [r for r in records if r.executed][-self.settings.recent_window:]
        if not executed:
            return PerformanceMetrics()
        decided = [r for r in executed if r.outcome != "NEUTRAL"]
        wins = [r for r in decided if r.outcome == "PROFIT"]
        recent_accuracy = len(wins) / len(decided) if decided else 0.5

        confident = [r for r in decided if r.confidence >= 0.8]
        if confident:
            confidence_accuracy = sum(1 for r in confident if r.outcome == "PROFIT") / len(confident)
        else:
            confidence_accuracy = recent_accuracy

        pnls = np.asarray([r.pnl for r in executed], dtype="float64")
        std = float(pnls.std(ddof=1)) if len(pnls) > 1 else 0.0
        sharpe = float(pnls.mean() / std * math.sqrt(len(pnls))) if std > 0 else 1.0
        return PerformanceMetrics(
            recent_accuracy=recent_accuracy,
            confidence_accuracy=confidence_accuracy,
            sharpe_ratio=sharpe,
            max_drawdown=self._max_drawdown(list(pnls)),
            sample_size=len(executed),
        )

    def analytics(self) -> Dict[str, object]:
        metrics = self.performance_metrics()
        return {
            "base_threshold": self._base_threshold,
            "total_records": len(self.records()),
            "recent_accuracy": metrics.recent_accuracy,
            "sharpe_ratio": metrics.sharpe_ratio,
            "max_drawdown": metrics.max_drawdown,
            "last_optimized_at": self._last_optimized_at.isoformat(),
            "threshold_history": [
                {
                    "from": result.previous_threshold,
                    "to": result.new_threshold,
                    "records": result.records_evaluated,
                    "at": result.optimized_at.isoformat(),
                }
                for result in self._history
            ],
        }
