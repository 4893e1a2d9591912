import pytest

from confidence.optimizer import ConfidenceThresholdOptimizer, outcome_for_pnl
from confidence.schemas import (
    PerformanceMetrics,
    RiskTolerance,
    ThresholdMarketContext,
    ThresholdSettings,
)


@pytest.fixture
def optimizer(repository, clock):
    return ConfidenceThresholdOptimizer(
        ThresholdSettings(reoptimize_every=1_000), repository=repository, clock=clock
    )


def _record(optimizer, confidence, pnl, executed=True):
    return optimizer.record_outcome(
        symbol="BTC-USDT", confidence=confidence, threshold=0.65, pnl=pnl, executed=executed
    )


def test_neutral_conditions_give_near_base_threshold(optimizer):
    adjustment = optimizer.get_threshold(ThresholdMarketContext(), PerformanceMetrics())

    # low volatility -0.05, neutral trend +0.02
    assert adjustment.threshold == pytest.approx(0.62)
    assert adjustment.volatility_adjustment == pytest.approx(-0.05)
    assert adjustment.market_adjustment == pytest.approx(0.02)
    assert adjustment.total_adjustment == pytest.approx(-0.03)
    assert "low volatility -0.05" in adjustment.reasons


@pytest.mark.parametrize("volatility, expected", [(0.15, 0.67), (0.3, 0.75), (0.5, 0.82)])
def test_volatility_raises_the_bar(optimizer, volatility, expected):
    adjustment = optimizer.get_threshold(
        ThresholdMarketContext(volatility=volatility), PerformanceMetrics()
    )

    assert adjustment.threshold == pytest.approx(expected)


def test_volatility_scale_keeps_crypto_levels_apart(repository, clock):
    scaled = ConfidenceThresholdOptimizer(
        ThresholdSettings(volatility_scale=2.0, reoptimize_every=1_000), repository=repository, clock=clock
    )

    calm = scaled.get_threshold(ThresholdMarketContext(volatility=0.6), PerformanceMetrics())
    stressed = scaled.get_threshold(ThresholdMarketContext(volatility=1.0), PerformanceMetrics())

    assert calm.volatility_adjustment == pytest.approx(0.08)
    assert stressed.volatility_adjustment == pytest.approx(0.15)
    assert ThresholdSettings.load().volatility_scale == 2.0


def test_risk_tolerance_shifts_threshold(optimizer):
    market = ThresholdMarketContext(volatility=0.15)
    performance = PerformanceMetrics()

    conservative = optimizer.get_threshold(market, performance, RiskTolerance.CONSERVATIVE)
    aggressive = optimizer.get_threshold(market, performance, "AGGRESSIVE")

    assert conservative.threshold == pytest.approx(0.77)
    assert aggressive.threshold == pytest.approx(0.62)


def test_threshold_is_clamped_high(optimizer):
    market = ThresholdMarketContext(volatility=0.5, liquidity="LOW", news_impact="HIGH")
    weak = PerformanceMetrics(
        recent_accuracy=0.3, confidence_accuracy=0.3, sharpe_ratio=0.2, max_drawdown=0.2
    )

    adjustment = optimizer.get_threshold(market, weak, RiskTolerance.CONSERVATIVE)

    assert adjustment.threshold == 0.9
    assert any(reason.startswith("clamped") for reason in adjustment.reasons)


def test_threshold_is_clamped_low(optimizer):
    market = ThresholdMarketContext(
        volatility=0.05, trend="STRONG_BULLISH", volume="HIGH", news_impact="LOW"
    )
    strong = PerformanceMetrics(
        recent_accuracy=0.9, confidence_accuracy=0.9, sharpe_ratio=3.0, max_drawdown=0.01
    )

    adjustment = optimizer.get_threshold(market, strong, RiskTolerance.AGGRESSIVE)

    assert adjustment.threshold == 0.4


@pytest.mark.parametrize("pnl, outcome", [(12.5, "PROFIT"), (-3.0, "LOSS"), (0.0, "NEUTRAL")])
def test_outcome_classification(pnl, outcome):
    assert outcome_for_pnl(pnl) == outcome


def test_record_outcome_is_persisted(optimizer, repository, clock):
    record = optimizer.record_outcome(
        symbol="ETH-USDT",
        confidence=0.8,
        threshold=0.7,
        pnl=4.2,
        executed=True,
        market=ThresholdMarketContext(trend="BULLISH"),
    )

    assert record.outcome == "PROFIT"
    assert record.timestamp == clock()
    assert record.market_context["trend"] == "BULLISH"
    assert repository.list_confidence_records() == [record]
    assert optimizer.records() == [record]


def test_records_are_restored_from_repository(optimizer, repository, clock):
    _record(optimizer, 0.8, 5.0)

    restored = ConfidenceThresholdOptimizer(ThresholdSettings(), repository=repository, clock=clock)

    assert len(restored.records()) == 1


def test_reoptimize_without_executed_outcomes_is_a_noop(optimizer):
    _record(optimizer, 0.9, 0.0, executed=False)

    assert optimizer.reoptimize() is None
    assert optimizer.base_threshold == 0.65


def test_reoptimize_picks_threshold_that_filters_losers(repository, clock):
    optimizer = ConfidenceThresholdOptimizer(
        ThresholdSettings(base_threshold=0.45, reoptimize_every=1_000),
        repository=repository,
        clock=clock,
    )
    for _ in range(10):
        _record(optimizer, 0.85, 10.0)
        _record(optimizer, 0.5, -10.0)

    result = optimizer.reoptimize()

    assert result is not None
    assert result.previous_threshold == 0.45
    assert result.new_threshold == pytest.approx(0.55)
    assert optimizer.base_threshold == pytest.approx(0.55)
    assert result.records_evaluated == 20
    assert len(result.candidates) == len(optimizer.candidate_thresholds())


def test_count_trigger_reoptimizes(repository, clock):
    optimizer = ConfidenceThresholdOptimizer(
        ThresholdSettings(reoptimize_every=3), repository=repository, clock=clock
    )
    for _ in range(3):
        _record(optimizer, 0.8, 1.0)

    assert len(optimizer.analytics()["threshold_history"]) == 1


def test_time_trigger_reoptimizes(optimizer, clock):
    _record(optimizer, 0.8, 1.0)
    assert optimizer.analytics()["threshold_history"] == []

    clock.advance(25 * 3600)
    _record(optimizer, 0.8, 1.0)

    assert len(optimizer.analytics()["threshold_history"]) == 1


def test_candidate_sweep_covers_bounds(optimizer):
    candidates = optimizer.candidate_thresholds()

    assert candidates[0] == 0.4
    assert candidates[-1] == 0.9
    assert len(candidates) == 11


def test_performance_metrics_from_outcomes(optimizer):
    for pnl in (10.0, 10.0, 10.0, -5.0):
        _record(optimizer, 0.85, pnl)

    metrics = optimizer.performance_metrics()

    assert metrics.recent_accuracy == pytest.approx(0.75)
    assert metrics.confidence_accuracy == pytest.approx(0.75)
    assert metrics.sample_size == 4
    assert metrics.max_drawdown == pytest.approx(5.0 / 1030.0)
