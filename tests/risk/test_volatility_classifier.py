import math

import pytest

from risk.schemas import RiskSettings, SizingMethod, VolatilityMetrics, VolatilityRegime
from risk.volatility import VolatilityClassifier, derive_parameters, regime_for_percentile


def _wave(amplitude, length=30, start=100.0):
    return [start * (1 + amplitude * math.sin(i)) for i in range(length)]


def _metrics(regime, atr_percent=1.0, volume_ratio=1.0):
    return VolatilityMetrics(
        symbol="BTC-USDT",
        realized_volatility=0.5,
        percentile_rank=50.0,
        regime=regime,
        atr=1.0,
        atr_percent=atr_percent,
        volume_ratio=volume_ratio,
    )


@pytest.mark.parametrize(
    "percentile, regime",
    [
        (0.0, VolatilityRegime.LOW),
        (19.9, VolatilityRegime.LOW),
        (20.0, VolatilityRegime.NORMAL),
        (39.9, VolatilityRegime.NORMAL),
        (40.0, VolatilityRegime.HIGH),
        (79.9, VolatilityRegime.HIGH),
        (80.0, VolatilityRegime.EXTREME),
        (100.0, VolatilityRegime.EXTREME),
    ],
)
def test_regime_boundaries(percentile, regime):
    assert regime_for_percentile(percentile) is regime


def test_first_sample_is_treated_as_median():
    classifier = VolatilityClassifier()

    metrics = classifier.classify("BTC-USDT", _wave(0.01), [10.0] * 30)

    assert metrics.percentile_rank == 50.0
    assert metrics.regime is VolatilityRegime.NORMAL
    assert metrics.realized_volatility > 0


def test_flat_history_stays_normal():
    classifier = VolatilityClassifier()

    regimes = [classifier.classify("BTC-USDT", [100.0] * 30, [10.0] * 30).regime for _ in range(5)]

    assert regimes == [VolatilityRegime.NORMAL] * 5
    assert classifier.history("BTC-USDT") == [0.0] * 5


def test_regime_is_relative_to_symbol_history():
    classifier = VolatilityClassifier()
    for _ in range(10):
        classifier.classify("BTC-USDT", _wave(0.01), [10.0] * 30)

    wild = classifier.classify("BTC-USDT", _wave(0.05), [10.0] * 30)
    calm = classifier.classify("BTC-USDT", _wave(0.001), [10.0] * 30)

    assert wild.regime is VolatilityRegime.EXTREME
    assert calm.regime is VolatilityRegime.LOW
    # Another symbol keeps its own history.
    assert classifier.classify("ETH-USDT", _wave(0.05), [10.0] * 30).percentile_rank == 50.0


def test_history_is_bounded():
    classifier = VolatilityClassifier(history_size=5)
    for amplitude in range(1, 11):
        classifier.classify("BTC-USDT", _wave(amplitude / 1000), [10.0] * 30)

    assert len(classifier.history("BTC-USDT")) == 5


def test_volume_ratio_and_atr_are_reported():
    classifier = VolatilityClassifier()
    prices = [100.0] * 30
    highs = [101.0] * 30
    lows = [99.0] * 30
    volumes = [10.0] * 29 + [40.0]

    metrics = classifier.classify("BTC-USDT", prices, volumes, highs=highs, lows=lows)

    assert metrics.atr == pytest.approx(2.0)
    assert metrics.atr_percent == pytest.approx(2.0)
    assert metrics.volume_ratio > 1.5


@pytest.mark.parametrize("regime", list(VolatilityRegime))
@pytest.mark.parametrize("atr_percent", [0.0, 1.5, 8.0])
def test_take_profit_keeps_two_to_one(regime, atr_percent):
    params = derive_parameters(_metrics(regime, atr_percent), RiskSettings())

    assert params.take_profit_multiplier >= 2 * params.stop_loss_multiplier
    assert 0.5 <= params.risk_per_trade_percent <= 10.0
    assert 1.0 <= params.max_daily_loss_percent <= 20.0
    assert params.regime is regime


def test_derived_limits_are_clamped():
    settings = RiskSettings(risk_per_trade_percent=9.0, max_daily_loss_percent=18.0)

    params = derive_parameters(_metrics(VolatilityRegime.LOW), settings)

    assert params.risk_per_trade_percent == 10.0
    assert params.max_daily_loss_percent == 20.0
    assert params.max_concurrent_positions == 5


def test_extreme_regime_caps_stop_and_switches_to_fixed_sizing():
    params = derive_parameters(_metrics(VolatilityRegime.EXTREME, atr_percent=50.0), RiskSettings())

    assert params.stop_loss_multiplier == 4.0
    assert params.sizing_method is SizingMethod.FIXED
    assert params.risk_per_trade_percent == pytest.approx(2.0)
    assert params.max_concurrent_positions == 1


def test_heavy_volume_in_normal_regime_uses_kelly():
    params = derive_parameters(_metrics(VolatilityRegime.NORMAL, volume_ratio=2.0), RiskSettings())

    assert params.sizing_method is SizingMethod.KELLY
