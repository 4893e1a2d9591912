import pytest

from accounts.models import Position
from data_pipeline.market_data import MarketDataService, enrich_snapshot, threshold_context, trend_label
from exchanges.base_client import ExchangeError
from risk.schemas import VolatilityMetrics, VolatilityRegime


def _metrics(volume_ratio=1.0, realized=0.3):
    return VolatilityMetrics(
        symbol="BTC-USDT",
        realized_volatility=realized,
        percentile_rank=50.0,
        regime=VolatilityRegime.NORMAL,
        atr=100.0,
        atr_percent=0.2,
        volume_ratio=volume_ratio,
    )


@pytest.mark.parametrize(
    "closes, expected",
    [
        ([100.0, 106.0], "STRONG_BULLISH"),
        ([100.0, 102.0], "BULLISH"),
        ([100.0, 100.5], "NEUTRAL"),
        ([100.0, 98.0], "BEARISH"),
        ([100.0, 90.0], "STRONG_BEARISH"),
        ([100.0], "NEUTRAL"),
    ],
)
def test_trend_label(closes, expected):
    assert trend_label(closes) == expected


def test_trend_label_only_looks_at_the_lookback_window():
    closes = [50.0] + [100.0] * 20

    assert trend_label(closes) == "NEUTRAL"


async def test_snapshot_combines_quote_and_candles(make_exchange, candles, repository):
    venue = make_exchange("binance", candles=candles([100.0] * 30))
    repository.record_position(Position("p1", "BTC-USDT", "BUY", 0.1, 49_000.0, stop_loss=48_000.0))
    service = MarketDataService(venue, repository=repository, limit=30)

    data = await service.snapshot("BTC-USDT")

    assert data.snapshot.price == 50_000.0
    assert len(data.snapshot.recent_closes) == 24
    assert data.snapshot.metadata["source"] == "binance"
    assert data.snapshot.open_position["entry_price"] == 49_000.0
    assert data.closes == [100.0] * 30


async def test_snapshot_without_price_raises(make_exchange):
    venue = make_exchange("okx", bid=0.0, ask=0.0, last_price=0.0)
    service = MarketDataService(venue)

    with pytest.raises(ExchangeError):
        await service.snapshot("BTC-USDT")


async def test_missing_candles_are_logged(make_exchange, caplog):
    service = MarketDataService(make_exchange("okx"))

    data = await service.snapshot("ETH-USDT")

    assert data.candles == []
    assert data.snapshot.open_position is None
    assert "No candle history" in caplog.text


async def test_threshold_context_labels(make_exchange, candles):
    tight = MarketDataService(make_exchange("binance", candles=candles([100.0, 110.0])))
    wide = MarketDataService(make_exchange("okx", bid=99.0, ask=101.0))

    tight_context = threshold_context(await tight.snapshot("BTC-USDT"), _metrics(volume_ratio=2.0))
    wide_context = threshold_context(await wide.snapshot("BTC-USDT"), _metrics(volume_ratio=0.4))

    assert tight_context.liquidity == "HIGH"
    assert tight_context.volume == "HIGH"
    assert tight_context.trend == "STRONG_BULLISH"
    assert tight_context.volatility == 0.3
    assert wide_context.liquidity == "LOW"
    assert wide_context.volume == "LOW"


async def test_threshold_context_without_metrics(make_exchange):
    data = await MarketDataService(make_exchange("okx")).snapshot("BTC-USDT")

    context = threshold_context(data, news_impact="HIGH")

    assert context.volatility == 0.0
    assert context.volume == "NORMAL"
    assert context.news_impact == "HIGH"


def test_enrich_snapshot_copies_volatility_fields(snapshot):
    enriched = enrich_snapshot(snapshot, _metrics())

    assert enriched.regime == "NORMAL"
    assert enriched.realized_volatility == 0.3
    assert enriched.atr_percent == 0.2
