"""
Live market context for the decision engine.

Pulls a quote and recent candles from the configured market-data venue and
shapes them into the views the advisors, the volatility classifier and the
confidence optimizer consume.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from accounts.repository import TradingRepository
from confidence.schemas import ThresholdMarketContext
from exchanges.base_client import Candle, ExchangeClient, ExchangeError, Quote
from models.schemas import MarketSnapshot
from risk.schemas import VolatilityMetrics

logger = logging.getLogger(__name__)

RECENT_CLOSES = 24


@dataclass(slots=True)
class MarketData:
    snapshot: MarketSnapshot
    quote: Quote
    candles: List[Candle] = field(default_factory=list)

    @property
    def closes(self) -> List[float]:
        return [candle.close for candle in self.candles]

    @property
    def highs(self) -> List[float]:
        return [candle.high for candle in self.candles]

    @property
    def lows(self) -> List[float]:
        return [candle.low for candle in self.candles]

    @property
    def volumes(self) -> List[float]:
        return [candle.volume for candle in self.candles]


class MarketDataService:
    """Fetch quote and candle history for a symbol from one venue."""

    def __init__(
        self,
        client: ExchangeClient,
        *,
        repository: TradingRepository | None = None,
        interval: str = "1h",
        limit: int = 100,
    ) -> None:
        self.client = client
        self._repository = repository
        self.interval = interval
        self.limit = limit

    async def snapshot(self, symbol: str) -> MarketData:
        quote, candles = await asyncio.gather(
            self.client.quote(symbol),
            self.client.fetch_candles(symbol, interval=self.interval, limit=self.limit),
        )
        price = quote.last_price or quote.mid
        if price <= 0:
            raise ExchangeError(f"{self.client.name} returned no usable price for {symbol}", exchange=self.client.name)
        if not candles:
            logger.warning("No candle history from %s for %s", self.client.name, symbol)

        open_position = None
        if self._repository is not None:
            position = self._repository.get_open_position(symbol)
            if position is not None:
                open_position = {
                    "side": position.side,
                    "quantity": position.quantity,
                    "entry_price": position.entry_price,
                    "stop_loss": position.stop_loss,
                    "take_profit": position.take_profit,
                }

        snapshot = MarketSnapshot(
            symbol=symbol,
            price=price,
            bid=quote.bid or None,
            ask=quote.ask or None,
            volume_24h=quote.volume_24h,
            recent_closes=tuple(candle.close for candle in candles[-RECENT_CLOSES:]),
            open_position=open_position,
            metadata={"source": self.client.name, "interval": self.interval},
        )
        return MarketData(snapshot=snapshot, quote=quote, candles=list(candles))


def enrich_snapshot(snapshot: MarketSnapshot, metrics: VolatilityMetrics) -> MarketSnapshot:
    snapshot.realized_volatility = metrics.realized_volatility
    snapshot.regime = metrics.regime.value
    snapshot.atr_percent = metrics.atr_percent
    snapshot.volume_ratio = metrics.volume_ratio
    return snapshot


def trend_label(closes: List[float], lookback: int = 20) -> str:
    window = closes[-lookback:]
    if len(window) < 2 or window[0] <= 0:
        return "NEUTRAL"
    change = (window[-1] - window[0]) / window[0] * 100
    if change > 5:
        return "STRONG_BULLISH"
    if change > 1:
        return "BULLISH"
    if change < -5:
        return "STRONG_BEARISH"
    if change < -1:
        return "BEARISH"
    return "NEUTRAL"


def threshold_context(
    data: MarketData,
    metrics: Optional[VolatilityMetrics] = None,
    *,
    news_impact: str = "NONE",
) -> ThresholdMarketContext:
    """Map live market data onto the categorical labels the optimizer scores."""
    volume = "NORMAL"
    if metrics is not None:
        if metrics.volume_ratio >= 1.5:
            volume = "HIGH"
        elif metrics.volume_ratio <= 0.5:
            volume = "LOW"

    spread = data.quote.spread_percent
    if spread <= 0.05:
        liquidity = "HIGH"
    elif spread >= 0.5:
        liquidity = "LOW"
    else:
        liquidity = "NORMAL"

    return ThresholdMarketContext(
        volatility=metrics.realized_volatility if metrics is not None else 0.0,
        trend=trend_label(data.closes),
        volume=volume,
        liquidity=liquidity,
        news_impact=news_impact,
    )
