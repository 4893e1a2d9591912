"""
Indicator calculation utilities.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from exchanges.base_client import Candle

HOURS_PER_YEAR = 365 * 24


@dataclass(slots=True)
class IndicatorResult:
    realized_volatility: float | None
    atr: float | None
    atr_percent: float | None
    volume_ratio: float | None
    close_price: float | None = None


class IndicatorCalculator:
    """Compute volatility-oriented indicators on OHLCV history."""

    def __init__(self, *, lookback: int = 20, atr_period: int = 14, periods_per_year: float = HOURS_PER_YEAR) -> None:
        self.lookback = lookback
        self.atr_period = atr_period
        self.periods_per_year = periods_per_year

    def compute(self, candles: Iterable[Candle | Sequence[float]]) -> IndicatorResult:
        df = self.candles_to_df(candles)
        if df.empty:
            return IndicatorResult(None, None, None, None, None)
        close = df["close"]
        latest_close = float(close.iloc[-1])
        atr = self.average_true_range(df["high"], df["low"], close)
        return IndicatorResult(
            realized_volatility=self.realized_volatility(close),
            atr=atr,
            atr_percent=(atr / latest_close * 100) if atr is not None and latest_close > 0 else None,
            volume_ratio=self.volume_ratio(df["volume"]),
            close_price=latest_close,
        )

    def realized_volatility(self, prices: Sequence[float] | pd.Series) -> float | None:
        """Annualized standard deviation of log returns over the lookback window."""
        series = pd.Series(prices, dtype="float64").tail(self.lookback + 1)
        series = series[series > 0]
        if len(series) < 3:
            return None
        returns = np.log(series / series.shift(1)).dropna()
        if returns.empty:
            return None
        std = float(returns.std(ddof=1))
        if math.isnan(std):
            return None
        return std * math.sqrt(self.periods_per_year)

    def average_true_range(
        self,
        highs: Sequence[float] | pd.Series,
        lows: Sequence[float] | pd.Series,
        closes: Sequence[float] | pd.Series,
    ) -> float | None:
        high = pd.Series(highs, dtype="float64").reset_index(drop=True)
        low = pd.Series(lows, dtype="float64").reset_index(drop=True)
        close = pd.Series(closes, dtype="float64").reset_index(drop=True)
        if len(close) < 2:
            return None
        prev_close = close.shift(1)
        true_range = pd.concat(
            [high - low, (high - prev_close).abs(), (low - prev_close).abs()],
            axis=1,
        ).max(axis=1)
        window = true_range.tail(self.atr_period)
        return float(window.mean())

    def volume_ratio(self, volumes: Sequence[float] | pd.Series) -> float | None:
        series = pd.Series(volumes, dtype="float64").tail(self.lookback)
        if series.empty:
            return None
        average = float(series.mean())
        if average <= 0:
            return None
        return float(series.iloc[-1]) / average

    @staticmethod
    def candles_to_df(candles: Iterable[Candle | Sequence[float]]) -> pd.DataFrame:
        rows = []
        for candle in candles:
            if isinstance(candle, Candle):
                rows.append(
                    {
                        "timestamp": pd.to_datetime(candle.timestamp, unit="ms"),
                        "open": candle.open,
                        "high": candle.high,
                        "low": candle.low,
                        "close": candle.close,
                        "volume": candle.volume,
                    }
                )
                continue
            if len(candle) < 6:
                continue
            ts, op, hi, lo, cl, vol = candle[:6]
            rows.append(
                {
                    "timestamp": pd.to_datetime(int(ts), unit="ms"),
                    "open": float(op),
                    "high": float(hi),
                    "low": float(lo),
                    "close": float(cl),
                    "volume": float(vol),
                }
            )
        if not rows:
            return pd.DataFrame(columns=["timestamp", "open", "high", "low", "close", "volume"])
        return pd.DataFrame(rows).sort_values("timestamp").reset_index(drop=True)
