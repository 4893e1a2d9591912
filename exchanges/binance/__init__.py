"""
Binance spot exchange adapter.
"""

from .client import BinanceClientError, BinanceSpotClient  # noqa: F401
