"""
Market data access and feature engineering for volatility classification.
"""

from .indicators import IndicatorCalculator, IndicatorResult  # noqa: F401
from .influx import InfluxConfig  # noqa: F401
