"""
Persistence of trades, positions, decisions and outcome records.
"""

from .models import DecisionRecord, Position, Trade  # noqa: F401
from .repository import (  # noqa: F401
    InfluxTradingRepository,
    InMemoryTradingRepository,
    TradingRepository,
    build_repository,
)
