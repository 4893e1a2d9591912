"""
Shared data structures for advisory signal generation and aggregation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Tuple

TradeAction = Literal["BUY", "SELL", "HOLD"]
ACTIONS: Tuple[TradeAction, ...] = ("BUY", "SELL", "HOLD")


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(slots=True)
class MarketSnapshot:
    """Slice of market data provided to the advisors."""

    symbol: str
    price: float
    bid: float | None = None
    ask: float | None = None
    volume_24h: float | None = None
    recent_closes: Tuple[float, ...] = ()
    realized_volatility: float | None = None
    regime: str | None = None
    atr_percent: float | None = None
    volume_ratio: float | None = None
    open_position: Dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def spread_percent(self) -> float | None:
        if not self.bid or not self.ask:
            return None
        mid = (self.bid + self.ask) / 2
        return (self.ask - self.bid) / mid * 100 if mid > 0 else None

    def as_context(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "bid": self.bid,
            "ask": self.ask,
            "volume_24h": self.volume_24h,
            "recent_closes": list(self.recent_closes),
            "realized_volatility": self.realized_volatility,
            "regime": self.regime,
            "atr_percent": self.atr_percent,
            "volume_ratio": self.volume_ratio,
            "open_position": self.open_position,
        }


@dataclass(slots=True, frozen=True)
class ProviderRequest:
    """
    Request sent to an advisory provider.

    ``context`` is carried for offline/deterministic providers and logging; it
    does not take part in request deduplication, only the prompt does.
    """

    prompt: str
    context: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    temperature: float = 0.2
    max_tokens: int = 800
    model: str | None = None


@dataclass(slots=True)
class ProviderResponse:
    """Raw provider output with its structured payload."""

    provider: str
    content: str
    payload: Dict[str, Any]
    cost: float = 0.0
    response_time_ms: float = 0.0
    model: str | None = None
    generated_at: datetime = field(default_factory=_now)


@dataclass(slots=True, frozen=True)
class Signal:
    """One provider's view on one symbol."""

    symbol: str
    action: TradeAction
    confidence: float
    source_provider: str
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    position_size: Optional[float] = None
    risk_reward: Optional[float] = None
    reasoning: str = ""
    produced_at: datetime = field(default_factory=_now)


@dataclass(slots=True, frozen=True)
class ConsensusSignal:
    """Result of one aggregation round."""

    symbol: str
    action: TradeAction
    confidence: float
    consensus: float
    agreeing_providers: Tuple[str, ...]
    dissenting_providers: Tuple[str, ...]
    signals: Tuple[Signal, ...]
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    position_size: Optional[float] = None
    risk_reward: Optional[float] = None
    fallback_applied: Optional[str] = None
    reasoning: str = ""
    produced_at: datetime = field(default_factory=_now)
