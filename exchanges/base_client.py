"""
Abstract client definitions for centralized exchange integrations.

Concrete adapters (OKX, Binance) implement the async ``ExchangeClient``
protocol. Symbols are passed in the venue-neutral ``BASE-QUOTE`` form
(``BTC-USDT``); each client maps them to its native instrument id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Protocol, runtime_checkable

OrderStatus = Literal["filled", "partially_filled", "submitted", "rejected", "failed"]


class ExchangeError(RuntimeError):
    """Raised when a venue cannot serve a request."""

    def __init__(
        self,
        message: str,
        *,
        exchange: str | None = None,
        payload: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.exchange = exchange
        self.payload = payload or {}


@dataclass(slots=True)
class ExchangeCredentials:
    """Typed container for exchange authentication data."""

    api_key: str
    api_secret: str
    passphrase: str | None = None


@dataclass(slots=True, frozen=True)
class ExchangeInfo:
    """Static venue characteristics used when scoring routes."""

    name: str
    maker_fee_percent: float
    taker_fee_percent: float
    latency_ms: float
    reliability: float

    @classmethod
    def from_settings(cls, name: str, settings: Dict[str, Any]) -> "ExchangeInfo":
        return cls(
            name=name,
            maker_fee_percent=float(settings.get("maker_fee_percent", 0.1)),
            taker_fee_percent=float(settings.get("taker_fee_percent", 0.1)),
            latency_ms=float(settings.get("latency_ms", 100.0)),
            reliability=float(settings.get("reliability", 80.0)),
        )


@dataclass(slots=True, frozen=True)
class Quote:
    symbol: str
    bid: float
    ask: float
    bid_size: float
    ask_size: float
    last_price: float
    volume_24h: float = 0.0

    @property
    def mid(self) -> float:
        return (self.bid + self.ask) / 2

    @property
    def spread_percent(self) -> float:
        if self.mid <= 0:
            return 0.0
        return (self.ask - self.bid) / self.mid * 100


@dataclass(slots=True, frozen=True)
class Candle:
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(slots=True)
class OrderRequest:
    """Venue-neutral market order."""

    symbol: str
    side: Literal["BUY", "SELL"]
    quantity: float
    order_type: Literal["market", "limit"] = "market"
    price: float | None = None
    client_order_id: str | None = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class OrderFill:
    """Normalized order response."""

    order_id: str
    status: OrderStatus
    executed_qty: float
    executed_price: float
    fees: float
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status in ("filled", "partially_filled", "submitted")


def split_symbol(symbol: str) -> tuple[str, str]:
    """Return ``(base, quote)`` for a ``BASE-QUOTE`` symbol."""
    parts = symbol.upper().replace("/", "-").split("-")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise ValueError(f"Symbol must look like BASE-QUOTE, got {symbol!r}")
    return parts[0], parts[1]


@runtime_checkable
class ExchangeClient(Protocol):
    """Protocol describing the surface area for exchange integrations."""

    name: str

    async def quote(self, symbol: str) -> Quote:
        """Return top-of-book and 24h stats for ``symbol``."""

    async def fetch_candles(self, symbol: str, *, interval: str = "1h", limit: int = 100) -> List[Candle]:
        """Return OHLCV history, oldest first."""

    async def fetch_balance(self, asset: str) -> float:
        """Return the free balance of ``asset``."""

    async def place_order(self, order: OrderRequest) -> OrderFill:
        """Submit an order and return the normalized fill."""

    async def health(self) -> bool:
        """Return True when the venue is reachable and operational."""

    async def aclose(self) -> None:
        """Release network resources."""
