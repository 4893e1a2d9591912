"""
Value objects for order routing and arbitrage scanning.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Literal, Mapping, Optional

import config
from exchanges.base_client import OrderFill

RiskLevel = Literal["LOW", "MEDIUM", "HIGH"]


@dataclass(slots=True, frozen=True)
class Route:
    """One scored candidate venue for an order."""

    exchange: str
    expected_price: float
    estimated_fee_cost: float
    estimated_latency_ms: float
    reliability_score: float
    execution_probability: float
    score: float = 0.0


@dataclass(slots=True, frozen=True)
class ExecutionPlan:
    """Routes computed for a single order; never reused for another order."""

    symbol: str
    side: Literal["BUY", "SELL"]
    amount: float
    primary_route: Route
    fallback_routes: tuple[Route, ...] = ()
    risk_level: RiskLevel = "MEDIUM"
    recommendations: tuple[str, ...] = ()

    @property
    def routes(self) -> tuple[Route, ...]:
        return (self.primary_route, *self.fallback_routes)


@dataclass(slots=True)
class ExecutionResult:
    success: bool
    route: Optional[Route] = None
    fill: Optional[OrderFill] = None
    used_fallback: bool = False
    attempts: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(slots=True, frozen=True)
class ArbitrageOpportunity:
    symbol: str
    buy_exchange: str
    sell_exchange: str
    buy_price: float
    sell_price: float
    quantity: float
    spread_percent: float
    profit_after_fees: float
    risk_level: RiskLevel
    discovered_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(tz=timezone.utc)
        return now >= self.expires_at


@dataclass(slots=True)
class RouterSettings:
    min_spread_percent: float = 0.1
    arbitrage_ttl_seconds: float = 30.0
    order_timeout_seconds: float = 10.0
    quote_timeout_seconds: float = 5.0
    latency_ceiling_ms: float = 2000.0
    max_arbitrage_notional: float = 1000.0
    max_fallbacks: int = 2

    @classmethod
    def load(cls, overrides: Mapping[str, Any] | None = None) -> "RouterSettings":
        from services.storage.settings_store import merged_settings

        values = merged_settings("router", config.ROUTER_SETTINGS)
        if overrides:
            values.update(overrides)
        return cls(
            min_spread_percent=float(values["min_spread_percent"]),
            arbitrage_ttl_seconds=float(values["arbitrage_ttl_seconds"]),
            order_timeout_seconds=float(values["order_timeout_seconds"]),
            quote_timeout_seconds=float(values["quote_timeout_seconds"]),
            latency_ceiling_ms=float(values["latency_ceiling_ms"]),
            max_arbitrage_notional=float(values["max_arbitrage_notional"]),
            max_fallbacks=int(values["max_fallbacks"]),
        )
