from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from accounts.repository import InMemoryTradingRepository
from confidence.optimizer import ConfidenceThresholdOptimizer
from confidence.schemas import ThresholdSettings
from data_pipeline.market_data import MarketDataService
from exchanges.base_client import Candle, ExchangeError, ExchangeInfo, OrderFill, OrderRequest, Quote
from execution.decision_engine import DecisionEngine, EngineSettings
from execution.router import ExchangeRouter
from execution.schemas import RouterSettings
from models.adapters.base import BaseModelAdapter
from models.ensemble import EnsembleAggregator, EnsembleSettings
from models.errors import AdvisoryProviderError
from models.registry import AdapterRegistry
from models.schemas import MarketSnapshot, ProviderRequest
from risk.gateway import RiskGateway
from risk.schemas import RiskSettings
from services.bootstrap import TradingContext
from services.storage import settings_store


class MutableClock:
    """Deterministic tz-aware clock that tests advance by hand."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0.0, *, days: int = 0) -> None:
        self.now = self.now + timedelta(seconds=seconds, days=days)


class FakeProvider(BaseModelAdapter):
    """Advisory provider returning a canned payload."""

    def __init__(
        self,
        model_id: str,
        action: str = "BUY",
        confidence: float = 0.8,
        *,
        delay: float = 0.0,
        error: Optional[AdvisoryProviderError] = None,
        payload: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(model_id, **kwargs)
        self.action = action
        self.confidence = confidence
        self.delay = delay
        self.error = error
        self.payload = payload
        self.calls = 0

    async def _invoke_model(self, request: ProviderRequest) -> Dict[str, Any]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        payload = self.payload or {
            "action": self.action,
            "confidence": self.confidence,
            "reasoning": f"{self.model_id} says {self.action}",
        }
        return {"content": json.dumps(payload), "payload": dict(payload)}


class FakeExchange:
    """In-memory exchange client satisfying the ExchangeClient protocol."""

    def __init__(
        self,
        name: str,
        *,
        bid: float = 49_990.0,
        ask: float = 50_010.0,
        depth: float = 10.0,
        last_price: float | None = None,
        balances: Optional[Dict[str, float]] = None,
        candles: Optional[List[Candle]] = None,
        fail_orders: bool = False,
        order_status: str = "filled",
        quote_error: bool = False,
        order_delay: float = 0.0,
        quote_delay: float = 0.0,
        fill_qty: float | None = None,
        fee_rate: float = 0.001,
    ) -> None:
        self.name = name
        self.bid = bid
        self.ask = ask
        self.depth = depth
        self.last_price = last_price if last_price is not None else (bid + ask) / 2
        self.balances = dict(balances or {})
        self.candles = list(candles or [])
        self.fail_orders = fail_orders
        self.order_status = order_status
        self.quote_error = quote_error
        self.order_delay = order_delay
        self.quote_delay = quote_delay
        self.fill_qty = fill_qty
        self.fee_rate = fee_rate
        self.orders: List[OrderRequest] = []
        self.quote_calls = 0
        self.closed = False

    async def quote(self, symbol: str) -> Quote:
        self.quote_calls += 1
        if self.quote_delay:
            await asyncio.sleep(self.quote_delay)
        if self.quote_error:
            raise ExchangeError(f"{self.name} quote unavailable", exchange=self.name)
        return Quote(
            symbol=symbol,
            bid=self.bid,
            ask=self.ask,
            bid_size=self.depth,
            ask_size=self.depth,
            last_price=self.last_price,
            volume_24h=1_000.0,
        )

    async def fetch_candles(self, symbol: str, *, interval: str = "1h", limit: int = 100) -> List[Candle]:
        return self.candles[-limit:]

    async def fetch_balance(self, asset: str) -> float:
        return self.balances.get(asset, 0.0)

    async def place_order(self, order: OrderRequest) -> OrderFill:
        self.orders.append(order)
        if self.order_delay:
            await asyncio.sleep(self.order_delay)
        if self.fail_orders:
            raise ExchangeError(f"{self.name} rejected the order", exchange=self.name)
        price = self.ask if order.side == "BUY" else self.bid
        filled = order.quantity if self.fill_qty is None else self.fill_qty
        return OrderFill(
            order_id=f"{self.name}-{len(self.orders)}",
            status=self.order_status,  # type: ignore[arg-type]
            executed_qty=filled,
            executed_price=price if filled else 0.0,
            fees=filled * price * self.fee_rate,
        )

    async def health(self) -> bool:
        return not self.quote_error

    async def aclose(self) -> None:
        self.closed = True


def make_candles(closes: List[float], *, volume: float = 100.0, spread: float = 0.005) -> List[Candle]:
    start = 1_714_564_800_000
    return [
        Candle(
            timestamp=start + index * 3_600_000,
            open=close,
            high=close * (1 + spread),
            low=close * (1 - spread),
            close=close,
            volume=volume,
        )
        for index, close in enumerate(closes)
    ]


@pytest.fixture(autouse=True)
def isolated_settings_store(tmp_path, monkeypatch):
    monkeypatch.setattr(settings_store, "SETTINGS_FILE", tmp_path / "settings_store.json")
    return settings_store.SETTINGS_FILE


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def make_provider():
    return FakeProvider


@pytest.fixture
def make_exchange():
    return FakeExchange


@pytest.fixture
def candles():
    return make_candles


@pytest.fixture
def repository():
    return InMemoryTradingRepository()


@pytest.fixture
def snapshot():
    return MarketSnapshot(
        symbol="BTC-USDT",
        price=50_000.0,
        bid=49_990.0,
        ask=50_010.0,
        recent_closes=(49_000.0, 49_500.0, 50_000.0),
    )


@pytest.fixture
def trading_context(repository, clock):
    """Fully wired service graph over two fake venues and two fake advisors."""
    binance = FakeExchange(
        "binance",
        last_price=50_000.0,
        candles=make_candles([50_000.0] * 30),
        balances={"USDT": 10_000.0, "BTC": 1.0},
    )
    okx = FakeExchange("okx", bid=50_300.0, ask=50_320.0, balances={"BTC": 1.0})
    venues = [binance, okx]
    info = {venue.name: ExchangeInfo(venue.name, 0.1, 0.1, 50.0, 95.0) for venue in venues}

    registry = AdapterRegistry()
    registry.register(FakeProvider("alpha", "BUY", 0.8))
    registry.register(FakeProvider("beta", "BUY", 0.8))
    ensemble = EnsembleAggregator(registry, EnsembleSettings(weights={"accuracy": 1.0}))
    optimizer = ConfidenceThresholdOptimizer(ThresholdSettings(), repository=repository, clock=clock)
    gateway = RiskGateway(repository, RiskSettings(), clock=clock)
    router = ExchangeRouter(venues, RouterSettings(), exchange_info=info, clock=clock)
    engine = DecisionEngine(
        market_data=MarketDataService(binance, repository=repository),
        ensemble=ensemble,
        optimizer=optimizer,
        gateway=gateway,
        router=router,
        repository=repository,
        settings=EngineSettings(),
        clock=clock,
    )
    return TradingContext(
        repository=repository,
        registry=registry,
        ensemble=ensemble,
        optimizer=optimizer,
        gateway=gateway,
        router=router,
        engine=engine,
        symbols=["BTC-USDT"],
    )
