"""
Construction of the trading service graph.

``build_context`` wires every service once; the web app keeps the result on
``app.state`` and the scheduler receives it explicitly. Nothing here is a
module-level singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

import config
from accounts.repository import TradingRepository, build_repository
from confidence.optimizer import ConfidenceThresholdOptimizer
from data_pipeline.market_data import MarketDataService
from exchanges.base_client import ExchangeClient, ExchangeCredentials
from exchanges.binance import BinanceSpotClient
from exchanges.okx import OkxPaperClient
from execution.decision_engine import DecisionEngine, EngineSettings
from execution.router import ExchangeRouter
from models.bootstrap import build_default_registry
from models.ensemble import EnsembleAggregator
from models.registry import AdapterRegistry
from risk.gateway import RiskGateway
from risk.volatility import VolatilityClassifier

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TradingContext:
    repository: TradingRepository
    registry: AdapterRegistry
    ensemble: EnsembleAggregator
    optimizer: ConfidenceThresholdOptimizer
    gateway: RiskGateway
    router: ExchangeRouter
    engine: DecisionEngine
    symbols: List[str] = field(default_factory=list)

    async def aclose(self) -> None:
        await self.engine.aclose()
        self.repository.close()
        logger.info("Trading context closed")


def default_exchange_clients() -> List[ExchangeClient]:
    binance_credentials = None
    if config.BINANCE_API_KEY and config.BINANCE_API_SECRET:
        binance_credentials = ExchangeCredentials(config.BINANCE_API_KEY, config.BINANCE_API_SECRET)
    okx_credentials = None
    if config.OKX_API_KEY and config.OKX_API_SECRET:
        okx_credentials = ExchangeCredentials(
            config.OKX_API_KEY, config.OKX_API_SECRET, config.OKX_PASSPHRASE
        )
    return [
        BinanceSpotClient(binance_credentials, base_url=config.BINANCE_BASE_URL),
        OkxPaperClient(okx_credentials, simulate=config.OKX_SIMULATED),
    ]


def build_context(
    *,
    repository: TradingRepository | None = None,
    registry: AdapterRegistry | None = None,
    clients: Sequence[ExchangeClient] | None = None,
    symbols: Sequence[str] | None = None,
    engine_settings: EngineSettings | None = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> TradingContext:
    repository = repository or build_repository()
    registry = registry or build_default_registry()
    clients = list(clients) if clients is not None else default_exchange_clients()
    engine_settings = engine_settings or EngineSettings.load()

    by_name: Dict[str, ExchangeClient] = {client.name: client for client in clients}
    market_client = by_name.get(engine_settings.market_data_exchange) or clients[0]
    if market_client.name != engine_settings.market_data_exchange:
        logger.warning(
            "Market data venue %s not configured; using %s",
            engine_settings.market_data_exchange,
            market_client.name,
        )

    ensemble = EnsembleAggregator(registry)
    optimizer = ConfidenceThresholdOptimizer(repository=repository, clock=clock)
    gateway = RiskGateway(repository, clock=clock)
    router = ExchangeRouter(clients, clock=clock)
    market_data = MarketDataService(
        market_client,
        repository=repository,
        interval=engine_settings.candle_interval,
        limit=engine_settings.candle_limit,
    )
    engine = DecisionEngine(
        market_data=market_data,
        ensemble=ensemble,
        optimizer=optimizer,
        gateway=gateway,
        router=router,
        repository=repository,
        classifier=VolatilityClassifier(),
        settings=engine_settings,
        clock=clock,
    )
    context = TradingContext(
        repository=repository,
        registry=registry,
        ensemble=ensemble,
        optimizer=optimizer,
        gateway=gateway,
        router=router,
        engine=engine,
        symbols=list(symbols or config.TRADABLE_INSTRUMENTS),
    )
    logger.info(
        "Trading context ready: providers=%s exchanges=%s symbols=%s",
        list(registry.list()),
        router.exchanges,
        context.symbols,
    )
    return context
