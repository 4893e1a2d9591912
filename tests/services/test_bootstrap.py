import logging

from execution.decision_engine import EngineSettings
from models.bootstrap import build_default_registry
from models.registry import AdapterRegistry
from services.bootstrap import build_context


def test_default_registry_applies_model_settings():
    registry = build_default_registry(
        {"deepseek-v1": {"weight": 2.0}, "qwen-v1": {"enabled": False, "requests_per_minute": 5}}
    )

    assert sorted(registry.list()) == ["deepseek-v1", "qwen-v1"]
    assert registry.get("deepseek-v1").weight == 2.0
    assert [adapter.model_id for adapter in registry.enabled()] == ["deepseek-v1"]
    assert registry.get("qwen-v1").rate_limiter.max_requests == 5


async def test_build_context_wires_one_graph(repository, make_exchange, make_provider, clock):
    registry = AdapterRegistry()
    registry.register(make_provider("alpha"))
    venues = [make_exchange("binance"), make_exchange("okx")]

    context = build_context(
        repository=repository,
        registry=registry,
        clients=venues,
        symbols=["ETH-USDT"],
        engine_settings=EngineSettings(cooldown_seconds=5),
        clock=clock,
    )

    assert context.symbols == ["ETH-USDT"]
    assert context.router.exchanges == ["binance", "okx"]
    assert context.engine.market_data.client is venues[0]
    assert context.engine.gateway is context.gateway
    assert context.ensemble.registry is registry

    await context.aclose()
    assert all(venue.closed for venue in venues)


def test_unknown_market_data_venue_falls_back(repository, make_exchange, make_provider, caplog):
    registry = AdapterRegistry()
    registry.register(make_provider("alpha"))
    okx = make_exchange("okx")

    with caplog.at_level(logging.WARNING):
        context = build_context(
            repository=repository,
            registry=registry,
            clients=[okx],
            engine_settings=EngineSettings(market_data_exchange="kraken"),
        )

    assert context.engine.market_data.client is okx
    assert "Market data venue kraken not configured; using okx" in caplog.text
