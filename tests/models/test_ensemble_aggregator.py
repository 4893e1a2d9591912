import pytest

from models.ensemble import EnsembleAggregator, EnsembleSettings
from models.errors import AdvisoryProviderError, EnsembleError
from models.registry import AdapterRegistry

# Accuracy-only weighting gives every fresh provider the same weight.
EQUAL_WEIGHTS = {"accuracy": 1.0}


def _registry(*providers):
    registry = AdapterRegistry()
    for provider in providers:
        registry.register(provider)
    return registry


@pytest.fixture
def split_vote(make_provider):
    return (
        make_provider("alpha", "BUY", 0.8),
        make_provider("beta", "BUY", 0.7),
        make_provider("gamma", "SELL", 0.6),
    )


def _aggregator(providers, **settings):
    settings.setdefault("weights", EQUAL_WEIGHTS)
    return EnsembleAggregator(_registry(*providers), EnsembleSettings(**settings))


async def test_majority_above_threshold_proceeds(split_vote, snapshot):
    aggregator = _aggregator(split_vote, consensus_threshold=0.6)

    consensus = await aggregator.generate_consensus("BTC-USDT", snapshot)

    assert consensus.action == "BUY"
    assert consensus.consensus == pytest.approx(1.5 / 2.1)
    assert consensus.confidence == pytest.approx(0.75)
    assert consensus.agreeing_providers == ("alpha", "beta")
    assert consensus.dissenting_providers == ("gamma",)
    assert consensus.fallback_applied is None
    assert len(consensus.signals) == 3


async def test_low_agreement_falls_back_to_hold(split_vote, snapshot):
    aggregator = _aggregator(split_vote, consensus_threshold=0.75)

    consensus = await aggregator.generate_consensus("BTC-USDT", snapshot)

    assert consensus.action == "HOLD"
    assert consensus.fallback_applied == "SAFE_HOLD"
    assert consensus.consensus == pytest.approx(1.5 / 2.1)
    assert consensus.stop_loss is None


async def test_highest_confidence_fallback(split_vote, snapshot):
    aggregator = _aggregator(
        split_vote, consensus_threshold=0.75, fallback_strategy="HIGHEST_CONFIDENCE"
    )

    consensus = await aggregator.generate_consensus("BTC-USDT", snapshot)

    assert consensus.action == "BUY"
    assert consensus.confidence == pytest.approx(0.8)
    assert consensus.fallback_applied == "HIGHEST_CONFIDENCE"


async def test_majority_fallback_counts_heads(make_provider, snapshot):
    providers = (
        make_provider("alpha", "SELL", 0.3),
        make_provider("beta", "SELL", 0.3),
        make_provider("gamma", "BUY", 0.9),
    )
    aggregator = _aggregator(providers, consensus_threshold=0.9, fallback_strategy="MAJORITY")

    consensus = await aggregator.generate_consensus("BTC-USDT", snapshot)

    assert consensus.action == "SELL"
    assert consensus.agreeing_providers == ("alpha", "beta")


async def test_tied_vote_resolves_to_hold(make_provider, snapshot):
    providers = (make_provider("alpha", "BUY", 0.6), make_provider("beta", "SELL", 0.6))
    aggregator = _aggregator(providers, consensus_threshold=0.4)

    consensus = await aggregator.generate_consensus("BTC-USDT", snapshot)

    assert consensus.action == "HOLD"
    assert consensus.consensus == pytest.approx(0.5)


async def test_quorum_not_met_raises(make_provider, snapshot):
    failing = make_provider(
        "gamma", error=AdvisoryProviderError("SERVER_ERROR", "upstream 502")
    )
    providers = (make_provider("alpha"), make_provider("beta"), failing)
    aggregator = _aggregator(providers, min_providers=3)

    with pytest.raises(EnsembleError) as excinfo:
        await aggregator.generate_consensus("BTC-USDT", snapshot)

    assert excinfo.value.code == "INSUFFICIENT_PROVIDERS"
    assert excinfo.value.details["successes"] == 2
    assert failing.metrics.failed_requests == 1


async def test_failed_provider_is_tolerated_when_quorum_holds(make_provider, snapshot):
    failing = make_provider(
        "gamma", error=AdvisoryProviderError("NETWORK_ERROR", "connection reset")
    )
    providers = (make_provider("alpha", "BUY", 0.8), make_provider("beta", "BUY", 0.8), failing)
    aggregator = _aggregator(providers, min_providers=2)

    consensus = await aggregator.generate_consensus("BTC-USDT", snapshot)

    assert consensus.action == "BUY"
    assert consensus.consensus == pytest.approx(1.0)
    assert [s.source_provider for s in consensus.signals] == ["alpha", "beta"]


async def test_slow_provider_is_dropped_at_round_timeout(make_provider, snapshot):
    slow = make_provider("gamma", "SELL", 0.9, delay=5.0)
    providers = (make_provider("alpha", "BUY", 0.8), make_provider("beta", "BUY", 0.8), slow)
    aggregator = _aggregator(providers, timeout_seconds=0.1)

    consensus = await aggregator.generate_consensus("BTC-USDT", snapshot)

    assert consensus.action == "BUY"
    assert "gamma" not in consensus.dissenting_providers
    assert slow.metrics.errors[-1].code == "TIMEOUT"


async def test_rate_limited_provider_is_skipped(make_provider, snapshot):
    limited = make_provider("gamma", "SELL", 0.9, requests_per_minute=1)
    limited.rate_limiter.record()
    providers = (make_provider("alpha", "BUY", 0.8), make_provider("beta", "BUY", 0.7), limited)
    aggregator = _aggregator(providers)

    consensus = await aggregator.generate_consensus("BTC-USDT", snapshot)

    assert limited.calls == 0
    assert limited.metrics.errors[-1].code == "RATE_LIMIT"
    assert consensus.action == "BUY"


async def test_disabled_provider_is_not_asked(split_vote, snapshot):
    aggregator = _aggregator(split_vote)
    aggregator.registry.set_enabled("gamma", False)

    consensus = await aggregator.generate_consensus("BTC-USDT", snapshot)

    assert split_vote[2].calls == 0
    assert consensus.consensus == pytest.approx(1.0)


async def test_explicit_quorum_override(split_vote, snapshot):
    aggregator = _aggregator(split_vote, min_providers=2)

    with pytest.raises(EnsembleError):
        await aggregator.generate_consensus("BTC-USDT", snapshot, split_vote[:1])

    consensus = await aggregator.generate_consensus(
        "BTC-USDT", snapshot, split_vote[:1], min_providers=1
    )
    assert consensus.action == "BUY"


async def test_disagreement_threshold_raises(split_vote, snapshot):
    aggregator = _aggregator(split_vote, disagreement_threshold=0.8)

    with pytest.raises(EnsembleError) as excinfo:
        await aggregator.generate_consensus("BTC-USDT", snapshot)

    assert excinfo.value.code == "DISAGREEMENT"


def test_provider_weight_blends_accuracy_speed_and_cost(make_provider):
    accurate = make_provider("alpha", weight=1.0)
    sloppy = make_provider("beta", weight=1.0)
    for _ in range(4):
        accurate.metrics.record_prediction(True)
        sloppy.metrics.record_prediction(False)
    accurate.metrics.record_success(0.0, 0.02)
    sloppy.metrics.record_success(0.0, 0.01)
    aggregator = EnsembleAggregator(_registry(accurate, sloppy), EnsembleSettings())

    peers = [accurate, sloppy]
    assert aggregator.provider_weight(accurate, peers) == pytest.approx(0.5 + 0.3 + 0.2 * 0.5)
    assert aggregator.provider_weight(sloppy, peers) == pytest.approx(0.3 + 0.2)


def test_unknown_fallback_strategy_is_rejected():
    with pytest.raises(ValueError):
        EnsembleSettings(fallback_strategy="COIN_FLIP")
