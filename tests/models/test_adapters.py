import asyncio
import json

import httpx
import pytest

from models.adapters.deepseek import DEEPSEEK_ENDPOINT, DeepSeekAdapter
from models.errors import AdvisoryProviderError
from models.utils import extract_json, parse_signal


async def test_identical_concurrent_requests_share_one_call(make_provider, snapshot):
    provider = make_provider("alpha", delay=0.05)
    request = provider.build_request(snapshot)

    first, second = await asyncio.gather(provider.generate(request), provider.generate(request))

    assert provider.calls == 1
    assert first is second
    assert provider.rate_limiter.usage() == 1
    assert len(provider._inflight) == 0


async def test_completed_request_is_not_reused(make_provider, snapshot):
    provider = make_provider("alpha")
    request = provider.build_request(snapshot)

    await provider.generate(request)
    await provider.generate(request)

    assert provider.calls == 2
    assert provider.metrics.successful_requests == 2


async def test_rate_window_rejects_excess_calls(make_provider, snapshot):
    provider = make_provider("alpha", requests_per_minute=1)
    request = provider.build_request(snapshot)

    await provider.generate(request)
    with pytest.raises(AdvisoryProviderError) as excinfo:
        await provider.generate(request)

    assert excinfo.value.code == "RATE_LIMIT"
    assert excinfo.value.recoverable
    assert provider.calls == 1


async def test_unparseable_answer_is_recorded(make_provider, snapshot):
    provider = make_provider("alpha", payload={"action": "MAYBE", "confidence": 0.9})

    with pytest.raises(AdvisoryProviderError) as excinfo:
        await provider.signal(snapshot)

    assert excinfo.value.code == "PARSE_ERROR"
    assert provider.metrics.failed_requests == 1
    assert provider.metrics.errors[-1].code == "PARSE_ERROR"


async def test_deepseek_offline_mode_is_deterministic(monkeypatch, snapshot):
    monkeypatch.delenv("DEEPSEEK_API_KEY", raising=False)
    adapter = DeepSeekAdapter()

    first = await adapter.signal(snapshot)
    second = await adapter.signal(snapshot)

    assert first.action == "BUY"
    assert first.confidence == second.confidence
    assert first.source_provider == "deepseek-v1"
    assert first.stop_loss < snapshot.price < first.take_profit


async def test_deepseek_live_call_parses_content_and_cost(snapshot):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["url"] = str(request.url)
        content = json.dumps({"action": "SELL", "confidence": 0.72, "stopLoss": 51_000})
        return httpx.Response(
            200,
            json={
                "model": "deepseek-chat",
                "choices": [{"message": {"content": content}}],
                "usage": {"total_tokens": 1000},
            },
        )

    adapter = DeepSeekAdapter(api_key="secret", transport=httpx.MockTransport(handler))
    try:
        response = await adapter.generate(adapter.build_request(snapshot))
    finally:
        await adapter.aclose()

    assert seen == {"auth": "Bearer secret", "url": DEEPSEEK_ENDPOINT}
    assert response.payload["action"] == "SELL"
    assert response.cost == pytest.approx(0.0014)
    assert adapter.metrics.average_cost == pytest.approx(0.0014)


@pytest.mark.parametrize(
    "status, code, recoverable",
    [(429, "RATE_LIMIT", True), (503, "SERVER_ERROR", True), (401, "AUTHENTICATION", False)],
)
async def test_deepseek_http_errors_are_classified(snapshot, status, code, recoverable):
    transport = httpx.MockTransport(lambda request: httpx.Response(status, json={"error": "nope"}))
    adapter = DeepSeekAdapter(api_key="secret", transport=transport)
    try:
        with pytest.raises(AdvisoryProviderError) as excinfo:
            await adapter.generate(adapter.build_request(snapshot))
    finally:
        await adapter.aclose()

    assert excinfo.value.code == code
    assert excinfo.value.recoverable is recoverable
    assert excinfo.value.status_code == status
    assert adapter.metrics.failed_requests == 1


def test_parse_signal_accepts_aliases_and_clamps():
    signal = parse_signal(
        {"decision": "long", "confidence": "1.4", "stop_loss": 95, "takeProfit": 110},
        symbol="BTC-USDT",
        provider="alpha",
        reference_price=100.0,
    )

    assert signal.action == "BUY"
    assert signal.confidence == 1.0
    assert signal.entry_price == 100.0
    assert signal.risk_reward == pytest.approx(2.0)


def test_parse_signal_rejects_non_numeric_confidence():
    with pytest.raises(AdvisoryProviderError) as excinfo:
        parse_signal({"action": "BUY", "confidence": "high"}, symbol="BTC-USDT", provider="alpha")

    assert excinfo.value.code == "PARSE_ERROR"


def test_extract_json_tolerates_code_fences():
    content = '```json\n{"action": "HOLD", "confidence": 0.4}\n```'

    assert extract_json(content) == {"action": "HOLD", "confidence": 0.4}


def test_extract_json_without_object_fails():
    with pytest.raises(AdvisoryProviderError):
        extract_json("no decision today")
