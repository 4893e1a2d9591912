import hashlib
import hmac
from urllib.parse import urlencode

import httpx
import pytest

from exchanges.base_client import ExchangeCredentials, OrderRequest
from exchanges.binance.client import BinanceClientError, BinanceSpotClient, to_binance_symbol

CREDENTIALS = ExchangeCredentials(api_key="bn-key", api_secret="bn-secret")


def _client(handler, credentials=CREDENTIALS, **kwargs):
    return BinanceSpotClient(credentials, transport=httpx.MockTransport(handler), **kwargs)


def test_symbol_mapping():
    assert to_binance_symbol("btc-usdt") == "BTCUSDT"
    with pytest.raises(ValueError):
        to_binance_symbol("BTCUSDT")


async def test_quote_combines_book_ticker_and_daily_stats():
    def handler(request):
        assert request.url.params["symbol"] == "BTCUSDT"
        if request.url.path.endswith("bookTicker"):
            return httpx.Response(
                200,
                json={"bidPrice": "49990", "bidQty": "1", "askPrice": "50010", "askQty": "3"},
            )
        return httpx.Response(200, json={"lastPrice": "50000", "volume": "900"})

    client = _client(handler)
    quote = await client.quote("BTC-USDT")
    await client.aclose()

    assert (quote.bid, quote.ask, quote.ask_size) == (49_990.0, 50_010.0, 3.0)
    assert quote.last_price == 50_000.0
    assert quote.volume_24h == 900.0


async def test_klines_become_candles():
    rows = [[1714564800000, "100", "101", "99", "100.5", "12", 1714568399999, "0", 10, "0", "0", "0"]]
    client = _client(lambda request: httpx.Response(200, json=rows))

    candles = await client.fetch_candles("ETH-USDT", limit=1)
    await client.aclose()

    assert candles[0].close == 100.5
    assert candles[0].volume == 12.0


async def test_signed_request_is_hmac_signed():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200, json={"balances": [{"asset": "USDT", "free": "250.5", "locked": "0"}]}
        )

    client = _client(handler)
    balance = await client.fetch_balance("usdt")
    await client.aclose()

    assert balance == 250.5
    request = seen[0]
    assert request.headers["X-MBX-APIKEY"] == "bn-key"
    params = dict(request.url.params)
    signature = params.pop("signature")
    expected = hmac.new(b"bn-secret", urlencode(params).encode(), hashlib.sha256).hexdigest()
    assert signature == expected
    assert params["recvWindow"] == "5000"


async def test_market_order_fees_are_converted_to_quote():
    def handler(request):
        assert request.method == "POST"
        assert request.url.params["type"] == "MARKET"
        assert request.url.params["newClientOrderId"] == "dec42"
        return httpx.Response(
            200,
            json={
                "orderId": 987,
                "status": "FILLED",
                "executedQty": "0.02",
                "cummulativeQuoteQty": "1000.2",
                "fills": [
                    {"price": "50010", "qty": "0.01", "commission": "0.00001", "commissionAsset": "BTC"},
                    {"price": "50010", "qty": "0.01", "commission": "0.5", "commissionAsset": "USDT"},
                    {"price": "50010", "qty": "0", "commission": "0.001", "commissionAsset": "BNB"},
                ],
            },
        )

    client = _client(handler)
    fill = await client.place_order(OrderRequest("BTC-USDT", "BUY", 0.02, client_order_id="dec42"))
    await client.aclose()

    assert fill.order_id == "987"
    assert fill.status == "filled"
    assert fill.executed_price == pytest.approx(50_010.0)
    assert fill.fees == pytest.approx(0.5001 + 0.5)


async def test_expired_order_maps_to_rejected():
    client = _client(
        lambda request: httpx.Response(
            200, json={"orderId": 1, "status": "EXPIRED", "executedQty": "0", "cummulativeQuoteQty": "0"}
        )
    )

    fill = await client.place_order(OrderRequest("BTC-USDT", "SELL", 0.02, order_type="limit", price=60_000))
    await client.aclose()

    assert fill.status == "rejected"
    assert fill.executed_price == 0.0


async def test_limit_order_requires_price():
    client = _client(lambda request: httpx.Response(200, json={}))

    with pytest.raises(ValueError):
        await client.place_order(OrderRequest("BTC-USDT", "BUY", 0.01, order_type="limit"))
    await client.aclose()


async def test_api_error_carries_binance_code():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, json={"code": -2010, "msg": "Account has insufficient balance"})

    client = _client(handler)
    with pytest.raises(BinanceClientError) as excinfo:
        await client.place_order(OrderRequest("BTC-USDT", "BUY", 1.0))
    await client.aclose()

    assert excinfo.value.payload["code"] == -2010
    assert "insufficient balance" in str(excinfo.value)
    assert len(calls) == 1


async def test_server_errors_on_post_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(502, text="bad gateway")

    client = _client(handler)
    with pytest.raises(BinanceClientError):
        await client.place_order(OrderRequest("BTC-USDT", "BUY", 1.0))
    await client.aclose()

    assert len(calls) == 1


async def test_health_is_false_when_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler, retries=0)

    assert await client.health() is False
    await client.aclose()


async def test_unsigned_client_cannot_read_balances():
    client = _client(lambda request: httpx.Response(200, json={}), credentials=None)

    with pytest.raises(BinanceClientError):
        await client.fetch_balance("USDT")
    await client.aclose()
