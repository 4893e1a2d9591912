"""
Binance spot REST client.

Defaults to the public spot testnet; pass ``base_url`` for production.
Signed endpoints use HMAC-SHA256 over the query string.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import time
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import urlencode

import httpx

from exchanges.base_client import (
    Candle,
    ExchangeCredentials,
    ExchangeError,
    OrderFill,
    OrderRequest,
    Quote,
    split_symbol,
)
from exchanges.http import send_with_retry

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "FILLED": "filled",
    "PARTIALLY_FILLED": "partially_filled",
    "NEW": "submitted",
    "PENDING_NEW": "submitted",
    "REJECTED": "rejected",
    "EXPIRED": "rejected",
    "EXPIRED_IN_MATCH": "rejected",
    "CANCELED": "rejected",
}


class BinanceClientError(ExchangeError):
    """Raised when Binance rejects a request."""

    def __init__(self, message: str, payload: Optional[dict] = None) -> None:
        super().__init__(message, exchange="binance", payload=payload)


def to_binance_symbol(symbol: str) -> str:
    base, quote = split_symbol(symbol)
    return f"{base}{quote}"


class BinanceSpotClient:
    """Async client for the Binance spot REST API."""

    name = "binance"

    def __init__(
        self,
        credentials: ExchangeCredentials | None = None,
        *,
        base_url: str = "https://testnet.binance.vision",
        timeout: float = 10.0,
        recv_window: int = 5000,
        retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._recv_window = recv_window
        self._retries = retries
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def quote(self, symbol: str) -> Quote:
        params = {"symbol": to_binance_symbol(symbol)}
        book, stats = await asyncio.gather(
            self._request("GET", "/api/v3/ticker/bookTicker", params=dict(params)),
            self._request("GET", "/api/v3/ticker/24hr", params=dict(params)),
        )
        return Quote(
            symbol=symbol,
            bid=float(book.get("bidPrice") or 0.0),
            ask=float(book.get("askPrice") or 0.0),
            bid_size=float(book.get("bidQty") or 0.0),
            ask_size=float(book.get("askQty") or 0.0),
            last_price=float(stats.get("lastPrice") or 0.0),
            volume_24h=float(stats.get("volume") or 0.0),
        )

    async def fetch_candles(self, symbol: str, *, interval: str = "1h", limit: int = 100) -> List[Candle]:
        params = {"symbol": to_binance_symbol(symbol), "interval": interval, "limit": min(limit, 1000)}
        rows = await self._request("GET", "/api/v3/klines", params=params)
        return [
            Candle(
                timestamp=int(row[0]),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
            )
            for row in rows
            if len(row) >= 6
        ]

    async def fetch_balance(self, asset: str) -> float:
        account = await self._request("GET", "/api/v3/account", signed=True)
        for balance in account.get("balances") or []:
            if balance.get("asset") == asset.upper():
                return float(balance.get("free") or 0.0)
        return 0.0

    async def place_order(self, order: OrderRequest) -> OrderFill:
        params: Dict[str, Any] = {
            "symbol": to_binance_symbol(order.symbol),
            "side": order.side,
            "type": order.order_type.upper(),
            "quantity": f"{order.quantity:.8f}".rstrip("0").rstrip("."),
            "newOrderRespType": "FULL",
        }
        if order.order_type == "limit":
            if not order.price:
                raise ValueError("Limit orders require a price")
            params["price"] = f"{order.price:.8f}".rstrip("0").rstrip(".")
            params["timeInForce"] = "IOC"
        if order.client_order_id:
            params["newClientOrderId"] = order.client_order_id
        data = await self._request("POST", "/api/v3/order", params=params, signed=True)

        executed_qty = float(data.get("executedQty") or 0.0)
        quote_qty = float(data.get("cummulativeQuoteQty") or 0.0)
        price = quote_qty / executed_qty if executed_qty > 0 else 0.0
        base, quote = split_symbol(order.symbol)
        fees = 0.0
        for fill in data.get("fills") or []:
            commission = float(fill.get("commission") or 0.0)
            asset = fill.get("commissionAsset")
            if asset == base:
                fees += commission * float(fill.get("price") or price)
            elif asset == quote:
                fees += commission
            else:
                # Fees paid in a third asset (e.g. BNB) are not converted.
                logger.debug("Ignoring %s commission in %s", commission, asset)
        return OrderFill(
            order_id=str(data.get("orderId")),
            status=_STATUS_MAP.get(str(data.get("status")), "failed"),  # type: ignore[arg-type]
            executed_qty=executed_qty,
            executed_price=price,
            fees=fees,
            raw=data,
        )

    async def health(self) -> bool:
        try:
            await self._request("GET", "/api/v3/ping")
        except ExchangeError as exc:
            logger.warning("Binance health check failed: %s", exc)
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: Literal["GET", "POST"],
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = False,
    ) -> Any:
        params = dict(params or {})
        headers: Dict[str, str] = {}
        if signed:
            if self._credentials is None:
                raise BinanceClientError("Client has not been authenticated")
            params["timestamp"] = int(time.time() * 1000)
            params["recvWindow"] = self._recv_window
            query = urlencode(params)
            params["signature"] = hmac.new(
                self._credentials.api_secret.encode("utf-8"),
                query.encode("utf-8"),
                hashlib.sha256,
            ).hexdigest()
            headers["X-MBX-APIKEY"] = self._credentials.api_key
        try:
            response = await send_with_retry(
                self._client,
                method,
                path,
                retries=self._retries,
                params=params,
                headers=headers,
            )
        except httpx.HTTPStatusError as exc:
            payload: dict = {}
            try:
                payload = exc.response.json()
            except ValueError:
                payload = {"status_code": exc.response.status_code}
            raise BinanceClientError(
                f"Binance error {payload.get('code', exc.response.status_code)}: {payload.get('msg', '')}",
                payload=payload,
            ) from exc
        except httpx.TransportError as exc:
            raise BinanceClientError(f"Binance transport error for {path}: {exc}") from exc
        return response.json()
