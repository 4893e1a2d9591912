"""
OKX spot client with quote, candle, balance and order support.

This adapter targets the OKX REST v5 API. When ``simulate=True`` the
``x-simulated-trading: 1`` header is included so orders go to the demo
environment and real funds are never touched.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import List, Literal, Optional

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

_STATE_MAP = {
    "filled": "filled",
    "partially_filled": "partially_filled",
    "live": "submitted",
    "canceled": "rejected",
    "mmp_canceled": "rejected",
}
_BAR_MAP = {"1m": "1m", "5m": "5m", "15m": "15m", "1h": "1H", "4h": "4H", "1d": "1D"}


class OkxClientError(ExchangeError):
    """Raised when OKX returns a non-success response."""

    def __init__(self, message: str, payload: Optional[dict] = None) -> None:
        super().__init__(message, exchange="okx", payload=payload)


class OkxPaperClient:
    """Async client for the OKX REST API (demo trading by default)."""

    name = "okx"

    def __init__(
        self,
        credentials: ExchangeCredentials | None = None,
        *,
        base_url: str | None = None,
        simulate: bool = True,
        timeout: float = 10.0,
        retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url or "https://www.okx.com"
        self._simulate = simulate
        self._retries = retries
        self._client = httpx.AsyncClient(base_url=self._base_url, timeout=timeout, transport=transport)
        self._credentials = credentials

    def authenticate(self, credentials: ExchangeCredentials) -> None:
        self._credentials = credentials

    # ---------------------------------------------------------------------
    # ExchangeClient API
    # ---------------------------------------------------------------------
    async def quote(self, symbol: str) -> Quote:
        response = await self._request("GET", "/api/v5/market/ticker", params={"instId": symbol}, signed=False)
        data = _single_item(response)
        return Quote(
            symbol=symbol,
            bid=float(data.get("bidPx") or 0.0),
            ask=float(data.get("askPx") or 0.0),
            bid_size=float(data.get("bidSz") or 0.0),
            ask_size=float(data.get("askSz") or 0.0),
            last_price=float(data.get("last") or 0.0),
            volume_24h=float(data.get("vol24h") or 0.0),
        )

    async def fetch_candles(self, symbol: str, *, interval: str = "1h", limit: int = 100) -> List[Candle]:
        params = {"instId": symbol, "bar": _BAR_MAP.get(interval, interval), "limit": str(min(limit, 300))}
        response = await self._request("GET", "/api/v5/market/candles", params=params, signed=False)
        rows = response.get("data") or []
        candles = [
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
        # OKX returns newest first.
        candles.sort(key=lambda c: c.timestamp)
        return candles

    async def fetch_balance(self, asset: str) -> float:
        response = await self._request("GET", "/api/v5/account/balance", params={"ccy": asset})
        for account in response.get("data") or []:
            for detail in account.get("details") or []:
                if detail.get("ccy") == asset:
                    return float(detail.get("availBal") or detail.get("cashBal") or 0.0)
        return 0.0

    async def place_order(self, order: OrderRequest) -> OrderFill:
        body = {
            "instId": order.symbol,
            "tdMode": "cash",
            "side": order.side.lower(),
            "ordType": order.order_type,
            "sz": _format_size(order.quantity),
            "tgtCcy": "base_ccy",
        }
        if order.order_type == "limit":
            if not order.price:
                raise ValueError("Limit orders require a price")
            body["px"] = _format_size(order.price)
        if order.client_order_id:
            body["clOrdId"] = order.client_order_id
        response = await self._request("POST", "/api/v5/trade/order", json_body=body)
        data = _single_item(response)
        if data.get("sCode") not in (None, "0"):
            return OrderFill(
                order_id=str(data.get("ordId") or ""),
                status="rejected",
                executed_qty=0.0,
                executed_price=0.0,
                fees=0.0,
                raw={"error": data.get("sMsg"), **response},
            )
        order_id = str(data.get("ordId"))
        try:
            details = await self._request(
                "GET", "/api/v5/trade/order", params={"instId": order.symbol, "ordId": order_id}
            )
            info = _single_item(details)
        except ExchangeError as exc:
            # The order is live on OKX; callers must not treat it as failed and resend it.
            logger.warning("OKX accepted order %s but its status could not be read: %s", order_id, exc)
            return OrderFill(
                order_id=order_id,
                status="submitted",
                executed_qty=0.0,
                executed_price=0.0,
                fees=0.0,
                raw={"error": str(exc), **response},
            )
        price = float(info.get("avgPx") or info.get("fillPx") or 0.0)
        filled = float(info.get("accFillSz") or 0.0)
        fee_raw = abs(float(info.get("fee") or 0.0))
        base, _ = split_symbol(order.symbol)
        # Fees on buys are charged in the base asset.
        fees = fee_raw * price if info.get("feeCcy") == base else fee_raw
        return OrderFill(
            order_id=order_id,
            status=_STATE_MAP.get(str(info.get("state")), "submitted"),  # type: ignore[arg-type]
            executed_qty=filled,
            executed_price=price,
            fees=fees,
            raw=details,
        )

    async def health(self) -> bool:
        try:
            response = await self._request("GET", "/api/v5/system/status", signed=False)
        except (ExchangeError, httpx.HTTPError) as exc:
            logger.warning("OKX health check failed: %s", exc)
            return False
        ongoing = [event for event in response.get("data") or [] if event.get("state") == "ongoing"]
        return not ongoing

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _request(
        self,
        method: Literal["GET", "POST"],
        path: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
        *,
        signed: bool = True,
    ) -> dict:
        body_text = json.dumps(json_body, separators=(",", ":")) if json_body else ""
        headers = {"Content-Type": "application/json"}
        if self._simulate:
            headers["x-simulated-trading"] = "1"
        if signed:
            if self._credentials is None:
                raise OkxClientError("Client has not been authenticated")
            timestamp = datetime.now(tz=timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
            path_with_params = f"{path}?{httpx.QueryParams(params)}" if params else path
            message = f"{timestamp}{method}{path_with_params}{body_text}"
            headers.update(
                {
                    "OK-ACCESS-KEY": self._credentials.api_key,
                    "OK-ACCESS-SIGN": self._sign(message, self._credentials.api_secret),
                    "OK-ACCESS-TIMESTAMP": timestamp,
                    "OK-ACCESS-PASSPHRASE": self._credentials.passphrase or "",
                }
            )

        try:
            response = await send_with_retry(
                self._client,
                method,
                path,
                retries=self._retries,
                params=params,
                content=body_text if body_text else None,
                headers=headers,
            )
        except httpx.HTTPStatusError as exc:
            raise OkxClientError(
                f"OKX HTTP {exc.response.status_code} for {path}",
                payload={"status_code": exc.response.status_code},
            ) from exc
        except httpx.TransportError as exc:
            raise OkxClientError(f"OKX transport error for {path}: {exc}") from exc
        payload = response.json()
        if payload.get("code") != "0":
            raise OkxClientError(
                f"OKX error {payload.get('code')}: {payload.get('msg')}",
                payload=payload,
            )
        return payload

    @staticmethod
    def _sign(message: str, secret_key: str) -> str:
        mac = hmac.new(
            secret_key.encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        )
        return base64.b64encode(mac.digest()).decode("utf-8")


def _format_size(value: float) -> str:
    return f"{value:.8f}".rstrip("0").rstrip(".")


def _single_item(response: dict) -> dict:
    data = response.get("data") or []
    if not data:
        raise OkxClientError("OKX returned empty data payload", payload=response)
    return data[0]
