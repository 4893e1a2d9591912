"""
Venue selection, fallback execution and cross-venue arbitrage scanning.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import config
from exchanges.base_client import (
    ExchangeClient,
    ExchangeError,
    ExchangeInfo,
    OrderRequest,
    Quote,
    split_symbol,
)
from execution.arbitrage import OpportunityBook, arbitrage_risk
from execution.schemas import (
    ArbitrageOpportunity,
    ExecutionPlan,
    ExecutionResult,
    RiskLevel,
    Route,
    RouterSettings,
)

logger = logging.getLogger(__name__)

COST_WEIGHT = 0.4
RELIABILITY_WEIGHT = 0.3
LATENCY_WEIGHT = 0.2
PROBABILITY_WEIGHT = 0.1

FAILED_STATUSES = frozenset({"rejected", "failed"})


def execution_probability(quote: Quote, side: str, amount: float) -> float:
    """Heuristic fill probability from spread tightness and top-of-book depth."""
    probability = 0.5
    spread = quote.spread_percent
    if spread < 0.1:
        probability += 0.3
    elif spread < 0.5:
        probability += 0.2
    elif spread > 2.0:
        probability -= 0.2

    depth = quote.ask_size if side == "BUY" else quote.bid_size
    if amount > 0:
        ratio = depth / amount
        if ratio > 10:
            probability += 0.2
        elif ratio > 5:
            probability += 0.1
        elif ratio < 2:
            probability -= 0.2
    return max(0.1, min(0.95, probability))


def plan_risk_level(primary: Route) -> RiskLevel:
    if primary.reliability_score > 80 and primary.execution_probability > 0.9:
        return "LOW"
    if primary.reliability_score > 60 and primary.execution_probability > 0.7:
        return "MEDIUM"
    return "HIGH"


class ExchangeRouter:
    """Scores venues per order and executes with ordered fallback."""

    def __init__(
        self,
        clients: Iterable[ExchangeClient],
        settings: RouterSettings | None = None,
        *,
        exchange_info: Mapping[str, ExchangeInfo] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or RouterSettings.load()
        self._clients: Dict[str, ExchangeClient] = {client.name: client for client in clients}
        self._info: Dict[str, ExchangeInfo] = dict(exchange_info or {})
        for name in self._clients:
            if name not in self._info:
                self._info[name] = ExchangeInfo.from_settings(name, config.EXCHANGE_INFO.get(name, {}))
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self.opportunities = OpportunityBook(clock=self._clock)

    @property
    def exchanges(self) -> List[str]:
        return list(self._clients)

    def client(self, name: str) -> ExchangeClient:
        try:
            return self._clients[name]
        except KeyError as exc:
            raise ExchangeError(f"Unknown exchange '{name}'", exchange=name) from exc

    # ------------------------------------------------------------------ routing
    async def best_route(
        self,
        symbol: str,
        side: str,
        amount: float,
        candidates: Sequence[str] | None = None,
    ) -> ExecutionPlan:
        names = [name for name in (candidates or self.exchanges) if name in self._clients]
        quotes = await self._quotes(symbol, names)
        if not quotes:
            raise ExchangeError(f"No venue returned a quote for {symbol}")

        routes = [self._route(name, quote, side, amount) for name, quote in quotes.items()]
        routes = self._score(routes, side)
        routes.sort(key=lambda route: route.score, reverse=True)

        primary, fallbacks = routes[0], tuple(routes[1 : 1 + self.settings.max_fallbacks])
        plan = ExecutionPlan(
            symbol=symbol,
            side=side,  # type: ignore[arg-type]
            amount=amount,
            primary_route=primary,
            fallback_routes=fallbacks,
            risk_level=plan_risk_level(primary),
            recommendations=tuple(self._recommendations(primary, fallbacks)),
        )
        logger.info(
            "Route for %s %.8f %s: %s (score %.3f), fallbacks=%s, risk=%s",
            side,
            amount,
            symbol,
            primary.exchange,
            primary.score,
            [route.exchange for route in fallbacks],
            plan.risk_level,
        )
        return plan

    def _route(self, name: str, quote: Quote, side: str, amount: float) -> Route:
        info = self._info[name]
        price = quote.ask if side == "BUY" else quote.bid
        if price <= 0:
            price = quote.last_price
        return Route(
            exchange=name,
            expected_price=price,
            estimated_fee_cost=amount * price * info.taker_fee_percent / 100,
            estimated_latency_ms=info.latency_ms,
            reliability_score=info.reliability,
            execution_probability=execution_probability(quote, side, amount),
        )

    def _score(self, routes: List[Route], side: str) -> List[Route]:
        def effective(route: Route) -> float:
            fee_rate = self._info[route.exchange].taker_fee_percent / 100
            return route.expected_price * (1 + fee_rate if side == "BUY" else 1 - fee_rate)

        prices = [effective(route) for route in routes]
        best = min(prices) if side == "BUY" else max(prices)
        scored: List[Route] = []
        for route, price in zip(routes, prices):
            if price <= 0 or best <= 0:
                cost = 0.0
            else:
                cost = best / price if side == "BUY" else price / best
            latency = max(0.0, 1 - route.estimated_latency_ms / self.settings.latency_ceiling_ms)
            score = (
                COST_WEIGHT * cost
                + RELIABILITY_WEIGHT * route.reliability_score / 100
                + LATENCY_WEIGHT * latency
                + PROBABILITY_WEIGHT * route.execution_probability
            )
            scored.append(
                Route(
                    exchange=route.exchange,
                    expected_price=route.expected_price,
                    estimated_fee_cost=route.estimated_fee_cost,
                    estimated_latency_ms=route.estimated_latency_ms,
                    reliability_score=route.reliability_score,
                    execution_probability=route.execution_probability,
                    score=score,
                )
            )
        return scored

    @staticmethod
    def _recommendations(primary: Route, fallbacks: Sequence[Route]) -> List[str]:
        hints: List[str] = []
        if primary.estimated_fee_cost > 100:
            hints.append("Consider maker orders to reduce fees")
        if primary.estimated_latency_ms > 1000:
            hints.append("High latency venue; monitor execution closely")
        if primary.reliability_score < 80:
            hints.append("Venue reliability is below 80; monitor closely")
        if primary.execution_probability < 0.5:
            hints.append("Thin book or wide spread; consider splitting the order")
        if not fallbacks:
            hints.append("No fallback venue available")
        return hints

    # ------------------------------------------------------------------ execution
    async def execute_with_routing(
        self,
        plan: ExecutionPlan,
        *,
        client_order_id: str | None = None,
    ) -> ExecutionResult:
        """Try the primary route, then each fallback in order, until one fills."""
        result = ExecutionResult(success=False)
        for index, route in enumerate(plan.routes):
            result.attempts.append(route.exchange)
            client = self._clients.get(route.exchange)
            if client is None:
                result.error = f"Exchange '{route.exchange}' is not configured"
                continue
            order = OrderRequest(
                symbol=plan.symbol,
                side=plan.side,
                quantity=plan.amount,
                client_order_id=client_order_id,
                metadata={"route_score": route.score},
            )
            try:
                fill = await asyncio.wait_for(
                    client.place_order(order), timeout=self.settings.order_timeout_seconds
                )
            except asyncio.TimeoutError:
                result.error = (
                    f"{route.exchange}: order timed out after {self.settings.order_timeout_seconds:.1f}s"
                )
                logger.warning("Order on %s timed out for %s", route.exchange, plan.symbol)
                continue
            except ExchangeError as exc:
                result.error = f"{route.exchange}: {exc}"
                logger.warning("Order on %s failed for %s: %s", route.exchange, plan.symbol, exc)
                continue

            if fill.status in FAILED_STATUSES:
                result.error = f"{route.exchange}: order {fill.status}"
                logger.warning("Order on %s %s for %s", route.exchange, fill.status, plan.symbol)
                continue

            result.success = True
            result.route = route
            result.fill = fill
            result.used_fallback = index > 0
            result.error = None
            logger.info(
                "Executed %s %.8f %s on %s @ %.4f%s",
                plan.side,
                fill.executed_qty,
                plan.symbol,
                route.exchange,
                fill.executed_price,
                " (fallback)" if index > 0 else "",
            )
            return result

        logger.error("All routes failed for %s %s: %s", plan.side, plan.symbol, result.error)
        return result

    # ------------------------------------------------------------------ arbitrage
    async def scan_arbitrage(self, symbols: Sequence[str]) -> List[ArbitrageOpportunity]:
        found: List[ArbitrageOpportunity] = []
        for symbol in symbols:
            opportunity = await self._scan_symbol(symbol)
            if opportunity is not None:
                found.append(opportunity)
        self.opportunities.update(found)
        return [item for item in found if not item.is_expired(self._clock())]

    def list_opportunities(self) -> List[ArbitrageOpportunity]:
        return self.opportunities.active()

    async def _scan_symbol(self, symbol: str) -> Optional[ArbitrageOpportunity]:
        if len(self._clients) < 2:
            return None
        base, quote_asset = split_symbol(symbol)
        quotes = await self._quotes(symbol, self.exchanges)
        if len(quotes) < 2:
            return None
        balances = await self._balances(list(quotes), (base, quote_asset))

        buy_name: str | None = None
        sell_name: str | None = None
        for name, quote in quotes.items():
            cash = balances.get((name, quote_asset), 0.0)
            inventory = balances.get((name, base), 0.0)
            if quote.ask > 0 and cash > 0 and (buy_name is None or quote.ask < quotes[buy_name].ask):
                buy_name = name
            if quote.bid > 0 and inventory > 0 and (sell_name is None or quote.bid > quotes[sell_name].bid):
                sell_name = name
        if buy_name is None or sell_name is None or buy_name == sell_name:
            return None

        buy_price = quotes[buy_name].ask
        sell_price = quotes[sell_name].bid
        spread_percent = (sell_price - buy_price) / buy_price * 100
        if spread_percent < self.settings.min_spread_percent:
            return None

        quantity = min(
            balances[(buy_name, quote_asset)] / buy_price,
            balances[(sell_name, base)],
            self.settings.max_arbitrage_notional / buy_price,
        )
        buy_info, sell_info = self._info[buy_name], self._info[sell_name]
        fees = (
            quantity * buy_price * buy_info.taker_fee_percent / 100
            + quantity * sell_price * sell_info.taker_fee_percent / 100
        )
        profit = (sell_price - buy_price) * quantity - fees
        if profit <= 0:
            logger.debug("Spread %.3f%% on %s does not cover fees", spread_percent, symbol)
            return None

        now = self._clock()
        opportunity = ArbitrageOpportunity(
            symbol=symbol,
            buy_exchange=buy_name,
            sell_exchange=sell_name,
            buy_price=buy_price,
            sell_price=sell_price,
            quantity=quantity,
            spread_percent=spread_percent,
            profit_after_fees=profit,
            risk_level=arbitrage_risk(buy_info.reliability, sell_info.reliability),
            discovered_at=now,
            expires_at=now + timedelta(seconds=self.settings.arbitrage_ttl_seconds),
        )
        logger.info(
            "Arbitrage %s: buy %s @ %.4f, sell %s @ %.4f, profit %.4f",
            symbol,
            buy_name,
            buy_price,
            sell_name,
            sell_price,
            profit,
        )
        return opportunity

    # ------------------------------------------------------------------ venue calls
    async def _quotes(self, symbol: str, names: Sequence[str]) -> Dict[str, Quote]:
        results = await asyncio.gather(
            *(
                asyncio.wait_for(self._clients[name].quote(symbol), self.settings.quote_timeout_seconds)
                for name in names
            ),
            return_exceptions=True,
        )
        quotes: Dict[str, Quote] = {}
        for name, result in zip(names, results):
            if isinstance(result, Quote):
                quotes[name] = result
            elif isinstance(result, asyncio.TimeoutError):
                logger.warning("Quote from %s timed out for %s", name, symbol)
            elif isinstance(result, ExchangeError):
                logger.warning("Quote from %s failed for %s: %s", name, symbol, result)
            else:
                logger.error("Unexpected quote failure from %s for %s", name, symbol, exc_info=result)
        return quotes

    async def _balances(
        self, names: Sequence[str], assets: Sequence[str]
    ) -> Dict[tuple[str, str], float]:
        keys = [(name, asset) for name in names for asset in assets]
        results = await asyncio.gather(
            *(self._clients[name].fetch_balance(asset) for name, asset in keys),
            return_exceptions=True,
        )
        balances: Dict[tuple[str, str], float] = {}
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                logger.warning("Balance %s on %s unavailable: %s", key[1], key[0], result)
                continue
            balances[key] = float(result)
        return balances

    async def health(self) -> Dict[str, bool]:
        names = self.exchanges
        results = await asyncio.gather(
            *(self._clients[name].health() for name in names), return_exceptions=True
        )
        return {name: result is True for name, result in zip(names, results)}

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
