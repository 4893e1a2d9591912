import pytest

from exchanges.base_client import ExchangeError, ExchangeInfo, Quote
from execution.router import ExchangeRouter, execution_probability, plan_risk_level
from execution.schemas import Route, RouterSettings


def _info(name, *, taker=0.1, latency=50.0, reliability=95.0):
    return ExchangeInfo(name, 0.1, taker, latency, reliability)


def _router(clients, clock, *, info=None, **settings):
    info = info or {client.name: _info(client.name) for client in clients}
    return ExchangeRouter(clients, RouterSettings(**settings), exchange_info=info, clock=clock)


@pytest.fixture
def venues(make_exchange):
    return (
        make_exchange("alpha", bid=99.95, ask=100.0),
        make_exchange("beta", bid=101.95, ask=102.0),
        make_exchange("gamma", bid=104.95, ask=105.0),
    )


async def test_cheapest_venue_is_primary_for_buys(venues, clock):
    router = _router(venues, clock)

    plan = await router.best_route("BTC-USDT", "BUY", 1.0)

    assert [route.exchange for route in plan.routes] == ["alpha", "beta", "gamma"]
    assert plan.primary_route.expected_price == 100.0
    assert plan.primary_route.estimated_fee_cost == pytest.approx(0.1)
    assert plan.primary_route.score > plan.fallback_routes[0].score


async def test_highest_bid_is_primary_for_sells(venues, clock):
    router = _router(venues, clock)

    plan = await router.best_route("BTC-USDT", "SELL", 1.0)

    assert plan.primary_route.exchange == "gamma"
    assert plan.primary_route.expected_price == 104.95


async def test_reliability_breaks_price_ties(make_exchange, clock):
    clients = (make_exchange("shaky"), make_exchange("steady"))
    info = {"shaky": _info("shaky", reliability=40.0), "steady": _info("steady", reliability=99.0)}
    router = _router(clients, clock, info=info)

    plan = await router.best_route("BTC-USDT", "BUY", 0.01)

    assert plan.primary_route.exchange == "steady"
    assert "Venue reliability is below 80; monitor closely" not in plan.recommendations


async def test_fallback_count_is_capped(venues, clock):
    router = _router(venues, clock, max_fallbacks=1)

    plan = await router.best_route("BTC-USDT", "BUY", 1.0)

    assert len(plan.fallback_routes) == 1


async def test_venue_without_quote_is_excluded(venues, clock):
    venues[0].quote_error = True
    router = _router(venues, clock)

    plan = await router.best_route("BTC-USDT", "BUY", 1.0)

    assert "alpha" not in [route.exchange for route in plan.routes]


async def test_no_quotes_raises(venues, clock):
    for venue in venues:
        venue.quote_error = True
    router = _router(venues, clock)

    with pytest.raises(ExchangeError):
        await router.best_route("BTC-USDT", "BUY", 1.0)


async def test_primary_fill_does_not_touch_fallbacks(venues, clock):
    router = _router(venues, clock)
    plan = await router.best_route("BTC-USDT", "BUY", 1.0)

    result = await router.execute_with_routing(plan, client_order_id="abc123")

    assert result.success
    assert result.route.exchange == "alpha"
    assert result.used_fallback is False
    assert result.attempts == ["alpha"]
    assert venues[0].orders[0].client_order_id == "abc123"
    assert venues[1].orders == [] and venues[2].orders == []


async def test_fallbacks_are_tried_in_plan_order(venues, clock):
    venues[0].fail_orders = True
    router = _router(venues, clock)
    plan = await router.best_route("BTC-USDT", "BUY", 1.0)

    result = await router.execute_with_routing(plan)

    assert result.success
    assert result.route.exchange == "beta"
    assert result.used_fallback is True
    assert result.attempts == ["alpha", "beta"]
    assert venues[2].orders == []


async def test_rejected_and_slow_venues_count_as_failures(venues, clock):
    venues[0].order_status = "rejected"
    venues[1].order_delay = 1.0
    router = _router(venues, clock, order_timeout_seconds=0.05)
    plan = await router.best_route("BTC-USDT", "BUY", 1.0)

    result = await router.execute_with_routing(plan)

    assert result.success
    assert result.route.exchange == "gamma"
    assert result.attempts == ["alpha", "beta", "gamma"]


async def test_all_routes_failing_reports_last_error(venues, clock):
    for venue in venues:
        venue.fail_orders = True
    router = _router(venues, clock)
    plan = await router.best_route("BTC-USDT", "BUY", 1.0)

    result = await router.execute_with_routing(plan)

    assert not result.success
    assert result.fill is None
    assert result.attempts == ["alpha", "beta", "gamma"]
    assert result.error.startswith("gamma:")


async def test_arbitrage_found_and_expires(make_exchange, clock):
    cheap = make_exchange("alpha", bid=99.9, ask=100.0, balances={"USDT": 1_000.0})
    rich = make_exchange("beta", bid=101.0, ask=101.1, balances={"BTC": 5.0})
    router = _router((cheap, rich), clock, arbitrage_ttl_seconds=30.0)

    found = await router.scan_arbitrage(["BTC-USDT"])

    assert len(found) == 1
    opportunity = found[0]
    assert (opportunity.buy_exchange, opportunity.sell_exchange) == ("alpha", "beta")
    assert opportunity.quantity == pytest.approx(5.0)
    assert opportunity.spread_percent == pytest.approx(1.0)
    assert opportunity.profit_after_fees == pytest.approx(5.0 - 1.005)
    assert opportunity.risk_level == "LOW"
    assert router.list_opportunities() == [opportunity]

    clock.advance(29)
    assert router.list_opportunities() == [opportunity]
    # Expired at exactly the ttl.
    clock.advance(1)
    assert router.list_opportunities() == []
    assert len(router.opportunities) == 0


async def test_spread_eaten_by_fees_is_not_an_opportunity(make_exchange, clock):
    cheap = make_exchange("alpha", bid=99.9, ask=100.0, balances={"USDT": 1_000.0})
    rich = make_exchange("beta", bid=100.15, ask=100.2, balances={"BTC": 5.0})
    router = _router((cheap, rich), clock)

    assert await router.scan_arbitrage(["BTC-USDT"]) == []


async def test_arbitrage_needs_funded_venues(make_exchange, clock):
    cheap = make_exchange("alpha", bid=99.9, ask=100.0)
    rich = make_exchange("beta", bid=101.0, ask=101.1)
    router = _router((cheap, rich), clock)

    assert await router.scan_arbitrage(["BTC-USDT"]) == []


async def test_health_reports_each_venue(venues, clock):
    venues[1].quote_error = True
    router = _router(venues, clock)

    assert await router.health() == {"alpha": True, "beta": False, "gamma": True}


async def test_aclose_closes_clients(venues, clock):
    router = _router(venues, clock)

    await router.aclose()

    assert all(venue.closed for venue in venues)


def test_execution_probability_rewards_tight_deep_books(make_exchange):
    tight = make_exchange("alpha", bid=99.99, ask=100.0, depth=50.0)
    wide = make_exchange("beta", bid=95.0, ask=100.0, depth=1.0)

    tight_quote = _top_of_book(tight)
    wide_quote = _top_of_book(wide)

    assert execution_probability(tight_quote, "BUY", 1.0) == pytest.approx(0.95)
    assert execution_probability(wide_quote, "BUY", 1.0) == pytest.approx(0.1)


def _top_of_book(exchange):
    return Quote("BTC-USDT", exchange.bid, exchange.ask, exchange.depth, exchange.depth, exchange.ask)


@pytest.mark.parametrize(
    "reliability, probability, level",
    [(95.0, 0.95, "LOW"), (95.0, 0.8, "MEDIUM"), (70.0, 0.8, "MEDIUM"), (50.0, 0.95, "HIGH")],
)
def test_plan_risk_level(reliability, probability, level):
    route = Route("alpha", 100.0, 0.1, 50.0, reliability, probability)

    assert plan_risk_level(route) == level
