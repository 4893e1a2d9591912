from datetime import datetime, timedelta, timezone

import pytest

from accounts.models import Trade
from accounts.pnl import CostBasis, apply_fill, realized_pnl

T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _trade(side, quantity, price, *, fee=0.0, minutes=0, symbol="BTC-USDT"):
    return Trade(
        trade_id=f"t{minutes}",
        symbol=symbol,
        side=side,
        quantity=quantity,
        price=price,
        fee=fee,
        executed_at=T0 + timedelta(minutes=minutes),
    )


def test_buys_average_the_cost():
    basis = CostBasis()

    apply_fill(basis, _trade("BUY", 1.0, 100.0))
    apply_fill(basis, _trade("BUY", 1.0, 110.0))

    assert basis.quantity == 2.0
    assert basis.average_cost == pytest.approx(105.0)


def test_sell_realizes_against_average_cost():
    basis = CostBasis(quantity=2.0, average_cost=105.0)

    pnl = apply_fill(basis, _trade("SELL", 1.0, 120.0, fee=0.5))

    assert pnl == pytest.approx(14.5)
    assert basis.quantity == 1.0
    assert basis.average_cost == 105.0


def test_full_exit_resets_basis():
    basis = CostBasis(quantity=1.0, average_cost=100.0)

    apply_fill(basis, _trade("SELL", 1.0, 90.0))

    assert basis.quantity == 0.0
    assert basis.average_cost == 0.0


def test_oversell_flips_into_a_short_lot():
    basis = CostBasis(quantity=1.0, average_cost=100.0)

    pnl = apply_fill(basis, _trade("SELL", 3.0, 110.0))

    assert pnl == pytest.approx(10.0)
    assert basis.quantity == pytest.approx(-2.0)
    assert basis.average_cost == 110.0

    cover = apply_fill(basis, _trade("BUY", 2.0, 100.0))
    assert cover == pytest.approx(20.0)
    assert basis.quantity == 0.0


def test_realized_pnl_replays_in_execution_order():
    trades = [
        _trade("SELL", 1.0, 120.0, minutes=5),
        _trade("BUY", 1.0, 100.0, minutes=0, fee=1.0),
        _trade("BUY", 2.0, 3_000.0, minutes=1, symbol="ETH-USDT"),
    ]

    total, bases = realized_pnl(trades)

    assert total == pytest.approx(19.0)
    assert bases["BTC-USDT"].quantity == 0.0
    assert bases["ETH-USDT"].quantity == 2.0


def test_opening_basis_is_not_mutated():
    opening = {"BTC-USDT": CostBasis(quantity=1.0, average_cost=100.0)}

    total, bases = realized_pnl([_trade("SELL", 1.0, 101.0)], opening)

    assert total == pytest.approx(1.0)
    assert opening["BTC-USDT"].quantity == 1.0
    assert bases["BTC-USDT"].quantity == 0.0
