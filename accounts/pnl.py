"""
Realized PnL attribution using weighted-average cost.

BUY fills increase the holding and re-average its cost; SELL fills realize
``(price - average_cost) * quantity`` on the portion that closes the long
holding. Any SELL quantity beyond the holding opens a short lot that is
averaged the same way and realized by later BUYs. Fees always reduce PnL.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Tuple

from accounts.models import Trade


@dataclass(slots=True)
class CostBasis:
    quantity: float = 0.0  # signed: >0 long, <0 short
    average_cost: float = 0.0


def apply_fill(basis: CostBasis, trade: Trade) -> float:
    """Apply one fill to ``basis`` in place and return the PnL it realizes."""
    signed_qty = trade.quantity if trade.side == "BUY" else -trade.quantity
    realized = -trade.fee

    if basis.quantity == 0 or (basis.quantity > 0) == (signed_qty > 0):
        total = abs(basis.quantity) + abs(signed_qty)
        if total > 0:
            basis.average_cost = (
                abs(basis.quantity) * basis.average_cost + abs(signed_qty) * trade.price
            ) / total
        basis.quantity += signed_qty
        return realized

    closing = min(abs(signed_qty), abs(basis.quantity))
    direction = 1.0 if basis.quantity > 0 else -1.0
    realized += (trade.price - basis.average_cost) * closing * direction
    basis.quantity += signed_qty
    remainder = abs(signed_qty) - closing
    if abs(basis.quantity) < 1e-12:
        basis.quantity = 0.0
        basis.average_cost = 0.0
    elif remainder > 0:
        # Position flipped; the leftover opens a fresh lot at the fill price.
        basis.average_cost = trade.price
    return realized


def realized_pnl(
    trades: Iterable[Trade],
    opening_basis: Dict[str, CostBasis] | None = None,
) -> Tuple[float, Dict[str, CostBasis]]:
    """Replay ``trades`` in execution order and return (total pnl, bases)."""
    bases: Dict[str, CostBasis] = {
        symbol: CostBasis(b.quantity, b.average_cost)
        for symbol, b in (opening_basis or {}).items()
    }
    total = 0.0
    for trade in sorted(trades, key=lambda t: t.executed_at):
        basis = bases.setdefault(trade.symbol, CostBasis())
        total += apply_fill(basis, trade)
    return total, bases
