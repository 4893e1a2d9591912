"""
Order-level guardrails evaluated by the risk gateway.

Each guard records its pass/fail on the evaluation and appends a violation
when it fails, so callers see every broken rule rather than the first one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from accounts.models import Position
from risk.schemas import OrderSide, RiskEvaluation


def is_reducing(side: OrderSide, position: Optional[Position]) -> bool:
    """True when ``side`` closes or shrinks the open ``position``."""
    return position is not None and position.is_open and position.side != side


@dataclass(slots=True)
class MinimumNotionalGuard:
    """Reject orders whose notional is below the configured minimum."""

    min_notional: float = 10.0

    def validate(self, symbol: str, quantity: float, price: float, evaluation: RiskEvaluation) -> None:
        notional = quantity * price if quantity > 0 and price > 0 else 0.0
        passed = notional >= self.min_notional and notional > 0
        evaluation.record_check("min_notional", passed)
        if not passed:
            evaluation.add_violation(
                "NOTIONAL_TOO_LOW",
                f"Order notional {notional:.2f} below minimum {self.min_notional:.2f}.",
                symbol=symbol,
                notional=notional,
                min_notional=self.min_notional,
            )


@dataclass(slots=True)
class DuplicatePositionGuard:
    """Block a second same-direction position on a symbol."""

    def validate(
        self,
        symbol: str,
        side: OrderSide,
        existing: Optional[Position],
        evaluation: RiskEvaluation,
    ) -> None:
        duplicate = existing is not None and existing.is_open and existing.side == side
        evaluation.record_check("no_duplicate_position", not duplicate)
        if duplicate:
            evaluation.add_violation(
                "DUPLICATE_POSITION",
                f"Open {existing.side} position already exists for {symbol}.",
                symbol=symbol,
                position_id=existing.position_id,
            )


@dataclass(slots=True)
class PositionCountGuard:
    """Cap the number of concurrently open positions."""

    max_positions: int = 3

    def passes(self, open_positions: int) -> bool:
        return open_positions < self.max_positions

    def validate(self, open_positions: int, evaluation: RiskEvaluation, *, reducing: bool = False) -> None:
        passed = reducing or self.passes(open_positions)
        evaluation.record_check("max_positions", passed)
        if not passed:
            evaluation.add_violation(
                "MAX_POSITIONS",
                f"Open positions {open_positions} at limit {self.max_positions}.",
                open_positions=open_positions,
                max_positions=self.max_positions,
            )


@dataclass(slots=True)
class DailyLossGuard:
    """Compare simulated daily PnL with the loss budget."""

    max_daily_loss_percent: float = 10.0

    def limit(self, portfolio_value: float) -> float:
        return portfolio_value * self.max_daily_loss_percent / 100

    def breached(self, daily_pnl: float, hypothetical_pnl: float, portfolio_value: float) -> bool:
        return daily_pnl + hypothetical_pnl < -self.limit(portfolio_value)
