"""
Risk gateway: position sizing and pre-trade validation.

The gateway owns a single mutable ``RiskProfile`` per account. Every
operation first applies the lazy daily reset (once per calendar date change)
and all mutations happen under one re-entrant lock, because the decision
engine may evaluate several symbols concurrently.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from datetime import date, datetime, timezone
from typing import Callable, Dict, Optional

from accounts.models import Trade
from accounts.pnl import CostBasis, apply_fill, realized_pnl
from accounts.repository import TradingRepository
from risk.emergency_stop import EmergencyStop
from risk.errors import RiskError
from risk.guards import (
    DailyLossGuard,
    DuplicatePositionGuard,
    MinimumNotionalGuard,
    PositionCountGuard,
    is_reducing,
)
from risk.schemas import (
    AdaptiveRiskParameters,
    OrderSide,
    PositionSize,
    RiskEvaluation,
    RiskMetrics,
    RiskProfile,
    RiskSettings,
    VolatilityMetrics,
)
from risk.volatility import BASE_STOP_MULTIPLIER, base_parameters, derive_parameters

logger = logging.getLogger(__name__)


class RiskGateway:
    """Sizes positions and gates execution against capital-preservation limits."""

    def __init__(
        self,
        repository: TradingRepository,
        settings: RiskSettings | None = None,
        *,
        portfolio_value: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or RiskSettings.load()
        self._repository = repository
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._lock = threading.RLock()
        self._profile = RiskProfile(last_reset_date=self._today())
        self._emergency = EmergencyStop(self._profile, clock=self._clock)
        self._portfolio_value = (
            portfolio_value if portfolio_value is not None else self.settings.starting_equity
        )
        self._parameters = base_parameters(self.settings)
        self._bases: Dict[str, CostBasis] = {}
        self._notional_guard = MinimumNotionalGuard(self.settings.min_trade_amount_usd)
        self._duplicate_guard = DuplicatePositionGuard()
        self._load_daily_pnl()

    # ------------------------------------------------------------------ sizing
    def size_position(
        self,
        symbol: str,
        side: OrderSide,
        price: float,
        stop_loss_price: float | None = None,
        portfolio_value: float | None = None,
        volatility: VolatilityMetrics | None = None,
    ) -> PositionSize:
        """
        Size a position so that hitting the stop loses ``risk_per_trade%`` of
        the portfolio.

        Without an explicit stop the distance is the configured default stop,
        widened or tightened by the regime's stop multiplier. The take-profit
        distance keeps the regime's reward:risk ratio, which is never below 2.
        """
        if price is None or price <= 0:
            raise RiskError("POSITION_SIZE", "Price must be positive.", {"symbol": symbol, "price": price})
        params = self.parameters_for(volatility)
        with self._lock:
            self._maybe_reset()
            value = portfolio_value if portfolio_value is not None else self._portfolio_value
        if value <= 0:
            raise RiskError(
                "POSITION_SIZE",
                "Portfolio value must be positive.",
                {"symbol": symbol, "portfolio_value": value},
            )

        if stop_loss_price is not None:
            if (side == "BUY" and stop_loss_price >= price) or (side == "SELL" and stop_loss_price <= price):
                raise RiskError(
                    "POSITION_SIZE",
                    "Stop loss is on the wrong side of the entry price.",
                    {"symbol": symbol, "side": side, "price": price, "stop_loss": stop_loss_price},
                )
            stop_distance = abs(price - stop_loss_price) / price
        else:
            stop_distance = (
                self.settings.default_stop_loss_percent
                / 100
                * params.stop_loss_multiplier
                / BASE_STOP_MULTIPLIER
            )
        if stop_distance <= 0:
            raise RiskError("POSITION_SIZE", "Stop distance must be positive.", {"symbol": symbol})

        risk_amount = value * params.risk_per_trade_percent / 100
        quantity = risk_amount / (stop_distance * price)
        reward_risk = params.take_profit_multiplier / params.stop_loss_multiplier
        take_profit_distance = stop_distance * reward_risk

        if side == "BUY":
            stop_price = stop_loss_price if stop_loss_price is not None else price * (1 - stop_distance)
            take_profit = price * (1 + take_profit_distance)
        else:
            stop_price = stop_loss_price if stop_loss_price is not None else price * (1 + stop_distance)
            take_profit = price * (1 - take_profit_distance)

        size = PositionSize(
            symbol=symbol,
            side=side,
            quantity=quantity,
            notional=quantity * price,
            risk_amount=risk_amount,
            stop_loss_price=stop_price,
            take_profit_price=take_profit,
            stop_distance_percent=stop_distance * 100,
            risk_reward=reward_risk,
            sizing_method=params.sizing_method,
        )
        logger.info(
            "Sized %s %s: qty=%.8f risk=%.2f stop=%.4f tp=%.4f (%s)",
            side,
            symbol,
            quantity,
            risk_amount,
            stop_price,
            take_profit,
            params.sizing_method.value,
        )
        return size

    def parameters_for(self, volatility: VolatilityMetrics | None) -> AdaptiveRiskParameters:
        if volatility is None:
            return base_parameters(self.settings)
        return derive_parameters(volatility, self.settings)

    def apply_volatility(self, volatility: VolatilityMetrics | None) -> AdaptiveRiskParameters:
        """Adopt the limits of the latest measured regime for gateway-wide checks."""
        params = self.parameters_for(volatility)
        with self._lock:
            self._parameters = params
        return params

    # ------------------------------------------------------------------ checks
    def check_daily_loss_limit(self, hypothetical_pnl: float = 0.0) -> bool:
        """Return False (and trip the emergency stop) if the loss budget would be breached."""
        with self._lock:
            self._maybe_reset()
            guard = DailyLossGuard(self._parameters.max_daily_loss_percent)
            if guard.breached(self._profile.daily_pnl, hypothetical_pnl, self._portfolio_value):
                simulated = self._profile.daily_pnl + hypothetical_pnl
                logger.warning(
                    "Daily loss limit breached: simulated pnl %.2f vs limit %.2f",
                    simulated,
                    guard.limit(self._portfolio_value),
                )
                self._emergency.trip(
                    f"Daily loss limit breached (simulated pnl {simulated:.2f})",
                    actor="risk-gateway",
                )
                return False
            return True

    def check_max_positions(self) -> bool:
        with self._lock:
            self._maybe_reset()
            count = self._refresh_open_positions()
            return PositionCountGuard(self._parameters.max_concurrent_positions).passes(count)

    def evaluate_execution(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        price: float,
        stop_loss: float | None = None,
    ) -> RiskEvaluation:
        """Run every pre-trade rule and return the individual outcomes."""
        evaluation = RiskEvaluation(approved=True)
        with self._lock:
            self._maybe_reset()
            daily_ok = self.check_daily_loss_limit()
            evaluation.record_check("daily_loss", daily_ok)
            if not daily_ok:
                evaluation.add_violation(
                    "DAILY_LOSS",
                    "Daily loss limit reached.",
                    daily_pnl=self._profile.daily_pnl,
                    max_daily_loss_percent=self._parameters.max_daily_loss_percent,
                )

            existing = self._repository.get_open_position(symbol)
            reducing = is_reducing(side, existing)
            count = self._refresh_open_positions()
            PositionCountGuard(self._parameters.max_concurrent_positions).validate(
                count, evaluation, reducing=reducing
            )
            self._emergency.evaluate(evaluation)
            self._notional_guard.validate(symbol, quantity, price, evaluation)
            self._duplicate_guard.validate(symbol, side, existing, evaluation)

        for name, passed in evaluation.checks.items():
            logger.info("Risk check %-22s %s %s: %s", name, side, symbol, "PASS" if passed else "FAIL")
        if not evaluation.approved:
            logger.warning("Execution blocked for %s %s: %s", side, symbol, evaluation.summary())
        return evaluation

    def validate_execution(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        price: float,
        stop_loss: float | None = None,
    ) -> bool:
        return self.evaluate_execution(symbol, side, quantity, price, stop_loss).approved

    # ------------------------------------------------------------------ emergency stop
    def enable_emergency_stop(self, reason: str, *, actor: str = "operator") -> None:
        with self._lock:
            self._emergency.trip(reason, actor=actor)

    def disable_emergency_stop(self, *, actor: str = "operator") -> None:
        with self._lock:
            self._emergency.clear(actor=actor)

    @property
    def emergency_stop_active(self) -> bool:
        with self._lock:
            return self._profile.emergency_stop_active

    # ------------------------------------------------------------------ state updates
    def record_fill(self, trade: Trade) -> float:
        """Apply an executed trade to today's counters and return its realized PnL."""
        with self._lock:
            self._maybe_reset()
            basis = self._bases.setdefault(trade.symbol, CostBasis())
            pnl = apply_fill(basis, trade)
            self._profile.daily_pnl += pnl
            self._profile.daily_trade_count += 1
            logger.info(
                "Recorded %s %s fill: realized %.2f, daily pnl %.2f",
                trade.side,
                trade.symbol,
                pnl,
                self._profile.daily_pnl,
            )
            return pnl

    def update_portfolio_value(self, value: float) -> None:
        if value is None or value <= 0:
            logger.debug("Ignoring non-positive portfolio value %s", value)
            return
        with self._lock:
            self._portfolio_value = float(value)

    @property
    def portfolio_value(self) -> float:
        with self._lock:
            return self._portfolio_value

    @property
    def profile(self) -> RiskProfile:
        """Copy of the current profile."""
        with self._lock:
            self._maybe_reset()
            return dataclasses.replace(self._profile)

    def get_metrics(self) -> RiskMetrics:
        with self._lock:
            self._maybe_reset()
            count = self._refresh_open_positions()
            value = self._portfolio_value
            return RiskMetrics(
                portfolio_value=value,
                daily_pnl=self._profile.daily_pnl,
                daily_pnl_percent=(self._profile.daily_pnl / value * 100) if value > 0 else 0.0,
                daily_trade_count=self._profile.daily_trade_count,
                open_positions=count,
                max_concurrent_positions=self._parameters.max_concurrent_positions,
                risk_per_trade_percent=self._parameters.risk_per_trade_percent,
                max_daily_loss_percent=self._parameters.max_daily_loss_percent,
                emergency_stop_active=self._profile.emergency_stop_active,
                emergency_stop_reason=self._profile.emergency_stop_reason,
                last_reset_date=self._profile.last_reset_date,
                generated_at=self._clock(),
            )

    # ------------------------------------------------------------------ internals
    def _today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    def _maybe_reset(self) -> None:
        today = self._today()
        if self._profile.last_reset_date == today:
            return
        logger.info(
            "Daily risk reset (%s -> %s): pnl %.2f over %d trades",
            self._profile.last_reset_date,
            today,
            self._profile.daily_pnl,
            self._profile.daily_trade_count,
        )
        self._profile.daily_pnl = 0.0
        self._profile.daily_trade_count = 0
        self._profile.last_reset_date = today
        if self._profile.emergency_stop_active:
            logger.warning(
                "Emergency stop remains active after daily reset: %s",
                self._profile.emergency_stop_reason,
            )

    def _refresh_open_positions(self) -> int:
        count = len(self._repository.list_open_positions())
        self._profile.open_position_count = count
        return count

    def _load_daily_pnl(self) -> None:
        trades = self._repository.list_trades()
        today = self._profile.last_reset_date
        earlier = [t for t in trades if _trade_date(t) != today]
        todays = [t for t in trades if _trade_date(t) == today]
        _, opening = realized_pnl(earlier)
        pnl, bases = realized_pnl(todays, opening)
        self._bases = bases
        self._profile.daily_pnl = pnl
        self._profile.daily_trade_count = len(todays)
        self._refresh_open_positions()
        if trades:
            logger.info(
                "Loaded %d trades; daily pnl %.2f over %d trades today",
                len(trades),
                pnl,
                len(todays),
            )


def _trade_date(trade: Trade) -> Optional[date]:
    executed = trade.executed_at
    if executed.tzinfo is None:
        executed = executed.replace(tzinfo=timezone.utc)
    return executed.astimezone(timezone.utc).date()
