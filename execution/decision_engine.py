"""
Decision engine: the per-symbol state machine that turns market data and
advisor consensus into a gated, routed trade or a HOLD.

``evaluate`` never raises. Every failure along the way (market data, quorum,
threshold, risk, routing) degrades to a HOLD decision carrying the reason.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set

import config
from accounts.models import DecisionRecord, Position, Trade, new_id
from accounts.repository import TradingRepository
from confidence.optimizer import ConfidenceThresholdOptimizer
from confidence.schemas import RiskTolerance, ThresholdAdjustment, ThresholdMarketContext
from data_pipeline.market_data import MarketData, MarketDataService, enrich_snapshot, threshold_context
from exchanges.base_client import ExchangeError, OrderFill
from execution.cooldown import CooldownTracker
from execution.router import ExchangeRouter
from execution.schemas import ExecutionPlan, Route
from models.ensemble import EnsembleAggregator
from models.errors import EnsembleError
from models.schemas import ConsensusSignal
from risk.errors import RiskError
from risk.gateway import RiskGateway
from risk.guards import is_reducing
from risk.schemas import VolatilityMetrics
from risk.volatility import VolatilityClassifier

logger = logging.getLogger(__name__)

# Fraction of the time left in a round that advisors may spend answering.
ADVISOR_SHARE_OF_ROUND = 0.8


class DecisionState(str, Enum):
    IDLE = "IDLE"
    EVALUATING = "EVALUATING"
    EXECUTING = "EXECUTING"
    COOLDOWN = "COOLDOWN"


@dataclass(slots=True)
class EngineSettings:
    cooldown_seconds: float = 60.0
    round_timeout_seconds: float = 30.0
    market_data_exchange: str = "binance"
    candle_interval: str = "1h"
    candle_limit: int = 100
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE

    @classmethod
    def load(cls, overrides: Mapping[str, Any] | None = None) -> "EngineSettings":
        from services.storage.settings_store import merged_settings

        values = merged_settings("engine", config.ENGINE_SETTINGS)
        if overrides:
            values.update(overrides)
        return cls(
            cooldown_seconds=float(values["cooldown_seconds"]),
            round_timeout_seconds=float(values["round_timeout_seconds"]),
            market_data_exchange=str(values["market_data_exchange"]),
            candle_interval=str(values["candle_interval"]),
            candle_limit=int(values["candle_limit"]),
            risk_tolerance=RiskTolerance(str(values["risk_tolerance"]).upper()),
        )


@dataclass(slots=True)
class Decision:
    """Outcome of one ``evaluate`` call."""

    symbol: str
    action: str
    should_execute: bool
    reasoning: str
    confidence: float = 0.0
    executed: bool = False
    threshold: Optional[float] = None
    consensus: Optional[float] = None
    state: DecisionState = DecisionState.IDLE
    exchange: Optional[str] = None
    order_id: Optional[str] = None
    quantity: Optional[float] = None
    price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    used_fallback: bool = False
    realized_pnl: Optional[float] = None
    error_code: Optional[str] = None
    market_context: Optional[ThresholdMarketContext] = None
    votes: Dict[str, str] = field(default_factory=dict)
    decision_id: str = field(default_factory=lambda: new_id("dec"))
    decided_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "decision_id": self.decision_id,
            "symbol": self.symbol,
            "action": self.action,
            "should_execute": self.should_execute,
            "executed": self.executed,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "threshold": self.threshold,
            "consensus": self.consensus,
            "state": self.state.value,
            "exchange": self.exchange,
            "order_id": self.order_id,
            "quantity": self.quantity,
            "price": self.price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "used_fallback": self.used_fallback,
            "realized_pnl": self.realized_pnl,
            "error_code": self.error_code,
            "decided_at": self.decided_at.isoformat(),
        }


@dataclass(slots=True)
class _Round:
    """What the timed part of an evaluation hands to execution; no plan means nothing to send."""

    decision: Decision
    plan: Optional[ExecutionPlan] = None
    consensus: Optional[ConsensusSignal] = None
    closing: Optional[Position] = None


class DecisionEngine:
    """Orchestrates ensemble, threshold, risk gate and router for each symbol."""

    def __init__(
        self,
        *,
        market_data: MarketDataService,
        ensemble: EnsembleAggregator,
        optimizer: ConfidenceThresholdOptimizer,
        gateway: RiskGateway,
        router: ExchangeRouter,
        repository: TradingRepository,
        classifier: VolatilityClassifier | None = None,
        settings: EngineSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or EngineSettings.load()
        self.market_data = market_data
        self.ensemble = ensemble
        self.optimizer = optimizer
        self.gateway = gateway
        self.router = router
        self.repository = repository
        self.classifier = classifier or VolatilityClassifier()
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self.cooldowns = CooldownTracker(self.settings.cooldown_seconds, clock=self._clock)
        self._states: Dict[str, DecisionState] = {}
        self._in_progress: Set[str] = set()
        # Opening decisions per symbol, reported to the optimizer when the position is exited.
        self._entries: Dict[str, Decision] = {}

    # ------------------------------------------------------------------ public API
    def state(self, symbol: str) -> DecisionState:
        if self.cooldowns.active(symbol):
            return DecisionState.COOLDOWN
        return self._states.get(symbol, DecisionState.IDLE)

    async def evaluate(self, symbol: str) -> Decision:
        if self.cooldowns.active(symbol):
            remaining = self.cooldowns.remaining(symbol)
            logger.info("Skipping %s: cooldown (%.0fs left)", symbol, remaining)
            return self._finish(
                Decision(
                    symbol=symbol,
                    action="HOLD",
                    should_execute=False,
                    reasoning="cooldown",
                    state=DecisionState.COOLDOWN,
                    decided_at=self._clock(),
                )
            )
        if symbol in self._in_progress:
            return self._finish(
                self._hold(symbol, "evaluation already in progress", error_code="BUSY"), record=False
            )

        self._in_progress.add(symbol)
        self._states[symbol] = DecisionState.EVALUATING
        round_timeout = self.settings.round_timeout_seconds
        try:
            try:
                round_ = await asyncio.wait_for(self._gather(symbol), timeout=round_timeout)
            except asyncio.TimeoutError:
                logger.warning("Evaluation of %s exceeded %.1fs round timeout", symbol, round_timeout)
                round_ = _Round(
                    self._hold(symbol, f"round timed out after {round_timeout:.1f}s", error_code="TIMEOUT")
                )
            decision = round_.decision
            if round_.plan is not None:
                # Orders are bounded by the router's own timeout; once sent they must be booked.
                decision = await asyncio.shield(self._execute(round_))
        except RiskError as exc:
            logger.warning("Risk error for %s: %s", symbol, exc)
            decision = self._hold(symbol, f"risk: {exc.message}", error_code=exc.code)
        except EnsembleError as exc:
            logger.warning("Ensemble error for %s: %s", symbol, exc)
            decision = self._hold(symbol, f"ensemble: {exc.message}", error_code=exc.code)
        except ExchangeError as exc:
            logger.warning("Exchange error for %s: %s", symbol, exc)
            decision = self._hold(symbol, f"exchange: {exc}", error_code="EXCHANGE")
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure evaluating %s", symbol)
            decision = self._hold(symbol, f"internal error: {exc}", error_code="INTERNAL")
        finally:
            self._in_progress.discard(symbol)
            self._states[symbol] = DecisionState.IDLE

        decision.state = self.state(symbol)
        return self._finish(decision)

    async def evaluate_many(self, symbols: Sequence[str]) -> List[Decision]:
        return list(await asyncio.gather(*(self.evaluate(symbol) for symbol in symbols)))

    def report_outcome(self, decision: Decision, pnl: float) -> None:
        """Feed the realized result of a decision back into the optimizer and advisor accuracy."""
        if decision.threshold is None:
            logger.debug("Decision %s carries no threshold; outcome not recorded", decision.decision_id)
            return
        self.optimizer.record_outcome(
            symbol=decision.symbol,
            confidence=decision.confidence,
            threshold=decision.threshold,
            pnl=pnl,
            executed=decision.executed,
            market=decision.market_context,
        )
        if decision.executed:
            self._score_advisors(decision, pnl)

    async def aclose(self) -> None:
        await self.router.aclose()
        await self.ensemble.registry.aclose()

    def _score_advisors(self, decision: Decision, pnl: float) -> None:
        # An advisor was right if it voted with a winning trade or against a losing one.
        profitable = pnl > 0
        for model_id, vote in decision.votes.items():
            try:
                adapter = self.ensemble.registry.get(model_id)
            except KeyError:
                logger.debug("Advisor %s no longer registered; vote not scored", model_id)
                continue
            adapter.metrics.record_prediction((vote == decision.action) == profitable)

    # ------------------------------------------------------------------ pipeline
    async def _gather(self, symbol: str) -> _Round:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.round_timeout_seconds
        data = await self.market_data.snapshot(symbol)
        metrics = self._classify(symbol, data)
        snapshot = data.snapshot
        if metrics is not None:
            enrich_snapshot(snapshot, metrics)
            self.gateway.apply_volatility(metrics)

        consensus = await self.ensemble.generate_consensus(
            symbol, snapshot, timeout=self._advisor_timeout(deadline - loop.time())
        )
        context = threshold_context(data, metrics)
        adjustment = self.optimizer.get_threshold(context, risk_tolerance=self.settings.risk_tolerance)
        decision = Decision(
            symbol=symbol,
            action=consensus.action,
            should_execute=False,
            reasoning=consensus.reasoning,
            confidence=consensus.confidence,
            threshold=adjustment.threshold,
            consensus=consensus.consensus,
            market_context=context,
            price=snapshot.price,
            votes={signal.source_provider: signal.action for signal in consensus.signals},
            decided_at=self._clock(),
        )

        if consensus.action == "HOLD":
            decision.reasoning = self._hold_reason(consensus)
            return _Round(decision)
        if consensus.confidence < adjustment.threshold:
            decision.action = "HOLD"
            decision.reasoning = (
                f"confidence {consensus.confidence:.2f} below threshold {adjustment.threshold:.2f}"
                f" ({self._describe(adjustment)})"
            )
            return _Round(decision)

        return await self._gate(decision, consensus, data, metrics)

    def _advisor_timeout(self, remaining: float) -> float:
        """Advisors must answer early enough for the rest of the round to finish in time."""
        budget = max(remaining, 0.0) * ADVISOR_SHARE_OF_ROUND
        return min(self.ensemble.settings.timeout_seconds, budget)

    async def _gate(
        self,
        decision: Decision,
        consensus: ConsensusSignal,
        data: MarketData,
        metrics: Optional[VolatilityMetrics],
    ) -> _Round:
        symbol = decision.symbol
        side = consensus.action
        price = data.snapshot.price
        existing = self.repository.get_open_position(symbol)
        reducing = is_reducing(side, existing)  # type: ignore[arg-type]

        if reducing and existing is not None:
            quantity = existing.quantity
            stop_loss, take_profit = None, None
        else:
            size = self.gateway.size_position(
                symbol,
                side,  # type: ignore[arg-type]
                price,
                stop_loss_price=self._usable_stop(side, price, consensus.stop_loss),
                volatility=metrics,
            )
            quantity, stop_loss, take_profit = size.quantity, size.stop_loss_price, size.take_profit_price
        decision.quantity, decision.stop_loss, decision.take_profit = quantity, stop_loss, take_profit

        evaluation = self.gateway.evaluate_execution(symbol, side, quantity, price, stop_loss)  # type: ignore[arg-type]
        if not evaluation.approved:
            codes = [violation.code for violation in evaluation.violations]
            decision.action = "HOLD"
            decision.reasoning = f"risk gate blocked {side}: {evaluation.summary()}"
            decision.error_code = codes[0] if codes else "VALIDATION"
            return _Round(decision)

        decision.should_execute = True
        plan = await self.router.best_route(symbol, side, quantity)
        return _Round(decision, plan=plan, consensus=consensus, closing=existing if reducing else None)

    async def _execute(self, round_: _Round) -> Decision:
        decision = round_.decision
        plan, consensus = round_.plan, round_.consensus
        symbol = decision.symbol
        self._states[symbol] = DecisionState.EXECUTING
        result = await self.router.execute_with_routing(plan, client_order_id=decision.decision_id.replace("-", ""))
        if not result.success:
            decision.action = "HOLD"
            decision.reasoning = f"execution failed on all routes: {result.error}"
            decision.error_code = "EXECUTION"
            return decision

        fill, route = result.fill, result.route
        # Cooldown starts once a venue accepts the order, filled or not.
        self.cooldowns.mark(symbol, self._clock())
        if fill.executed_qty <= 0:
            logger.warning(
                "Order %s on %s for %s accepted without a fill (status %s); nothing booked",
                fill.order_id,
                route.exchange,
                symbol,
                fill.status,
            )
            decision.exchange = route.exchange
            decision.order_id = fill.order_id
            decision.used_fallback = result.used_fallback
            decision.reasoning = (
                f"{plan.side} order {fill.order_id} on {route.exchange} is {fill.status} with no fill yet"
            )
            decision.error_code = "PENDING_FILL"
            return decision

        self._apply_fill(decision, fill, route, round_.closing, used_fallback=result.used_fallback)
        decision.reasoning = (
            f"{plan.side} {fill.executed_qty:.8f} {symbol} on {route.exchange}"
            f" (confidence {consensus.confidence:.2f} >= {decision.threshold:.2f}): {consensus.reasoning}"
        )
        return decision

    def _apply_fill(
        self,
        decision: Decision,
        fill: OrderFill,
        route: Route,
        closing: Optional[Position],
        *,
        used_fallback: bool = False,
    ) -> None:
        quantity = fill.executed_qty
        price = fill.executed_price or decision.price or 0.0
        trade = Trade(
            trade_id=new_id("trd"),
            symbol=decision.symbol,
            side=decision.action,  # type: ignore[arg-type]
            quantity=quantity,
            price=price,
            fee=fill.fees,
            exchange=route.exchange,
            order_id=fill.order_id,
            position_id=closing.position_id if closing is not None else None,
            executed_at=self._clock(),
        )
        realized = self.gateway.record_fill(trade)

        if closing is not None:
            remaining = closing.quantity - quantity
            if remaining > 1e-12:
                closing.quantity = remaining
            else:
                closing.status = "CLOSED"
                closing.closed_at = trade.executed_at
                closing.exit_price = price
            closing.realized_pnl += realized
            self.repository.record_position(closing)
            entry = self._entries.pop(decision.symbol, None) if not closing.is_open else None
            if entry is not None:
                self.report_outcome(entry, closing.realized_pnl)
        else:
            position = Position(
                position_id=new_id("pos"),
                symbol=decision.symbol,
                side=decision.action,  # type: ignore[arg-type]
                quantity=quantity,
                entry_price=price,
                stop_loss=decision.stop_loss,
                take_profit=decision.take_profit,
                exchange=route.exchange,
                opened_at=trade.executed_at,
            )
            trade.position_id = position.position_id
            self.repository.record_position(position)
            self._entries[decision.symbol] = decision
        self.repository.record_trade(trade)

        decision.executed = True
        decision.exchange = route.exchange
        decision.order_id = fill.order_id
        decision.quantity = quantity
        decision.price = price
        decision.used_fallback = used_fallback
        decision.realized_pnl = realized if closing is not None else None

    # ------------------------------------------------------------------ helpers
    def _classify(self, symbol: str, data: MarketData) -> Optional[VolatilityMetrics]:
        if len(data.candles) < 3:
            logger.warning("Not enough candles to classify volatility for %s", symbol)
            return None
        return self.classifier.classify(
            symbol, data.closes, data.volumes, highs=data.highs, lows=data.lows
        )

    @staticmethod
    def _usable_stop(side: str, price: float, stop: Optional[float]) -> Optional[float]:
        if stop is None or stop <= 0:
            return None
        if (side == "BUY" and stop < price) or (side == "SELL" and stop > price):
            return stop
        logger.debug("Ignoring advisor stop %.4f on the wrong side of %.4f", stop, price)
        return None

    @staticmethod
    def _hold_reason(consensus: ConsensusSignal) -> str:
        if consensus.fallback_applied:
            return (
                f"consensus {consensus.consensus:.2f} below agreement threshold;"
                f" {consensus.fallback_applied} fallback"
            )
        return consensus.reasoning or "advisors recommend HOLD"

    @staticmethod
    def _describe(adjustment: ThresholdAdjustment) -> str:
        return "; ".join(adjustment.reasons) or "base threshold"

    def _hold(self, symbol: str, reason: str, *, error_code: str | None = None) -> Decision:
        return Decision(
            symbol=symbol,
            action="HOLD",
            should_execute=False,
            reasoning=reason,
            error_code=error_code,
            decided_at=self._clock(),
        )

    def _finish(self, decision: Decision, *, record: bool = True) -> Decision:
        logger.info(
            "Decision %s: %s executed=%s (%s)",
            decision.symbol,
            decision.action,
            decision.executed,
            decision.reasoning,
        )
        if not record:
            return decision
        try:
            self.repository.record_decision(
                DecisionRecord(
                    decision_id=decision.decision_id,
                    symbol=decision.symbol,
                    action=decision.action,
                    should_execute=decision.should_execute,
                    executed=decision.executed,
                    confidence=decision.confidence,
                    threshold=decision.threshold,
                    reasoning=decision.reasoning,
                    exchange=decision.exchange,
                    decided_at=decision.decided_at,
                    metadata={"error_code": decision.error_code, "consensus": decision.consensus},
                )
            )
        except Exception:  # noqa: BLE001
            logger.exception("Failed to persist decision %s", decision.decision_id)
        return decision
