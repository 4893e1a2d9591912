"""
Ensemble aggregation of advisory provider signals.

One round asks every enabled provider the same question concurrently, waits
for all of them (bounded by the round timeout) and reduces the successful
answers to a single ``ConsensusSignal`` by confidence-weighted vote.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Sequence

import config
from models.adapters.base import BaseModelAdapter
from models.errors import AdvisoryProviderError, EnsembleError
from models.registry import AdapterRegistry
from models.schemas import ACTIONS, ConsensusSignal, MarketSnapshot, Signal, TradeAction

logger = logging.getLogger(__name__)

FALLBACK_STRATEGIES = ("SAFE_HOLD", "HIGHEST_CONFIDENCE", "MAJORITY", "WEIGHTED_VOTE")


@dataclass(slots=True)
class EnsembleSettings:
    min_providers: int = 2
    consensus_threshold: float = 0.65
    fallback_strategy: str = "SAFE_HOLD"
    timeout_seconds: float = 30.0
    disagreement_threshold: float = 0.0
    weights: Dict[str, float] = field(
        default_factory=lambda: {"accuracy": 0.5, "speed": 0.3, "cost": 0.2}
    )

    def __post_init__(self) -> None:
        if self.fallback_strategy not in FALLBACK_STRATEGIES:
            raise ValueError(
                f"Unknown fallback strategy {self.fallback_strategy!r}; "
                f"expected one of {', '.join(FALLBACK_STRATEGIES)}"
            )

    @classmethod
    def load(cls, overrides: Mapping[str, Any] | None = None) -> "EnsembleSettings":
        from services.storage.settings_store import merged_settings

        values = merged_settings("ensemble", config.ENSEMBLE_SETTINGS)
        if overrides:
            values.update(overrides)
        return cls(
            min_providers=int(values["min_providers"]),
            consensus_threshold=float(values["consensus_threshold"]),
            fallback_strategy=str(values["fallback_strategy"]).upper(),
            timeout_seconds=float(values["timeout_seconds"]),
            disagreement_threshold=float(values["disagreement_threshold"]),
            weights=dict(values["weights"]),
        )


class EnsembleAggregator:
    """Fan out to advisory providers and reduce their signals to one."""

    def __init__(
        self,
        registry: AdapterRegistry,
        settings: EnsembleSettings | None = None,
    ) -> None:
        self.registry = registry
        self.settings = settings or EnsembleSettings.load()

    async def generate_consensus(
        self,
        symbol: str,
        snapshot: MarketSnapshot,
        providers: Sequence[BaseModelAdapter] | None = None,
        *,
        min_providers: int | None = None,
        consensus_threshold: float | None = None,
        timeout: float | None = None,
    ) -> ConsensusSignal:
        providers = list(providers) if providers is not None else self.registry.enabled()
        required = self.settings.min_providers if min_providers is None else min_providers
        threshold = (
            self.settings.consensus_threshold if consensus_threshold is None else consensus_threshold
        )
        round_timeout = self.settings.timeout_seconds if timeout is None else timeout

        eligible: List[BaseModelAdapter] = []
        for provider in providers:
            if provider.is_rate_limited():
                provider.metrics.record_failure(
                    "RATE_LIMIT", "Skipped for this round: rate window exhausted."
                )
                logger.warning("Skipping rate-limited provider %s for %s", provider.model_id, symbol)
                continue
            eligible.append(provider)

        signals = await self._collect(symbol, snapshot, eligible, round_timeout)
        if len(signals) < required:
            raise EnsembleError(
                "INSUFFICIENT_PROVIDERS",
                f"Only {len(signals)} of {len(providers)} providers answered for {symbol}; "
                f"{required} required.",
                {"successes": len(signals), "required": required, "providers": len(providers)},
            )
        by_name = {provider.model_id: provider for provider in providers}
        return self._aggregate(symbol, signals, by_name, threshold)

    async def _collect(
        self,
        symbol: str,
        snapshot: MarketSnapshot,
        providers: Iterable[BaseModelAdapter],
        timeout: float,
    ) -> List[Signal]:
        tasks: Dict[asyncio.Task[Signal], BaseModelAdapter] = {
            asyncio.ensure_future(provider.signal(snapshot)): provider for provider in providers
        }
        if not tasks:
            return []
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            provider = tasks[task]
            task.cancel()
            provider.metrics.record_failure("TIMEOUT", f"No answer within {timeout:.1f}s round timeout.")
            logger.warning("Provider %s timed out for %s", provider.model_id, symbol)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        signals: List[Signal] = []
        for task in done:
            provider = tasks[task]
            exc = task.exception()
            if exc is None:
                signals.append(task.result())
                continue
            if isinstance(exc, AdvisoryProviderError):
                # Already recorded on the provider metrics by the adapter.
                logger.info(
                    "Provider %s excluded from %s round [%s, recoverable=%s]",
                    provider.model_id,
                    symbol,
                    exc.code,
                    exc.recoverable,
                )
            else:
                provider.metrics.record_failure("UNEXPECTED", repr(exc), recoverable=False)
                logger.error(
                    "Provider %s raised unexpectedly for %s",
                    provider.model_id,
                    symbol,
                    exc_info=exc,
                )
        # Keep a stable order for reproducible tie-breaks and reporting.
        order = {provider.model_id: index for index, provider in enumerate(tasks.values())}
        signals.sort(key=lambda s: order.get(s.source_provider, len(order)))
        return signals

    def provider_weight(self, provider: BaseModelAdapter, peers: Sequence[BaseModelAdapter]) -> float:
        """
        Base weight scaled by a blend of accuracy, speed and cost scores.

        Speed is the unused share of the round timeout; cost is the cheapest
        peer's average cost over this provider's. Providers with identical
        history get identical weights.
        """
        weights = self.settings.weights
        metrics = provider.metrics
        budget_ms = self.settings.timeout_seconds * 1000
        speed = 1.0 - min(metrics.average_response_time_ms / budget_ms, 1.0) if budget_ms > 0 else 1.0
        cheapest = min((p.metrics.average_cost for p in peers), default=0.0)
        cost = cheapest / metrics.average_cost if metrics.average_cost > 0 else 1.0
        blend = (
            weights.get("accuracy", 0.0) * metrics.accuracy
            + weights.get("speed", 0.0) * speed
            + weights.get("cost", 0.0) * cost
        )
        return max(provider.weight * blend, 0.0)

    def _aggregate(
        self,
        symbol: str,
        signals: Sequence[Signal],
        providers: Mapping[str, BaseModelAdapter],
        threshold: float,
    ) -> ConsensusSignal:
        peers = [providers[s.source_provider] for s in signals if s.source_provider in providers]
        weights = {
            s.source_provider: (
                self.provider_weight(providers[s.source_provider], peers)
                if s.source_provider in providers
                else 1.0
            )
            for s in signals
        }
        mass: Dict[str, float] = {action: 0.0 for action in ACTIONS}
        for s in signals:
            mass[s.action] += weights[s.source_provider] * s.confidence
        total = sum(mass.values())

        top = max(mass.values())
        leaders = [action for action in ACTIONS if mass[action] == top]
        winner: TradeAction = leaders[0] if len(leaders) == 1 else "HOLD"
        consensus = top / total if total > 0 else 0.0

        logger.info(
            "Ensemble %s: BUY=%.3f SELL=%.3f HOLD=%.3f -> %s (consensus %.3f, threshold %.3f)",
            symbol,
            mass["BUY"],
            mass["SELL"],
            mass["HOLD"],
            winner,
            consensus,
            threshold,
        )

        if self.settings.disagreement_threshold > 0 and consensus < self.settings.disagreement_threshold:
            raise EnsembleError(
                "DISAGREEMENT",
                f"Providers disagree on {symbol}: consensus {consensus:.3f} below "
                f"{self.settings.disagreement_threshold:.3f}.",
                {"consensus": consensus, "mass": dict(mass)},
            )

        fallback = None
        action = winner
        chosen: Sequence[Signal] | None = None
        if consensus < threshold:
            fallback = self.settings.fallback_strategy
            action, chosen = self._apply_fallback(fallback, winner, signals)
            logger.info("Consensus %.3f below %.3f for %s; fallback %s -> %s", consensus, threshold, symbol, fallback, action)

        agreeing = [s for s in signals if s.action == action]
        contributing = chosen if chosen is not None else agreeing
        return self._build(symbol, action, consensus, signals, agreeing, contributing, weights, fallback)

    @staticmethod
    def _apply_fallback(
        strategy: str,
        winner: TradeAction,
        signals: Sequence[Signal],
    ) -> tuple[TradeAction, Sequence[Signal] | None]:
        if strategy == "HIGHEST_CONFIDENCE":
            best = max(signals, key=lambda s: s.confidence)
            return best.action, [best]
        if strategy == "MAJORITY":
            counts = {action: sum(1 for s in signals if s.action == action) for action in ACTIONS}
            most = max(counts.values())
            leaders = [action for action in ACTIONS if counts[action] == most]
            return (leaders[0] if len(leaders) == 1 else "HOLD"), None
        if strategy == "WEIGHTED_VOTE":
            return winner, None
        return "HOLD", None

    @staticmethod
    def _build(
        symbol: str,
        action: TradeAction,
        consensus: float,
        signals: Sequence[Signal],
        agreeing: Sequence[Signal],
        contributing: Sequence[Signal],
        weights: Mapping[str, float],
        fallback: str | None,
    ) -> ConsensusSignal:
        def weighted(attr: str) -> float | None:
            pairs = [
                (weights[s.source_provider], getattr(s, attr))
                for s in contributing
                if getattr(s, attr) is not None
            ]
            total = sum(w for w, _ in pairs)
            if not pairs or total <= 0:
                return None
            return sum(w * v for w, v in pairs) / total

        confidence = weighted("confidence") or 0.0
        entry = weighted("entry_price")
        stop = weighted("stop_loss") if action != "HOLD" else None
        take_profit = weighted("take_profit") if action != "HOLD" else None
        risk_reward = None
        if entry and stop and take_profit and abs(entry - stop) > 0:
            risk_reward = abs(take_profit - entry) / abs(entry - stop)

        agreeing_names = tuple(s.source_provider for s in agreeing)
        reasoning = " | ".join(
            f"{s.source_provider}: {s.reasoning}" for s in contributing if s.reasoning
        )
        return ConsensusSignal(
            symbol=symbol,
            action=action,
            confidence=confidence,
            consensus=consensus,
            agreeing_providers=agreeing_names,
            dissenting_providers=tuple(
                s.source_provider for s in signals if s.source_provider not in agreeing_names
            ),
            signals=tuple(signals),
            entry_price=entry,
            stop_loss=stop,
            take_profit=take_profit,
            position_size=weighted("position_size") if action != "HOLD" else None,
            risk_reward=risk_reward,
            fallback_applied=fallback,
            reasoning=reasoning,
        )
