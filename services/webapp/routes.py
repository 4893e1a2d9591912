"""
HTTP route handlers for the FastAPI web application.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from confidence.optimizer import ConfidenceThresholdOptimizer
from execution.decision_engine import Decision, DecisionEngine
from execution.router import ExchangeRouter
from execution.schemas import ArbitrageOpportunity
from models.registry import AdapterRegistry
from risk.gateway import RiskGateway
from risk.schemas import RiskMetrics
from services.bootstrap import TradingContext
from services.webapp.dependencies import (
    get_context,
    get_engine,
    get_gateway,
    get_optimizer,
    get_registry,
    get_router,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class DecisionResponse(BaseModel):
    decision_id: str
    symbol: str
    action: str
    should_execute: bool
    executed: bool
    reasoning: str
    confidence: float
    threshold: Optional[float] = None
    consensus: Optional[float] = None
    state: str
    exchange: Optional[str] = None
    order_id: Optional[str] = None
    quantity: Optional[float] = None
    price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    used_fallback: bool = False
    realized_pnl: Optional[float] = None
    error_code: Optional[str] = None
    decided_at: datetime

    @classmethod
    def from_decision(cls, decision: Decision) -> "DecisionResponse":
        return cls(**decision.as_dict())


class SymbolStateResponse(BaseModel):
    symbol: str
    state: str
    cooldown_remaining_seconds: float


class RiskMetricsResponse(BaseModel):
    portfolio_value: float
    daily_pnl: float
    daily_pnl_percent: float
    daily_trade_count: int
    open_positions: int
    max_concurrent_positions: int
    risk_per_trade_percent: float
    max_daily_loss_percent: float
    emergency_stop_active: bool
    emergency_stop_reason: Optional[str] = None
    last_reset_date: Optional[date] = None
    generated_at: datetime

    @classmethod
    def from_metrics(cls, metrics: RiskMetrics) -> "RiskMetricsResponse":
        return cls(
            portfolio_value=metrics.portfolio_value,
            daily_pnl=metrics.daily_pnl,
            daily_pnl_percent=metrics.daily_pnl_percent,
            daily_trade_count=metrics.daily_trade_count,
            open_positions=metrics.open_positions,
            max_concurrent_positions=metrics.max_concurrent_positions,
            risk_per_trade_percent=metrics.risk_per_trade_percent,
            max_daily_loss_percent=metrics.max_daily_loss_percent,
            emergency_stop_active=metrics.emergency_stop_active,
            emergency_stop_reason=metrics.emergency_stop_reason,
            last_reset_date=metrics.last_reset_date,
            generated_at=metrics.generated_at,
        )


class EmergencyStopRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Why trading is being halted.")
    actor: str = Field("operator", min_length=1, description="Who requested the halt.")


class ArbitrageOpportunityResponse(BaseModel):
    symbol: str
    buy_exchange: str
    sell_exchange: str
    buy_price: float
    sell_price: float
    quantity: float
    spread_percent: float
    profit_after_fees: float
    risk_level: str
    discovered_at: datetime
    expires_at: datetime

    @classmethod
    def from_opportunity(cls, item: ArbitrageOpportunity) -> "ArbitrageOpportunityResponse":
        return cls(
            symbol=item.symbol,
            buy_exchange=item.buy_exchange,
            sell_exchange=item.sell_exchange,
            buy_price=item.buy_price,
            sell_price=item.sell_price,
            quantity=item.quantity,
            spread_percent=item.spread_percent,
            profit_after_fees=item.profit_after_fees,
            risk_level=item.risk_level,
            discovered_at=item.discovered_at,
            expires_at=item.expires_at,
        )


class ProviderResponse(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    enabled: bool
    weight: float
    effective_weight: float
    requests_in_window: int
    requests_per_window: int
    metrics: Dict[str, Any]


class ProviderToggleRequest(BaseModel):
    enabled: bool


def _symbol(value: str) -> str:
    normalized = (value or "").strip().upper()
    if "-" not in normalized:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Symbol must look like BASE-QUOTE, e.g. BTC-USDT.",
        )
    return normalized


@router.post("/decisions/{symbol}", response_model=DecisionResponse, summary="Evaluate a symbol now")
async def evaluate_symbol(symbol: str, engine: DecisionEngine = Depends(get_engine)) -> DecisionResponse:
    decision = await engine.evaluate(_symbol(symbol))
    return DecisionResponse.from_decision(decision)


@router.get("/decisions/{symbol}/state", response_model=SymbolStateResponse)
def symbol_state(symbol: str, engine: DecisionEngine = Depends(get_engine)) -> SymbolStateResponse:
    normalized = _symbol(symbol)
    return SymbolStateResponse(
        symbol=normalized,
        state=engine.state(normalized).value,
        cooldown_remaining_seconds=engine.cooldowns.remaining(normalized),
    )


@router.get("/risk/metrics", response_model=RiskMetricsResponse)
def risk_metrics(gateway: RiskGateway = Depends(get_gateway)) -> RiskMetricsResponse:
    return RiskMetricsResponse.from_metrics(gateway.get_metrics())


@router.post("/risk/emergency-stop", response_model=RiskMetricsResponse, summary="Halt new executions")
def enable_emergency_stop(
    payload: EmergencyStopRequest,
    gateway: RiskGateway = Depends(get_gateway),
) -> RiskMetricsResponse:
    gateway.enable_emergency_stop(payload.reason, actor=payload.actor)
    return RiskMetricsResponse.from_metrics(gateway.get_metrics())


@router.delete("/risk/emergency-stop", response_model=RiskMetricsResponse, summary="Resume executions")
def disable_emergency_stop(
    actor: str = Query("operator", min_length=1),
    gateway: RiskGateway = Depends(get_gateway),
) -> RiskMetricsResponse:
    gateway.disable_emergency_stop(actor=actor)
    return RiskMetricsResponse.from_metrics(gateway.get_metrics())


@router.get("/arbitrage", response_model=List[ArbitrageOpportunityResponse], summary="Scan venues now")
async def scan_arbitrage(
    symbols: Optional[str] = Query(None, description="Comma-separated symbols; defaults to the tradable set."),
    context: TradingContext = Depends(get_context),
) -> List[ArbitrageOpportunityResponse]:
    requested = [_symbol(item) for item in symbols.split(",") if item.strip()] if symbols else context.symbols
    found = await context.router.scan_arbitrage(requested)
    return [ArbitrageOpportunityResponse.from_opportunity(item) for item in found]


@router.get("/arbitrage/opportunities", response_model=List[ArbitrageOpportunityResponse])
def list_opportunities(router_service: ExchangeRouter = Depends(get_router)) -> List[ArbitrageOpportunityResponse]:
    return [ArbitrageOpportunityResponse.from_opportunity(item) for item in router_service.list_opportunities()]


@router.get("/thresholds", summary="Confidence threshold state and history")
def thresholds(optimizer: ConfidenceThresholdOptimizer = Depends(get_optimizer)) -> dict:
    return optimizer.analytics()


@router.post("/thresholds/reoptimize", summary="Re-fit the base threshold from the outcome log")
def reoptimize_thresholds(optimizer: ConfidenceThresholdOptimizer = Depends(get_optimizer)) -> dict:
    result = optimizer.reoptimize()
    if result is None:
        return {"status": "skipped", "base_threshold": optimizer.base_threshold}
    return {
        "status": "updated",
        "previous_threshold": result.previous_threshold,
        "base_threshold": result.new_threshold,
        "records_evaluated": result.records_evaluated,
    }


@router.get("/providers", response_model=List[ProviderResponse])
def providers(context: TradingContext = Depends(get_context)) -> List[ProviderResponse]:
    registry = context.registry
    adapters = [registry.get(model_id) for model_id in registry.list()]
    return [
        ProviderResponse(
            model_id=adapter.model_id,
            enabled=adapter.enabled,
            weight=adapter.weight,
            effective_weight=context.ensemble.provider_weight(adapter, adapters),
            requests_in_window=adapter.rate_limiter.usage(),
            requests_per_window=adapter.rate_limiter.max_requests,
            metrics=adapter.metrics.as_dict(),
        )
        for adapter in adapters
    ]


@router.patch("/providers/{model_id}", summary="Enable or disable an advisory provider")
def toggle_provider(
    model_id: str,
    payload: ProviderToggleRequest,
    registry: AdapterRegistry = Depends(get_registry),
) -> dict:
    try:
        registry.set_enabled(model_id, payload.enabled)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    logger.info("Provider %s %s", model_id, "enabled" if payload.enabled else "disabled")
    return {"model_id": model_id, "enabled": payload.enabled}


@router.get("/health", summary="Exchange connectivity")
async def health(router_service: ExchangeRouter = Depends(get_router)) -> dict:
    venues = await router_service.health()
    return {"status": "ok" if any(venues.values()) else "degraded", "exchanges": venues}
