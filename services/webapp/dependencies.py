"""
Application-wide dependency providers for the web service.

The trading context is built once in the application lifespan and stored on
``app.state``; these helpers hand its services to route handlers through
FastAPI's dependency injection.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from confidence.optimizer import ConfidenceThresholdOptimizer
from execution.decision_engine import DecisionEngine
from execution.router import ExchangeRouter
from models.registry import AdapterRegistry
from risk.gateway import RiskGateway
from services.bootstrap import TradingContext


def get_context(request: Request) -> TradingContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Trading context is not initialised.",
        )
    return context


def get_engine(request: Request) -> DecisionEngine:
    return get_context(request).engine


def get_gateway(request: Request) -> RiskGateway:
    return get_context(request).gateway


def get_router(request: Request) -> ExchangeRouter:
    return get_context(request).router


def get_optimizer(request: Request) -> ConfidenceThresholdOptimizer:
    return get_context(request).optimizer


def get_registry(request: Request) -> AdapterRegistry:
    return get_context(request).registry
