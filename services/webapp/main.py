"""
Entrypoint for the tradegate web service.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI, HTTPException, Request, status

from services.bootstrap import TradingContext, build_context
from services.jobs.scheduler import DecisionScheduler
from services.webapp import routes

logger = logging.getLogger(__name__)

SCHEDULER_ENABLED = os.getenv("TRADEGATE_SCHEDULER", "1") != "0"


def create_app(
    context_factory: Callable[[], TradingContext] = build_context,
    *,
    start_scheduler: bool = SCHEDULER_ENABLED,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        context = context_factory()
        scheduler = DecisionScheduler(context)
        app.state.context = context
        app.state.scheduler = scheduler
        if start_scheduler:
            scheduler.start()
        try:
            yield
        finally:
            scheduler.shutdown()
            await context.aclose()
            app.state.context = None

    app = FastAPI(
        title="tradegate",
        description="Gated multi-advisor trading decision engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(routes.router)

    @app.post("/scheduler/{job}", summary="Run a background job once")
    async def run_job_once(job: str, request: Request) -> dict:
        scheduler: DecisionScheduler | None = getattr(request.app.state, "scheduler", None)
        if scheduler is None:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Scheduler unavailable.")
        jobs = {
            "evaluate": scheduler.run_evaluation,
            "arbitrage": scheduler.run_arbitrage_scan,
            "thresholds": scheduler.run_threshold_reoptimization,
        }
        if job not in jobs:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown job '{job}'.")
        return await jobs[job]()

    return app


app = create_app()
