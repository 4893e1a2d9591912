"""
Background scheduler for periodic evaluation, arbitrage scans and threshold
re-optimization.
"""

from __future__ import annotations

import logging
from datetime import timezone
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

import config
from services.bootstrap import TradingContext

logger = logging.getLogger(__name__)

EVALUATION_JOB_ID = "symbol_evaluation"
ARBITRAGE_JOB_ID = "arbitrage_scan"
THRESHOLD_JOB_ID = "threshold_reoptimize"


def _sanitize_interval(value: int, minimum: int) -> int:
    return max(int(value), minimum)


class DecisionScheduler:
    """Owns the APScheduler instance driving the trading context."""

    def __init__(
        self,
        context: TradingContext,
        *,
        evaluation_interval: int = config.EVALUATION_INTERVAL,
        arbitrage_interval: int = config.ARBITRAGE_SCAN_INTERVAL,
        threshold_interval: int = config.THRESHOLD_REOPTIMIZE_INTERVAL,
    ) -> None:
        self.context = context
        self.evaluation_interval = _sanitize_interval(evaluation_interval, 10)
        self.arbitrage_interval = _sanitize_interval(arbitrage_interval, 5)
        self.threshold_interval = _sanitize_interval(threshold_interval, 60)
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        if self._scheduler is not None:
            return
        scheduler = AsyncIOScheduler(timezone=timezone.utc)
        scheduler.add_job(
            self.run_evaluation,
            trigger=IntervalTrigger(seconds=self.evaluation_interval),
            id=EVALUATION_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self.run_arbitrage_scan,
            trigger=IntervalTrigger(seconds=self.arbitrage_interval),
            id=ARBITRAGE_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self.run_threshold_reoptimization,
            trigger=IntervalTrigger(seconds=self.threshold_interval),
            id=THRESHOLD_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "Background scheduler started (evaluation %ds, arbitrage %ds, thresholds %ds)",
            self.evaluation_interval,
            self.arbitrage_interval,
            self.threshold_interval,
        )

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Background scheduler stopped")

    def update_intervals(self, *, evaluation_interval: Optional[int] = None) -> None:
        if evaluation_interval is None:
            return
        self.evaluation_interval = _sanitize_interval(evaluation_interval, 10)
        if self._scheduler is not None:
            self._scheduler.reschedule_job(
                EVALUATION_JOB_ID, trigger=IntervalTrigger(seconds=self.evaluation_interval)
            )
        logger.info("Updated evaluation interval to %ds", self.evaluation_interval)

    async def run_evaluation(self) -> Dict[str, str]:
        try:
            decisions = await self.context.engine.evaluate_many(self.context.symbols)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Evaluation job failed")
            return {"status": "error", "detail": str(exc)}
        executed = [decision.symbol for decision in decisions if decision.executed]
        return {"status": "ok", "detail": f"{len(decisions)} evaluated, executed: {', '.join(executed) or 'none'}"}

    async def run_arbitrage_scan(self) -> Dict[str, str]:
        try:
            found = await self.context.router.scan_arbitrage(self.context.symbols)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Arbitrage scan failed")
            return {"status": "error", "detail": str(exc)}
        return {"status": "ok", "detail": f"{len(found)} opportunities"}

    async def run_threshold_reoptimization(self) -> Dict[str, str]:
        try:
            result = self.context.optimizer.reoptimize()
        except Exception as exc:  # noqa: BLE001
            logger.exception("Threshold re-optimization failed")
            return {"status": "error", "detail": str(exc)}
        if result is None:
            return {"status": "skipped", "detail": "no executed outcomes"}
        return {"status": "ok", "detail": f"base threshold {result.new_threshold:.2f}"}
