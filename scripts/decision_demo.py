"""
Run one decision round per symbol against the live exchange endpoints.

Quotes and candles come from the public Binance testnet and OKX APIs; orders
are only placed when exchange credentials are configured and the advisors
clear the confidence bar and every risk check.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from services.bootstrap import build_context


async def main(symbols: list[str]) -> None:
    context = build_context(symbols=symbols or None)
    try:
        decisions = await context.engine.evaluate_many(context.symbols)
        metrics = context.gateway.get_metrics()
    finally:
        await context.aclose()
    print(json.dumps([decision.as_dict() for decision in decisions], indent=2))
    print(f"Emergency stop active: {metrics.emergency_stop_active}; daily pnl {metrics.daily_pnl:.2f}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    asyncio.run(main(sys.argv[1:]))
