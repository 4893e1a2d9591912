"""
Quick demo of an ensemble round across the DeepSeek and Qwen advisors.

Offline mode requires no API keys and uses deterministic heuristics.
Set `DEEPSEEK_API_KEY` and `QWEN_API_KEY` to hit the real services.
"""

from __future__ import annotations

import asyncio
import json

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from models.bootstrap import build_default_registry
from models.ensemble import EnsembleAggregator, EnsembleSettings
from models.schemas import MarketSnapshot


async def main() -> None:
    registry = build_default_registry()
    aggregator = EnsembleAggregator(registry, EnsembleSettings())
    snapshot = MarketSnapshot(
        symbol="BTC-USDT",
        price=50_250.0,
        bid=50_245.0,
        ask=50_255.0,
        recent_closes=(49_200.0, 49_600.0, 49_900.0, 50_100.0, 50_250.0),
    )
    try:
        consensus = await aggregator.generate_consensus("BTC-USDT", snapshot)
    finally:
        await registry.aclose()

    print(json.dumps(
        {
            "action": consensus.action,
            "confidence": consensus.confidence,
            "consensus": consensus.consensus,
            "agreeing": list(consensus.agreeing_providers),
            "dissenting": list(consensus.dissenting_providers),
            "fallback": consensus.fallback_applied,
            "signals": [
                {"provider": s.source_provider, "action": s.action, "confidence": s.confidence}
                for s in consensus.signals
            ],
        },
        indent=2,
    ))


if __name__ == "__main__":
    asyncio.run(main())
