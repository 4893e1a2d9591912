"""
Demonstrates position sizing, pre-trade validation and the sticky emergency stop.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from accounts.repository import InMemoryTradingRepository
from risk.gateway import RiskGateway
from risk.schemas import RiskSettings
from risk.volatility import VolatilityClassifier


def main() -> None:
    gateway = RiskGateway(InMemoryTradingRepository(), RiskSettings(), portfolio_value=1000.0)

    size = gateway.size_position("BTC-USDT", "BUY", 50_000.0)
    evaluation = gateway.evaluate_execution("BTC-USDT", "BUY", size.quantity, 50_000.0, size.stop_loss_price)

    classifier = VolatilityClassifier()
    closes = [50_000 * (1 + 0.01 * ((i % 5) - 2)) for i in range(60)]
    metrics = classifier.classify("BTC-USDT", closes, [10.0] * len(closes))
    adapted = gateway.size_position("BTC-USDT", "BUY", 50_000.0, volatility=metrics)

    breached = not gateway.check_daily_loss_limit(-150.0)

    print(json.dumps(
        {
            "base_size": {
                "quantity": size.quantity,
                "stop_loss": size.stop_loss_price,
                "take_profit": size.take_profit_price,
            },
            "validation": {"approved": evaluation.approved, "checks": evaluation.checks},
            "volatility": {"regime": metrics.regime.value, "realized": metrics.realized_volatility},
            "adapted_size": {
                "quantity": adapted.quantity,
                "stop_loss": adapted.stop_loss_price,
                "take_profit": adapted.take_profit_price,
            },
            "daily_loss_breached": breached,
            "emergency_stop_active": gateway.emergency_stop_active,
        },
        indent=2,
    ))


if __name__ == "__main__":
    main()
