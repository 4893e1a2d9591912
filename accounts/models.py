"""
Domain models for persisted trades, positions and decisions.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

PositionStatus = Literal["OPEN", "CLOSED"]


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@dataclass(slots=True)
class Trade:
    trade_id: str
    symbol: str
    side: Literal["BUY", "SELL"]
    quantity: float
    price: float
    fee: float = 0.0
    exchange: str | None = None
    order_id: str | None = None
    position_id: str | None = None
    executed_at: datetime = field(default_factory=_now)

    @property
    def notional(self) -> float:
        return self.quantity * self.price


@dataclass(slots=True)
class Position:
    position_id: str
    symbol: str
    side: Literal["BUY", "SELL"]
    quantity: float
    entry_price: float
    stop_loss: float | None = None
    take_profit: float | None = None
    exchange: str | None = None
    status: PositionStatus = "OPEN"
    opened_at: datetime = field(default_factory=_now)
    closed_at: datetime | None = None
    exit_price: float | None = None
    realized_pnl: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.status == "OPEN"


@dataclass(slots=True)
class DecisionRecord:
    """Audit row written for every engine decision."""

    decision_id: str
    symbol: str
    action: str
    should_execute: bool
    executed: bool
    confidence: float
    threshold: float | None
    reasoning: str
    exchange: Optional[str] = None
    decided_at: datetime = field(default_factory=_now)
    metadata: Dict[str, Any] = field(default_factory=dict)
