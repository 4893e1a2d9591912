"""
Dataclasses and helper structures used by the risk gateway.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional

import config

OrderSide = Literal["BUY", "SELL"]


class VolatilityRegime(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class VolatilityTrend(str, Enum):
    RISING = "RISING"
    FALLING = "FALLING"
    STABLE = "STABLE"


class SizingMethod(str, Enum):
    FIXED = "FIXED"
    VOLATILITY = "VOLATILITY"
    KELLY = "KELLY"
    ADAPTIVE = "ADAPTIVE"


@dataclass(slots=True)
class RiskSettings:
    """Base risk policy; adaptive parameters are derived from these values."""

    risk_per_trade_percent: float = 5.0
    max_daily_loss_percent: float = 10.0
    max_concurrent_positions: int = 3
    default_stop_loss_percent: float = 2.0
    min_trade_amount_usd: float = 10.0
    starting_equity: float = 1000.0
    quote_asset: str = "USDT"

    @classmethod
    def load(cls, overrides: Mapping[str, Any] | None = None) -> "RiskSettings":
        """Build settings from ``config.RISK_SETTINGS`` and the settings store."""
        from services.storage.settings_store import merged_settings

        values = merged_settings("risk", config.RISK_SETTINGS)
        if overrides:
            values.update(overrides)
        return cls(
            risk_per_trade_percent=float(values["risk_per_trade_percent"]),
            max_daily_loss_percent=float(values["max_daily_loss_percent"]),
            max_concurrent_positions=int(values["max_concurrent_positions"]),
            default_stop_loss_percent=float(values["default_stop_loss_percent"]),
            min_trade_amount_usd=float(values["min_trade_amount_usd"]),
            starting_equity=float(values["starting_equity"]),
            quote_asset=str(values["quote_asset"]),
        )


@dataclass(slots=True)
class RiskProfile:
    """Mutable per-account state owned by the risk gateway."""

    daily_pnl: float = 0.0
    daily_trade_count: int = 0
    open_position_count: int = 0
    emergency_stop_active: bool = False
    emergency_stop_reason: str | None = None
    emergency_stop_at: datetime | None = None
    last_reset_date: date | None = None


@dataclass(slots=True, frozen=True)
class VolatilityMetrics:
    """Volatility snapshot for one symbol at one evaluation."""

    symbol: str
    realized_volatility: float
    percentile_rank: float
    regime: VolatilityRegime
    atr: float
    atr_percent: float
    volume_ratio: float
    trend: VolatilityTrend = VolatilityTrend.STABLE


@dataclass(slots=True, frozen=True)
class AdaptiveRiskParameters:
    """Risk parameters after volatility adaptation."""

    risk_per_trade_percent: float
    max_daily_loss_percent: float
    stop_loss_multiplier: float
    take_profit_multiplier: float
    max_concurrent_positions: int
    sizing_method: SizingMethod
    regime: VolatilityRegime | None = None


@dataclass(slots=True, frozen=True)
class PositionSize:
    """Output of position sizing."""

    symbol: str
    side: OrderSide
    quantity: float
    notional: float
    risk_amount: float
    stop_loss_price: float
    take_profit_price: float
    stop_distance_percent: float
    risk_reward: float
    sizing_method: SizingMethod


@dataclass(slots=True, frozen=True)
class RiskMetrics:
    """Snapshot of the gateway state exposed to callers."""

    portfolio_value: float
    daily_pnl: float
    daily_pnl_percent: float
    daily_trade_count: int
    open_positions: int
    max_concurrent_positions: int
    risk_per_trade_percent: float
    max_daily_loss_percent: float
    emergency_stop_active: bool
    emergency_stop_reason: str | None
    last_reset_date: date | None
    generated_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


@dataclass(slots=True)
class RiskViolation:
    """Represents a single broken risk rule."""

    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RiskEvaluation:
    """Aggregate result of a risk evaluation run."""

    approved: bool
    violations: List[RiskViolation] = field(default_factory=list)
    checks: Dict[str, bool] = field(default_factory=dict)

    def add_violation(self, code: str, message: str, **details: Any) -> None:
        self.violations.append(RiskViolation(code=code, message=message, details=details))
        self.approved = False

    def record_check(self, name: str, passed: bool) -> None:
        self.checks[name] = passed

    def summary(self) -> Optional[str]:
        if not self.violations:
            return None
        return "; ".join(violation.message for violation in self.violations)
