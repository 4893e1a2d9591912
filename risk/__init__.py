"""
Risk management package: volatility-adaptive sizing and pre-trade gating.
"""

from .errors import RiskError  # noqa: F401
from .schemas import (  # noqa: F401
    AdaptiveRiskParameters,
    PositionSize,
    RiskEvaluation,
    RiskMetrics,
    RiskProfile,
    RiskSettings,
    RiskViolation,
    VolatilityMetrics,
    VolatilityRegime,
)
from .volatility import VolatilityClassifier, derive_parameters  # noqa: F401
from .gateway import RiskGateway  # noqa: F401
