"""
Adaptive confidence threshold management for trade gating.
"""

from .schemas import (  # noqa: F401
    ConfidenceRecord,
    PerformanceMetrics,
    RiskTolerance,
    ThresholdAdjustment,
    ThresholdMarketContext,
)
