"""
Order routing, arbitrage scanning and the per-symbol decision engine.
"""

from .schemas import ArbitrageOpportunity, ExecutionPlan, ExecutionResult, Route, RouterSettings  # noqa: F401
from .cooldown import CooldownTracker  # noqa: F401
from .router import ExchangeRouter  # noqa: F401
from .decision_engine import Decision, DecisionEngine, DecisionState, EngineSettings  # noqa: F401
