"""
Advisory provider package: adapters, signal schemas and ensemble aggregation.
"""

from .schemas import ConsensusSignal, MarketSnapshot, ProviderRequest, ProviderResponse, Signal  # noqa: F401
from .errors import AdvisoryProviderError, EnsembleError  # noqa: F401
from .registry import AdapterRegistry  # noqa: F401
from .ensemble import EnsembleAggregator, EnsembleSettings  # noqa: F401
