"""
Short-lived store for discovered arbitrage opportunities.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Tuple

from execution.schemas import ArbitrageOpportunity, RiskLevel

logger = logging.getLogger(__name__)

OpportunityKey = Tuple[str, str, str]


def arbitrage_risk(buy_reliability: float, sell_reliability: float) -> RiskLevel:
    average = (buy_reliability + sell_reliability) / 2
    if average > 80:
        return "LOW"
    if average > 60:
        return "MEDIUM"
    return "HIGH"


class OpportunityBook:
    """Keeps the latest opportunity per (symbol, buy venue, sell venue)."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._lock = threading.Lock()
        self._entries: Dict[OpportunityKey, ArbitrageOpportunity] = {}

    def update(self, opportunities: Iterable[ArbitrageOpportunity]) -> None:
        with self._lock:
            for opportunity in opportunities:
                key = (opportunity.symbol, opportunity.buy_exchange, opportunity.sell_exchange)
                self._entries[key] = opportunity

    def active(self) -> List[ArbitrageOpportunity]:
        """Return unexpired opportunities, most profitable first."""
        now = self._clock()
        with self._lock:
            stale = [key for key, item in self._entries.items() if item.is_expired(now)]
            for key in stale:
                del self._entries[key]
            live = list(self._entries.values())
        if stale:
            logger.debug("Pruned %d stale arbitrage opportunities", len(stale))
        return sorted(live, key=lambda item: item.profit_after_fees, reverse=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
