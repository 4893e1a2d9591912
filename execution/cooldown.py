"""
Per-symbol cooldown deadlines.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional


class CooldownTracker:
    """
    Record the last non-HOLD action per symbol and answer whether a symbol is
    still cooling down. Deadlines are compared against the injected clock on
    every call, so nothing needs to be scheduled or cleared.
    """

    def __init__(self, seconds: float, *, clock: Callable[[], datetime] | None = None) -> None:
        self.window = timedelta(seconds=seconds)
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._lock = threading.Lock()
        self._last_action: Dict[str, datetime] = {}

    def mark(self, symbol: str, at: datetime | None = None) -> None:
        with self._lock:
            self._last_action[symbol] = at or self._clock()

    def last_action(self, symbol: str) -> Optional[datetime]:
        with self._lock:
            return self._last_action.get(symbol)

    def deadline(self, symbol: str) -> Optional[datetime]:
        last = self.last_action(symbol)
        return last + self.window if last is not None else None

    def active(self, symbol: str) -> bool:
        deadline = self.deadline(symbol)
        return deadline is not None and self._clock() < deadline

    def remaining(self, symbol: str) -> float:
        deadline = self.deadline(symbol)
        if deadline is None:
            return 0.0
        return max(0.0, (deadline - self._clock()).total_seconds())
