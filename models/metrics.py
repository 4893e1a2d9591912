"""
Per-provider bookkeeping: rolling error log, usage stats and rate limiting.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, Any

MAX_ERRORS = 100


@dataclass(slots=True, frozen=True)
class ProviderErrorEntry:
    code: str
    message: str
    recoverable: bool
    at: datetime


@dataclass(slots=True)
class ProviderMetrics:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_response_time_ms: float = 0.0
    total_cost: float = 0.0
    correct_predictions: int = 0
    scored_predictions: int = 0
    errors: Deque[ProviderErrorEntry] = field(default_factory=lambda: deque(maxlen=MAX_ERRORS))

    def record_success(self, response_time_ms: float, cost: float) -> None:
        self.total_requests += 1
        self.successful_requests += 1
        self.total_response_time_ms += response_time_ms
        self.total_cost += cost

    def record_failure(self, code: str, message: str, *, recoverable: bool = True) -> None:
        self.total_requests += 1
        self.failed_requests += 1
        self.errors.append(
            ProviderErrorEntry(code, message, recoverable, datetime.now(tz=timezone.utc))
        )

    def record_prediction(self, correct: bool) -> None:
        self.scored_predictions += 1
        if correct:
            self.correct_predictions += 1

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 1.0
        return self.successful_requests / self.total_requests

    @property
    def accuracy(self) -> float:
        # Unscored providers sit at coin-flip accuracy.
        if self.scored_predictions == 0:
            return 0.5
        return self.correct_predictions / self.scored_predictions

    @property
    def average_response_time_ms(self) -> float:
        if self.successful_requests == 0:
            return 0.0
        return self.total_response_time_ms / self.successful_requests

    @property
    def average_cost(self) -> float:
        if self.successful_requests == 0:
            return 0.0
        return self.total_cost / self.successful_requests

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "success_rate": self.success_rate,
            "accuracy": self.accuracy,
            "average_response_time_ms": self.average_response_time_ms,
            "average_cost": self.average_cost,
            "recent_errors": [
                {"code": e.code, "message": e.message, "at": e.at.isoformat()}
                for e in list(self.errors)[-10:]
            ],
        }


class SlidingWindowRateLimiter:
    """Count recorded calls in a trailing window."""

    def __init__(
        self,
        max_requests: int,
        *,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._calls: Deque[float] = deque()

    def record(self) -> None:
        self._calls.append(self._clock())

    def usage(self) -> int:
        self._evict()
        return len(self._calls)

    def is_limited(self) -> bool:
        if self.max_requests <= 0:
            return False
        return self.usage() >= self.max_requests

    def _evict(self) -> None:
        cutoff = self._clock() - self.window_seconds
        while self._calls and self._calls[0] <= cutoff:
            self._calls.popleft()
