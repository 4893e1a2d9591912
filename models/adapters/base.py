"""
Abstract base class for LLM-driven advisory providers.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict

import httpx

from models.errors import AdvisoryProviderError
from models.inflight import InFlightRequests, request_key
from models.metrics import ProviderMetrics, SlidingWindowRateLimiter
from models.prompts import PromptBuilder
from models.schemas import MarketSnapshot, ProviderRequest, ProviderResponse, Signal
from models.utils import extract_json, parse_signal

logger = logging.getLogger(__name__)


class BaseModelAdapter(ABC):
    """
    Common behaviour for advisory providers.

    ``generate`` deduplicates identical in-flight requests, enforces the
    per-provider rate window and keeps metrics. Subclasses only implement
    ``_invoke_model`` and return ``{"content": str, "usage": {...}}``.
    No retries happen here; the ensemble tolerates missing providers.
    """

    model_id: str

    def __init__(
        self,
        model_id: str,
        *,
        temperature: float = 0.2,
        max_tokens: int = 800,
        weight: float = 1.0,
        requests_per_minute: int = 60,
        enabled: bool = True,
        prompt_builder: PromptBuilder | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
    ) -> None:
        self.model_id = model_id
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.weight = weight
        self.enabled = enabled
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(requests_per_minute)
        self.metrics = ProviderMetrics()
        self._inflight: InFlightRequests[ProviderResponse] = InFlightRequests()

    def build_request(self, snapshot: MarketSnapshot) -> ProviderRequest:
        return ProviderRequest(
            prompt=self.prompt_builder.build(snapshot),
            context=snapshot.as_context(),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

    def is_rate_limited(self) -> bool:
        return self.rate_limiter.is_limited()

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Return the provider response, sharing any identical in-flight call."""
        if self.is_rate_limited():
            raise AdvisoryProviderError(
                "RATE_LIMIT",
                f"{self.model_id} exceeded {self.rate_limiter.max_requests} requests per window.",
                provider=self.model_id,
            )
        key = request_key(self.model_id, request)
        return await self._inflight.run(key, lambda: self._call(request))

    async def signal(self, snapshot: MarketSnapshot) -> Signal:
        """Ask the provider about ``snapshot`` and parse the answer into a Signal."""
        response = await self.generate(self.build_request(snapshot))
        try:
            return parse_signal(
                response.payload,
                symbol=snapshot.symbol,
                provider=self.model_id,
                reference_price=snapshot.price,
            )
        except AdvisoryProviderError as exc:
            self.metrics.record_failure(exc.code, str(exc), recoverable=exc.recoverable)
            raise

    async def _call(self, request: ProviderRequest) -> ProviderResponse:
        self.rate_limiter.record()
        started = time.perf_counter()
        try:
            raw = await self._invoke_model(request)
            payload = raw.get("payload")
            if payload is None:
                payload = extract_json(str(raw.get("content", "")), provider=self.model_id)
        except AdvisoryProviderError as exc:
            exc.provider = exc.provider or self.model_id
            self._record_error(exc)
            raise
        except httpx.TimeoutException as exc:
            error = AdvisoryProviderError("TIMEOUT", f"{self.model_id} timed out: {exc}", provider=self.model_id)
            self._record_error(error)
            raise error from exc
        except httpx.HTTPStatusError as exc:
            error = AdvisoryProviderError.from_status(
                exc.response.status_code,
                f"{self.model_id} returned HTTP {exc.response.status_code}",
                provider=self.model_id,
            )
            self._record_error(error)
            raise error from exc
        except httpx.TransportError as exc:
            error = AdvisoryProviderError("NETWORK_ERROR", f"{self.model_id} network error: {exc}", provider=self.model_id)
            self._record_error(error)
            raise error from exc

        elapsed_ms = (time.perf_counter() - started) * 1000
        cost = self._estimate_cost(raw.get("usage") or {})
        self.metrics.record_success(elapsed_ms, cost)
        return ProviderResponse(
            provider=self.model_id,
            content=str(raw.get("content", "")),
            payload=payload,
            cost=cost,
            response_time_ms=elapsed_ms,
            model=raw.get("model") or request.model,
        )

    def _record_error(self, error: AdvisoryProviderError) -> None:
        self.metrics.record_failure(error.code, str(error), recoverable=error.recoverable)
        level = logging.WARNING if error.recoverable else logging.ERROR
        logger.log(level, "Provider %s failed [%s]: %s", self.model_id, error.code, error)

    @abstractmethod
    async def _invoke_model(self, request: ProviderRequest) -> Dict[str, Any]:
        """Call the backing LLM and return ``content`` (and optionally ``payload``/``usage``)."""

    def _estimate_cost(self, usage: Dict[str, Any]) -> float:
        return 0.0

    async def aclose(self) -> None:
        """Optional hook to release resources in async context."""
        return None
