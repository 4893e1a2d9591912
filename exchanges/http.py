"""
Shared HTTP plumbing for exchange clients.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_METHODS = frozenset({"GET"})


async def send_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    retries: int = 2,
    backoff: float = 0.25,
    **kwargs: Any,
) -> httpx.Response:
    """
    Send a request and raise for HTTP errors.

    Idempotent GETs are retried on 5xx and transport errors. Order placement
    (POST) is never retried.
    """
    attempts = retries + 1 if method.upper() in RETRYABLE_METHODS else 1
    for attempt in range(1, attempts + 1):
        try:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code < 500 or attempt == attempts:
                raise
            logger.warning(
                "Retrying %s %s after HTTP %s (attempt %d/%d)",
                method,
                url,
                exc.response.status_code,
                attempt,
                attempts,
            )
        except httpx.TransportError as exc:
            if attempt == attempts:
                raise
            logger.warning(
                "Retrying %s %s after transport error %s (attempt %d/%d)",
                method,
                url,
                exc,
                attempt,
                attempts,
            )
        await asyncio.sleep(backoff * attempt)
    raise RuntimeError("unreachable")  # pragma: no cover
