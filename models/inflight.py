"""
In-flight request deduplication.

Identical concurrent requests collapse onto a single upstream call: the first
caller registers a task under the request key and later callers await the
same task. The lookup and the insert happen without an intervening await, so
on a single event loop the insert-if-absent is atomic.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Awaitable, Callable, Dict, Generic, TypeVar

from models.schemas import ProviderRequest

logger = logging.getLogger(__name__)

T = TypeVar("T")


def request_key(provider: str, request: ProviderRequest) -> str:
    fingerprint = hashlib.sha256(request.prompt.encode("utf-8")).hexdigest()
    return f"{provider}:{fingerprint}:{request.temperature}:{request.max_tokens}"


class InFlightRequests(Generic[T]):
    """Map of request key to the task currently serving it."""

    def __init__(self) -> None:
        self._tasks: Dict[str, asyncio.Task[T]] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._tasks[key] = task
            task.add_done_callback(lambda done, k=key: self._release(k, done))
        else:
            logger.debug("Joining in-flight request %s", key[:48])
        # Shield so one cancelled caller does not cancel the call for the others.
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Task[T]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if not task.cancelled():
            # Mark the exception retrieved; callers re-raise it themselves.
            task.exception()
