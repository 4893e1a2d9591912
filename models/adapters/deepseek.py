"""
DeepSeek advisory provider.

Supports both offline heuristic mode (no API key) and live mode using the
DeepSeek API when `DEEPSEEK_API_KEY` is set.
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Dict

import httpx

from models.adapters.base import BaseModelAdapter
from models.errors import AdvisoryProviderError
from models.prompts import DeepSeekPromptBuilder
from models.schemas import ProviderRequest
from models.utils import deterministic_decision

DEEPSEEK_ENDPOINT = "https://api.deepseek.com/v1/chat/completions"


class DeepSeekAdapter(BaseModelAdapter):
    """Adapter that calls DeepSeek's chat completion endpoint."""

    def __init__(
        self,
        *,
        model: str = "deepseek-chat",
        api_key: str | None = None,
        timeout: float = 30.0,
        cost_per_1k_tokens: float = 0.0014,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("prompt_builder", DeepSeekPromptBuilder())
        super().__init__(model_id="deepseek-v1", **kwargs)
        self.remote_model = model
        self.api_key = api_key or os.getenv("DEEPSEEK_API_KEY")
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self._client: httpx.AsyncClient | None = None
        self._timeout = timeout
        self._transport = transport

    async def _invoke_model(self, request: ProviderRequest) -> Dict[str, Any]:
        if not self.api_key:
            # Offline deterministic mode.
            await asyncio.sleep(0)
            payload = deterministic_decision(request.context, source="deepseek-offline")
            return {"content": json.dumps(payload), "payload": payload, "model": "deepseek-offline"}

        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

        body = {
            "model": request.model or self.remote_model,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "messages": [
                {"role": "system", "content": self.prompt_builder.system_prompt},
                {"role": "user", "content": request.prompt},
            ],
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        response = await self._client.post(DEEPSEEK_ENDPOINT, headers=headers, json=body)
        response.raise_for_status()
        data = response.json()
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AdvisoryProviderError(
                "PARSE_ERROR", f"DeepSeek response missing content: {exc}"
            ) from exc
        return {
            "content": content,
            "usage": data.get("usage", {}),
            "model": data.get("model", self.remote_model),
        }

    def _estimate_cost(self, usage: Dict[str, Any]) -> float:
        tokens = usage.get("total_tokens") or 0
        return float(tokens) / 1000 * self.cost_per_1k_tokens

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
