"""
Qwen (Qianwen) advisory provider.

This adapter mirrors the DeepSeek implementation but targets the DashScope
API. When `QWEN_API_KEY` is absent the adapter falls back to deterministic
signals.
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Dict

import httpx

from models.adapters.base import BaseModelAdapter
from models.errors import AdvisoryProviderError
from models.prompts import QwenPromptBuilder
from models.schemas import ProviderRequest
from models.utils import deterministic_decision

QWEN_ENDPOINT = "https://dashscope.aliyuncs.com/api/v1/services/aigc/text-generation/generation"


class QwenAdapter(BaseModelAdapter):
    """Adapter for Qwen/Qianwen trading prompts."""

    def __init__(
        self,
        *,
        model: str = "qwen-plus",
        api_key: str | None = None,
        timeout: float = 30.0,
        cost_per_1k_tokens: float = 0.002,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("prompt_builder", QwenPromptBuilder())
        super().__init__(model_id="qwen-v1", **kwargs)
        self.remote_model = model
        self.api_key = api_key or os.getenv("QWEN_API_KEY")
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self._client: httpx.AsyncClient | None = None
        self._timeout = timeout
        self._transport = transport

    async def _invoke_model(self, request: ProviderRequest) -> Dict[str, Any]:
        if not self.api_key:
            await asyncio.sleep(0)
            payload = deterministic_decision(request.context, source="qwen-offline")
            return {"content": json.dumps(payload), "payload": payload, "model": "qwen-offline"}

        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

        body = {
            "model": request.model or self.remote_model,
            "input": {
                "messages": [
                    {"role": "system", "content": self.prompt_builder.system_prompt},
                    {"role": "user", "content": request.prompt},
                ]
            },
            "parameters": {
                "temperature": request.temperature,
                "max_tokens": request.max_tokens,
                "result_format": "message",
            },
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        response = await self._client.post(QWEN_ENDPOINT, headers=headers, json=body)
        response.raise_for_status()
        data = response.json()
        try:
            output = data["output"]
            if "choices" in output:
                content = output["choices"][0]["message"]["content"]
            else:
                content = output["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AdvisoryProviderError("PARSE_ERROR", f"Qwen response missing output: {exc}") from exc
        return {"content": content, "usage": data.get("usage", {}), "model": self.remote_model}

    def _estimate_cost(self, usage: Dict[str, Any]) -> float:
        tokens = usage.get("total_tokens")
        if tokens is None:
            tokens = (usage.get("input_tokens") or 0) + (usage.get("output_tokens") or 0)
        return float(tokens) / 1000 * self.cost_per_1k_tokens

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
