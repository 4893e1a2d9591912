"""
Helper utilities to bootstrap adapter registry with default models.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping

import config
from models.adapters.deepseek import DeepSeekAdapter
from models.adapters.qwen import QwenAdapter
from models.registry import AdapterRegistry


def _adapter_kwargs(settings: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "temperature": float(settings.get("temperature", 0.2)),
        "max_tokens": int(settings.get("max_tokens", 800)),
        "weight": float(settings.get("weight", 1.0)),
        "requests_per_minute": int(settings.get("requests_per_minute", 60)),
        "enabled": bool(settings.get("enabled", True)),
        "cost_per_1k_tokens": float(settings.get("cost_per_1k_tokens", 0.0)),
    }


def build_default_registry(model_settings: Mapping[str, Mapping[str, Any]] | None = None) -> AdapterRegistry:
    """Return registry pre-populated with DeepSeek and Qwen adapters."""
    settings = model_settings or config.MODEL_DEFAULTS
    registry = AdapterRegistry()
    registry.register(
        DeepSeekAdapter(api_key=config.DEEPSEEK_API_KEY, **_adapter_kwargs(settings.get("deepseek-v1", {})))
    )
    registry.register(
        QwenAdapter(api_key=config.QWEN_API_KEY, **_adapter_kwargs(settings.get("qwen-v1", {})))
    )
    return registry
