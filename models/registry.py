"""
Registry of advisory providers keyed by model id.
"""

from __future__ import annotations

from typing import Dict, Iterable, List

from models.adapters.base import BaseModelAdapter


class AdapterRegistry:
    """Ordered collection of advisory providers; registration order is preserved."""

    def __init__(self) -> None:
        self._providers: Dict[str, BaseModelAdapter] = {}

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    def register(self, adapter: BaseModelAdapter, *, overwrite: bool = False) -> BaseModelAdapter:
        if adapter.model_id in self._providers and not overwrite:
            raise KeyError(f"Advisory provider '{adapter.model_id}' is already registered")
        self._providers[adapter.model_id] = adapter
        return adapter

    def get(self, model_id: str) -> BaseModelAdapter:
        adapter = self._providers.get(model_id)
        if adapter is None:
            raise KeyError(f"Unknown advisory provider '{model_id}'")
        return adapter

    def list(self) -> Iterable[str]:
        return self._providers.keys()

    def enabled(self) -> List[BaseModelAdapter]:
        """Providers eligible for the next consensus round."""
        return [adapter for adapter in self._providers.values() if adapter.enabled]

    def set_enabled(self, model_id: str, enabled: bool) -> None:
        self.get(model_id).enabled = enabled

    async def aclose(self) -> None:
        for adapter in self._providers.values():
            await adapter.aclose()
