from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from coding_plans.providers.base import BaseProvider, LanguageModel


@dataclass
class ProviderRegistry:
    """Active vendor providers, keyed by vendor id. Owned by the composition root."""

    _providers: dict[str, BaseProvider] = field(default_factory=dict)

    def register(self, provider: BaseProvider) -> None:
        self._providers[provider.vendor] = provider

    def get(self, vendor: str) -> BaseProvider:
        return self._providers[vendor]

    def list_providers(self) -> list[str]:
        return sorted(self._providers.keys())

    def providers(self) -> list[BaseProvider]:
        return list(self._providers.values())

    async def initialize_all(self) -> None:
        await asyncio.gather(*(p.initialize() for p in self._providers.values()))

    async def refresh_all(self) -> None:
        await asyncio.gather(*(p.refresh_models() for p in self._providers.values()))

    def list_models(self) -> list[LanguageModel]:
        items: list[LanguageModel] = []
        for provider in self._providers.values():
            items.extend(provider.get_available_models())
        return items

    def close_all(self) -> None:
        for provider in self._providers.values():
            provider.close()
        self._providers.clear()
