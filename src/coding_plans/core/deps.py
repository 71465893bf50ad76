from __future__ import annotations

from fastapi import Depends, Request

from coding_plans.config.store import ConfigStore
from coding_plans.core.errors import not_found, service_unavailable
from coding_plans.providers.adapter import HostAdapter
from coding_plans.providers.commit_message import CommitMessageGenerator
from coding_plans.providers.registry import ProviderRegistry


def get_provider_registry(request: Request) -> ProviderRegistry:
    registry = getattr(request.app.state, "provider_registry", None)
    if registry is None:
        raise service_unavailable()
    return registry


def get_config_store(request: Request) -> ConfigStore:
    config = getattr(request.app.state, "config_store", None)
    if config is None:
        raise service_unavailable()
    return config


def get_host_adapter(vendor: str, request: Request) -> HostAdapter:
    adapters: dict[str, HostAdapter] = getattr(request.app.state, "host_adapters", None) or {}
    adapter = adapters.get(vendor)
    if adapter is None:
        raise not_found(f"Unknown vendor: {vendor}")
    return adapter


def get_commit_message_generator(
    registry: ProviderRegistry = Depends(get_provider_registry),
) -> CommitMessageGenerator:
    return CommitMessageGenerator(registry)
