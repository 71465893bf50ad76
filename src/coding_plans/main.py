from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from coding_plans import __version__
from coding_plans.api import api_router
from coding_plans.config.secrets import InMemorySecretStore, RedisSecretStore, SecretStore
from coding_plans.config.store import ConfigStore
from coding_plans.core.config import Settings, get_settings
from coding_plans.core.errors import LanguageModelError, language_model_error_handler
from coding_plans.core.logging import configure_logging
from coding_plans.core.middleware import RequestIdMiddleware
from coding_plans.providers.adapter import HostAdapter
from coding_plans.providers.executor import RequestExecutor
from coding_plans.providers.generic import GenericProvider
from coding_plans.providers.registry import ProviderRegistry
from coding_plans.providers.vendors import BUILTIN_PROVIDERS

log = logging.getLogger(__name__)


def build_registry(settings: Settings, config: ConfigStore, executor: RequestExecutor) -> ProviderRegistry:
    registry = ProviderRegistry()
    for provider_cls in BUILTIN_PROVIDERS:
        registry.register(provider_cls(config=config, executor=executor, settings=settings))
    registry.register(GenericProvider(config=config, executor=executor, settings=settings))
    return registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(level=settings.coding_plans_log_level)
    log.info("app.start", extra={"env": settings.coding_plans_env})

    redis_client = None
    secrets: SecretStore
    if settings.coding_plans_secret_backend == "redis" and settings.redis_url:
        from redis.asyncio import Redis as RedisClient

        redis_client = RedisClient.from_url(settings.redis_url)
        secrets = RedisSecretStore(redis_client)
    else:
        secrets = InMemorySecretStore()

    config = ConfigStore.from_settings(settings, secrets)
    vendor_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.vendor_timeout_seconds, connect=settings.vendor_connect_timeout_seconds),
    )
    executor = RequestExecutor(
        vendor_client,
        max_retries=settings.vendor_max_retries,
        backoff_seconds=settings.vendor_retry_backoff_seconds,
    )
    registry = build_registry(settings, config, executor)

    await registry.initialize_all()
    await registry.refresh_all()

    app.state.config_store = config
    app.state.provider_registry = registry
    app.state.host_adapters = {p.vendor: HostAdapter(p) for p in registry.providers()}
    log.info("app.ready", extra={"providers": registry.list_providers()})
    yield

    for adapter in app.state.host_adapters.values():
        adapter.close()
    registry.close_all()
    await vendor_client.aclose()
    if redis_client is not None:
        await redis_client.aclose()
    log.info("app.stop")


def create_app() -> FastAPI:
    app = FastAPI(title="Coding Plans", version=__version__, lifespan=lifespan)
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(LanguageModelError, language_model_error_handler)
    app.include_router(api_router)
    return app


app = create_app()
