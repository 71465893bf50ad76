from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest

from coding_plans.config.secrets import InMemorySecretStore
from coding_plans.config.store import ConfigStore, parse_document
from coding_plans.core.config import Settings
from coding_plans.providers.executor import RequestExecutor

Handler = Callable[[httpx.Request], Any]


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture
def settings() -> Settings:
    return Settings(coding_plans_env="test")


@pytest.fixture
def secrets() -> InMemorySecretStore:
    return InMemorySecretStore()


@pytest.fixture
def make_config(secrets: InMemorySecretStore) -> Callable[..., ConfigStore]:
    def _make(document: dict[str, Any] | None = None) -> ConfigStore:
        return ConfigStore(secrets, document=parse_document(document or {}))

    return _make


@pytest.fixture
def make_executor() -> Callable[[Handler], RequestExecutor]:
    """RequestExecutor over an httpx.MockTransport; retries do not sleep."""

    def _make(handler: Handler, **kwargs: Any) -> RequestExecutor:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        kwargs.setdefault("sleep", _no_sleep)
        return RequestExecutor(client, **kwargs)

    return _make
