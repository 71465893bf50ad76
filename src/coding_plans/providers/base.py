from __future__ import annotations

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod

from coding_plans.config.store import ConfigStore, VendorModelConfig
from coding_plans.core.cancellation import CancellationToken
from coding_plans.core.config import Settings, get_settings
from coding_plans.core.errors import LanguageModelError, compact_error_message, request_failed
from coding_plans.core.events import ChangeEvent
from coding_plans.core.logging import LogContext, with_context
from coding_plans.core.metrics import (
    chat_errors_total,
    chat_request_duration_seconds,
    chat_requests_total,
    model_refreshes_total,
)
from coding_plans.domain.chat import ChatRequestOptions, ChatResponse, HostMessage
from coding_plans.domain.models import DiscoveredModelSettings, ModelDescriptor
from coding_plans.providers.executor import RequestExecutor, build_chat_payload, build_chat_response
from coding_plans.providers.messages import read_message_text, to_provider_messages

log = logging.getLogger(__name__)

TOKENS_PER_CHAR = 0.5


def estimate_tokens(text: str | HostMessage) -> int:
    return math.ceil(len(read_message_text(text)) * TOKENS_PER_CHAR)


def settings_from_model_config(model: VendorModelConfig) -> DiscoveredModelSettings:
    caps = model.capabilities
    return DiscoveredModelSettings(
        max_input_tokens=model.max_input_tokens,
        max_output_tokens=model.max_output_tokens,
        tool_calling=caps.tools if caps is not None else None,
        image_input=caps.vision if caps is not None else None,
    )


class LanguageModel:
    """A descriptor bound to the provider that serves it.

    A request started on a LanguageModel completes against its descriptor even
    if the provider's model list is swapped meanwhile.
    """

    def __init__(self, provider: BaseProvider, descriptor: ModelDescriptor):
        self.provider = provider
        self.descriptor = descriptor

    @property
    def id(self) -> str:
        return self.descriptor.id

    async def send_request(
        self,
        messages: list[HostMessage],
        options: ChatRequestOptions | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ChatResponse:
        try:
            return await self.provider.send_request(self.descriptor, messages, options, cancellation)
        except LanguageModelError:
            raise
        except Exception as e:
            raise request_failed(compact_error_message(e)) from e

    def count_tokens(self, text: str | HostMessage) -> int:
        return self.provider.count_tokens(text)

    def __repr__(self) -> str:
        return f"LanguageModel(id={self.id!r}, vendor={self.descriptor.vendor!r})"


class BaseProvider(ABC):
    """Per-vendor lifecycle: credential loading, model-list refresh, change notification."""

    vendor: str
    display_name: str
    # Key for the region/static-model config section and the credential secret.
    config_key: str
    # False when credentials are managed elsewhere (per generic vendor).
    accepts_api_key: bool = True
    # True when a mainland/overseas region flag selects the endpoint.
    supports_region: bool = False

    def __init__(
        self,
        *,
        config: ConfigStore,
        executor: RequestExecutor,
        settings: Settings | None = None,
    ):
        self.config = config
        self.executor = executor
        self.settings = settings or get_settings()
        self.model_discovery_unsupported = False
        self.on_did_change_models = ChangeEvent(f"{self.vendor}.models")
        self._models: list[LanguageModel] = []
        self._api_key = ""
        self._init_task: asyncio.Task | None = None

    @property
    def secret_key(self) -> str:
        return f"coding-plans.{self.config_key}.apiKey"

    async def initialize(self) -> None:
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        task = self._init_task
        try:
            await task
        except Exception:
            # A failed load is retried by the next caller.
            if self._init_task is task:
                self._init_task = None
            raise

    async def _initialize(self) -> None:
        stored = await self.config.secrets.get(self.secret_key)
        self._api_key = (stored or "").strip()
        log.info("provider.initialized", extra={"vendor": self.vendor, "has_api_key": bool(self._api_key)})

    def get_api_key(self) -> str:
        return self._api_key

    def has_credentials(self) -> bool:
        return bool(self.get_api_key())

    async def set_api_key(self, api_key: str) -> None:
        """Update the credential. Callers refresh models themselves afterwards."""
        normalized = api_key.strip()
        self._api_key = normalized
        if normalized:
            await self.config.secrets.store(self.secret_key, normalized)
        else:
            await self.config.secrets.delete(self.secret_key)

    @abstractmethod
    def get_base_url(self) -> str:
        raise NotImplementedError

    @abstractmethod
    async def resolve_model_descriptors(self) -> list[ModelDescriptor]:
        raise NotImplementedError

    @abstractmethod
    async def send_request(
        self,
        descriptor: ModelDescriptor,
        messages: list[HostMessage],
        options: ChatRequestOptions | None,
        cancellation: CancellationToken | None,
    ) -> ChatResponse:
        raise NotImplementedError

    async def refresh_models(self) -> None:
        if not self.get_api_key():
            self.model_discovery_unsupported = False
            self._publish([], outcome="no_key")
            return

        try:
            descriptors = await self.resolve_model_descriptors()
        except Exception:
            log.exception("models.refresh_failed", extra={"vendor": self.vendor})
            self._publish([], outcome="failed")
            return
        self._publish(descriptors, outcome="ok")

    def _publish(self, descriptors: list[ModelDescriptor], *, outcome: str) -> None:
        allowlist = set(self.config.get_model_allowlist())
        if allowlist:
            descriptors = [d for d in descriptors if d.id in allowlist]
        self._models = [LanguageModel(self, d) for d in descriptors]
        model_refreshes_total.labels(vendor=self.vendor, outcome=outcome).inc()
        log.info(
            "models.refreshed",
            extra={"vendor": self.vendor, "outcome": outcome, "models": [d.id for d in descriptors]},
        )
        self.on_did_change_models.fire()

    def get_available_models(self) -> list[LanguageModel]:
        return list(self._models)

    def get_model(self, model_id: str) -> LanguageModel | None:
        return next((m for m in self._models if m.id == model_id), None)

    async def execute_chat(
        self,
        descriptor: ModelDescriptor,
        *,
        model_name: str,
        base_url: str,
        api_key: str,
        messages: list[HostMessage],
        options: ChatRequestOptions | None,
        cancellation: CancellationToken | None,
    ) -> ChatResponse:
        logger = with_context(log, LogContext(vendor=self.vendor, model=descriptor.id))
        payload = build_chat_payload(
            model_name,
            to_provider_messages(messages),
            options,
            tool_calling=descriptor.capabilities.tool_calling,
            temperature=self.settings.chat_temperature,
            top_p=self.settings.chat_top_p,
            max_tokens=self.settings.chat_max_tokens,
        )

        started = time.perf_counter()
        status = "ok"
        logger.info("chat.request", extra={"messages": len(payload.messages), "tools": len(payload.tools or [])})
        try:
            data = await self.executor.post_chat_completions(base_url, api_key, payload, cancellation)
            return build_chat_response(data)
        except LanguageModelError as e:
            status = e.kind.value
            chat_errors_total.labels(vendor=self.vendor, kind=e.kind.value).inc()
            raise
        finally:
            elapsed = time.perf_counter() - started
            chat_requests_total.labels(vendor=self.vendor, model=descriptor.id, status=status).inc()
            chat_request_duration_seconds.labels(vendor=self.vendor, model=descriptor.id).observe(elapsed)
            logger.info("chat.done", extra={"status": status, "latency_ms": int(elapsed * 1000)})

    def count_tokens(self, text: str | HostMessage) -> int:
        return estimate_tokens(text)

    def close(self) -> None:
        self.on_did_change_models.clear()
