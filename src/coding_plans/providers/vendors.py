"""Built-in vendors. All of them speak the OpenAI-compatible chat API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from coding_plans.core.cancellation import CancellationToken
from coding_plans.core.errors import api_key_required
from coding_plans.domain.chat import ChatRequestOptions, ChatResponse, HostMessage
from coding_plans.domain.models import MODEL_VERSION_LABEL, ModelCapabilities, ModelDescriptor
from coding_plans.providers.base import BaseProvider, settings_from_model_config
from coding_plans.providers.capabilities import (
    infer_family,
    is_chat_model,
    read_discovered_settings,
    read_model_id,
    resolve_runtime_settings,
)
from coding_plans.providers.executor import is_discovery_unsupported, normalize_http_base_url

log = logging.getLogger(__name__)


class OpenAICompatibleProvider(BaseProvider):
    mainland_base_url: str
    # None when the vendor has a single endpoint.
    overseas_base_url: str | None = None
    family_fallback: str
    default_image_input: bool = False

    @property
    def supports_region(self) -> bool:  # type: ignore[override]
        return self.overseas_base_url is not None

    def get_base_url(self) -> str:
        configured = normalize_http_base_url(self.config.get_provider_base_url(self.config_key))
        if configured:
            return configured
        if self.overseas_base_url and not self.config.get_region(self.config_key):
            return self.overseas_base_url
        return self.mainland_base_url

    def _build_descriptor(self, model_id: str, discovered: Any, description: str | None = None) -> ModelDescriptor:
        resolved = resolve_runtime_settings(
            model_id,
            discovered,
            self.config.get_model_overrides(),
            default_image_input=self.default_image_input,
        )
        return ModelDescriptor(
            id=model_id,
            vendor=self.vendor,
            family=infer_family(model_id, self.family_fallback),
            name=model_id,
            version=MODEL_VERSION_LABEL,
            max_input_tokens=resolved.max_input_tokens,
            max_output_tokens=resolved.max_output_tokens,
            capabilities=ModelCapabilities(tool_calling=resolved.tool_calling, image_input=resolved.image_input),
            description=description or f"{self.display_name} model {model_id}",
        )

    def descriptors_from_entries(self, entries: list[Any]) -> list[ModelDescriptor]:
        seen: set[str] = set()
        descriptors: list[ModelDescriptor] = []
        for entry in entries:
            model_id = read_model_id(entry)
            if not model_id or not is_chat_model(model_id):
                continue
            key = model_id.lower()
            if key in seen:
                continue
            seen.add(key)
            descriptors.append(self._build_descriptor(model_id, read_discovered_settings(entry)))
        return descriptors

    def static_descriptors(self) -> list[ModelDescriptor]:
        return [
            self._build_descriptor(m.name, settings_from_model_config(m), m.description)
            for m in self.config.get_provider_models(self.config_key)
        ]

    async def resolve_model_descriptors(self) -> list[ModelDescriptor]:
        base_url = self.get_base_url()
        self.model_discovery_unsupported = False
        try:
            entries = await self.executor.fetch_model_entries(base_url, self.get_api_key())
        except httpx.HTTPError as e:
            if is_discovery_unsupported(e):
                self.model_discovery_unsupported = True
            log.warning(
                "models.discovery_failed",
                extra={"vendor": self.vendor, "base_url": base_url, "error": repr(e)},
            )
            return self.static_descriptors()
        return self.descriptors_from_entries(entries)

    async def send_request(
        self,
        descriptor: ModelDescriptor,
        messages: list[HostMessage],
        options: ChatRequestOptions | None,
        cancellation: CancellationToken | None,
    ) -> ChatResponse:
        api_key = self.get_api_key()
        if not api_key:
            raise api_key_required(self.display_name)
        return await self.execute_chat(
            descriptor,
            model_name=descriptor.name,
            base_url=self.get_base_url(),
            api_key=api_key,
            messages=messages,
            options=options,
            cancellation=cancellation,
        )


class ZhipuProvider(OpenAICompatibleProvider):
    vendor = "zhipu-ai"
    display_name = "Zhipu"
    config_key = "zhipu"
    mainland_base_url = "https://open.bigmodel.cn/api/coding/paas/v4"
    overseas_base_url = "https://api.z.ai/api/coding/paas/v4"
    family_fallback = "glm"


class KimiProvider(OpenAICompatibleProvider):
    vendor = "kimi-ai"
    display_name = "Kimi"
    config_key = "kimi"
    mainland_base_url = "https://api.moonshot.cn/v1"
    overseas_base_url = "https://api.moonshot.ai/v1"
    family_fallback = "kimi"


class VolcengineProvider(OpenAICompatibleProvider):
    vendor = "volcengine-ai"
    display_name = "Volcengine"
    config_key = "volcengine"
    mainland_base_url = "https://ark.cn-beijing.volces.com/api/coding/v3"
    overseas_base_url = "https://ark.ap-southeast.bytepluses.com/api/coding/v3"
    family_fallback = "volcengine"


class MinimaxProvider(OpenAICompatibleProvider):
    vendor = "minimax-ai"
    display_name = "Minimax"
    config_key = "minimax"
    mainland_base_url = "https://api.minimaxi.com/v1"
    overseas_base_url = "https://api.minimax.io/v1"
    family_fallback = "minimax"


class AliyunProvider(OpenAICompatibleProvider):
    vendor = "aliyun-ai"
    display_name = "Aliyun Qwen"
    config_key = "aliyun"
    mainland_base_url = "https://coding.dashscope.aliyuncs.com/v1"
    family_fallback = "qwen"


BUILTIN_PROVIDERS: tuple[type[OpenAICompatibleProvider], ...] = (
    ZhipuProvider,
    KimiProvider,
    VolcengineProvider,
    MinimaxProvider,
    AliyunProvider,
)
