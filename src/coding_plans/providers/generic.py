from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from coding_plans.config.store import VendorConfig, VendorModelConfig
from coding_plans.core.cancellation import CancellationToken
from coding_plans.core.errors import api_key_required, invalid_request, vendor_not_configured
from coding_plans.domain.chat import ChatRequestOptions, ChatResponse, HostMessage
from coding_plans.domain.models import DiscoveredModelSettings, ModelCapabilities, ModelDescriptor
from coding_plans.providers.base import BaseProvider, settings_from_model_config
from coding_plans.providers.capabilities import (
    is_chat_model,
    read_discovered_settings,
    read_model_id,
    resolve_runtime_settings,
)
from coding_plans.providers.executor import normalize_http_base_url

log = logging.getLogger(__name__)

GENERIC_VENDOR = "coding-plans"


@dataclass(frozen=True)
class ModelVendorMapping:
    vendor: VendorConfig
    model_name: str


def composite_model_id(vendor_name: str, model_name: str) -> str:
    return f"{vendor_name}/{model_name}"


class GenericProvider(BaseProvider):
    """All user-configured OpenAI-compatible vendors behind one logical provider."""

    vendor = GENERIC_VENDOR
    display_name = "Coding Plans"
    config_key = "generic"
    accepts_api_key = False

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        self._model_vendor_map: dict[str, ModelVendorMapping] = {}
        # Set by the last refresh: some vendor had a static list or a stored credential.
        self._has_usable_vendor = False
        self._pending_refreshes: set[asyncio.Task] = set()
        self._unsubscribe = self.config.on_did_change.subscribe(self._schedule_refresh)

    async def _initialize(self) -> None:
        log.info("provider.initialized", extra={"vendor": self.vendor, "vendors": len(self.config.get_vendors())})

    def _schedule_refresh(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning("models.refresh_not_scheduled", extra={"vendor": self.vendor})
            return
        task = loop.create_task(self.refresh_models())
        self._pending_refreshes.add(task)
        task.add_done_callback(self._pending_refreshes.discard)

    def get_api_key(self) -> str:
        # Credentials live per vendor in the config store.
        return "configured" if self.config.get_vendors() else ""

    def has_credentials(self) -> bool:
        return self._has_usable_vendor

    async def set_api_key(self, api_key: str) -> None:
        raise invalid_request("generic vendor credentials are set per vendor through the config store")

    def get_base_url(self) -> str:
        vendors = self.config.get_vendors()
        return vendors[0].base_url if vendors else ""

    def get_mapping(self, model_id: str) -> ModelVendorMapping | None:
        return self._model_vendor_map.get(model_id)

    def _build_descriptor(
        self,
        vendor: VendorConfig,
        model_name: str,
        discovered: DiscoveredModelSettings,
        description: str | None = None,
    ) -> ModelDescriptor:
        model_id = composite_model_id(vendor.name, model_name)
        resolved = resolve_runtime_settings(
            model_id,
            discovered,
            self.config.get_model_overrides(),
            default_image_input=True,
        )
        return ModelDescriptor(
            id=model_id,
            vendor=self.vendor,
            family=vendor.name,
            name=model_name,
            version=vendor.name,
            max_input_tokens=resolved.max_input_tokens,
            max_output_tokens=resolved.max_output_tokens,
            capabilities=ModelCapabilities(tool_calling=resolved.tool_calling, image_input=resolved.image_input),
            description=description or f"{vendor.name} model {model_name}",
        )

    def _static_descriptor(self, vendor: VendorConfig, model: VendorModelConfig) -> ModelDescriptor:
        return self._build_descriptor(vendor, model.name, settings_from_model_config(model), model.description)

    async def discover_models(self, vendor: VendorConfig, api_key: str) -> list[ModelDescriptor]:
        base_url = normalize_http_base_url(vendor.base_url)
        if not base_url:
            log.warning("models.base_url_invalid", extra={"vendor": vendor.name, "base_url": vendor.base_url})
            return []
        try:
            entries = await self.executor.fetch_model_entries(base_url, api_key)
        except httpx.HTTPError as e:
            log.warning("models.discovery_failed", extra={"vendor": vendor.name, "error": repr(e)})
            return []

        seen: set[str] = set()
        descriptors: list[ModelDescriptor] = []
        for entry in entries:
            model_name = read_model_id(entry)
            if not model_name or model_name.lower() in seen or not is_chat_model(model_name):
                continue
            seen.add(model_name.lower())
            descriptors.append(self._build_descriptor(vendor, model_name, read_discovered_settings(entry)))
        return descriptors

    async def resolve_model_descriptors(self) -> list[ModelDescriptor]:
        mapping: dict[str, ModelVendorMapping] = {}
        descriptors: list[ModelDescriptor] = []
        usable = False

        for vendor in self.config.get_vendors():
            if not vendor.base_url:
                continue

            if vendor.models:
                usable = True
                found = [self._static_descriptor(vendor, m) for m in vendor.models]
            elif vendor.use_model_list_endpoint:
                api_key = await self.config.get_api_key(vendor.name)
                usable = usable or bool(api_key)
                found = await self.discover_models(vendor, api_key) if api_key else []
            else:
                found = []

            for descriptor in found:
                if descriptor.id in mapping:
                    continue
                mapping[descriptor.id] = ModelVendorMapping(vendor=vendor, model_name=descriptor.name)
                descriptors.append(descriptor)

        # Swapped right before the model list is published, with no await in between.
        self._model_vendor_map = mapping
        self._has_usable_vendor = usable
        return descriptors

    async def refresh_models(self) -> None:
        if not self.get_api_key():
            self._model_vendor_map = {}
            self._has_usable_vendor = False
        await super().refresh_models()

    async def send_request(
        self,
        descriptor: ModelDescriptor,
        messages: list[HostMessage],
        options: ChatRequestOptions | None,
        cancellation: CancellationToken | None,
    ) -> ChatResponse:
        mapping = self._model_vendor_map.get(descriptor.id)
        if mapping is None:
            raise vendor_not_configured(descriptor.id)

        base_url = normalize_http_base_url(mapping.vendor.base_url)
        if not base_url:
            raise invalid_request(f"Base URL is invalid: {mapping.vendor.base_url!r}")

        api_key = await self.config.get_api_key(mapping.vendor.name)
        if not api_key:
            raise api_key_required(mapping.vendor.name)

        return await self.execute_chat(
            descriptor,
            model_name=mapping.model_name,
            base_url=base_url,
            api_key=api_key,
            messages=messages,
            options=options,
            cancellation=cancellation,
        )

    def close(self) -> None:
        self._unsubscribe()
        for task in list(self._pending_refreshes):
            task.cancel()
        super().close()
