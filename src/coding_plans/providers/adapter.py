"""Bridge between a chat host and one provider.

The host asks for model information in three shapes (bare, grouped, configured);
the variant is decided once in `parse_invocation` and dispatched on type.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Union

from pydantic import BaseModel

from coding_plans.core.cancellation import CancellationToken
from coding_plans.core.errors import model_not_found
from coding_plans.core.events import ChangeEvent
from coding_plans.domain.chat import ChatRequestOptions, HostMessage, ResponsePart, TextPart
from coding_plans.domain.models import ModelCapabilities, ModelDescriptor
from coding_plans.providers.base import BaseProvider, LanguageModel

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfigurationPayload:
    api_key: str | None = None
    # True selects the mainland endpoint.
    region: bool | None = None


@dataclass(frozen=True)
class BareInvocation:
    pass


@dataclass(frozen=True)
class GroupedInvocation:
    group: str


@dataclass(frozen=True)
class ConfiguredInvocation:
    payload: ConfigurationPayload
    group: str | None = None


Invocation = Union[BareInvocation, GroupedInvocation, ConfiguredInvocation]


def _read_payload(raw: Mapping[str, Any]) -> ConfigurationPayload:
    api_key = raw.get("apiKey", raw.get("api_key"))
    region = raw.get("region")
    return ConfigurationPayload(
        api_key=api_key if isinstance(api_key, str) else None,
        region=region if isinstance(region, bool) else None,
    )


def parse_invocation(options: Mapping[str, Any] | None) -> Invocation:
    options = options or {}
    group = options.get("group")
    group = group.strip() if isinstance(group, str) and group.strip() else None

    configuration = options.get("configuration")
    if isinstance(configuration, Mapping):
        return ConfiguredInvocation(payload=_read_payload(configuration), group=group)
    if group:
        return GroupedInvocation(group=group)
    return BareInvocation()


class PlaceholderKind(str, Enum):
    SETUP_API_KEY = "setup_api_key"
    UNSUPPORTED = "unsupported"
    NO_MODELS = "no_models"


def placeholder_model_id(vendor: str, kind: PlaceholderKind) -> str:
    return f"{vendor}__{kind.value}__"


def read_placeholder_kind(vendor: str, model_id: str) -> PlaceholderKind | None:
    for kind in PlaceholderKind:
        if model_id == placeholder_model_id(vendor, kind):
            return kind
    return None


_PLACEHOLDER_TITLES = {
    PlaceholderKind.SETUP_API_KEY: "Set up {name} API key",
    PlaceholderKind.UNSUPPORTED: "{name} model list unavailable",
    PlaceholderKind.NO_MODELS: "No {name} models",
}

_PLACEHOLDER_MESSAGES = {
    PlaceholderKind.SETUP_API_KEY: (
        "{name} is not configured yet. Add an API key for {name} to load its models."
    ),
    PlaceholderKind.UNSUPPORTED: (
        "{name} does not expose a model list endpoint. Configure its models statically in the settings."
    ),
    PlaceholderKind.NO_MODELS: (
        "{name} returned no chat models for this API key. Check the plan or the region setting."
    ),
}


class ModelInformation(BaseModel):
    """What the host displays for one selectable model."""

    id: str
    name: str
    family: str
    version: str
    tooltip: str = ""
    max_input_tokens: int
    max_output_tokens: int
    capabilities: ModelCapabilities


def to_model_information(descriptor: ModelDescriptor) -> ModelInformation:
    return ModelInformation(
        id=descriptor.id,
        name=descriptor.name,
        family=descriptor.family,
        version=descriptor.version,
        tooltip=descriptor.description,
        max_input_tokens=descriptor.max_input_tokens,
        max_output_tokens=descriptor.max_output_tokens,
        capabilities=descriptor.capabilities,
    )


ProgressCallback = Callable[[ResponsePart], Any]


class HostAdapter:
    def __init__(self, provider: BaseProvider):
        self.provider = provider
        self.on_did_change_model_information = ChangeEvent(f"{provider.vendor}.model_information")
        self._unsubscribe = provider.on_did_change_models.subscribe(self.on_did_change_model_information.fire)

    @property
    def vendor(self) -> str:
        return self.provider.vendor

    # --- model information ---

    async def provide_model_information(
        self, invocation: Invocation | Mapping[str, Any] | None = None
    ) -> list[ModelInformation]:
        if not isinstance(invocation, (BareInvocation, GroupedInvocation, ConfiguredInvocation)):
            invocation = parse_invocation(invocation)

        if isinstance(invocation, BareInvocation):
            return []
        await self.provider.initialize()
        if isinstance(invocation, ConfiguredInvocation):
            await self.apply_configuration(invocation.payload)
        return self.current_model_information()

    async def apply_configuration(self, payload: ConfigurationPayload) -> bool:
        """Apply credential/region changes; refresh only when something changed."""
        changed = False

        if payload.api_key is not None and self.provider.accepts_api_key:
            api_key = payload.api_key.strip()
            if api_key != self.provider.get_api_key():
                await self.provider.set_api_key(api_key)
                changed = True

        if payload.region is not None and self.provider.supports_region:
            if self.provider.config.set_region(self.provider.config_key, payload.region):
                changed = True

        if changed:
            log.info("provider.reconfigured", extra={"vendor": self.vendor})
            await self.provider.refresh_models()
        return changed

    def current_model_information(self) -> list[ModelInformation]:
        models = self.provider.get_available_models()
        if models:
            return [to_model_information(m.descriptor) for m in models]
        return [self.placeholder_information(self.current_placeholder_kind())]

    def current_placeholder_kind(self) -> PlaceholderKind:
        if not self.provider.has_credentials():
            return PlaceholderKind.SETUP_API_KEY
        if self.provider.model_discovery_unsupported:
            return PlaceholderKind.UNSUPPORTED
        return PlaceholderKind.NO_MODELS

    def placeholder_information(self, kind: PlaceholderKind) -> ModelInformation:
        name = self.provider.display_name
        return ModelInformation(
            id=placeholder_model_id(self.vendor, kind),
            name=_PLACEHOLDER_TITLES[kind].format(name=name),
            family=self.vendor,
            version=kind.value,
            tooltip=_PLACEHOLDER_MESSAGES[kind].format(name=name),
            max_input_tokens=1,
            max_output_tokens=1,
            capabilities=ModelCapabilities(tool_calling=False, image_input=False),
        )

    # --- chat ---

    def _resolve_model(self, model_id: str) -> LanguageModel:
        model = self.provider.get_model(model_id)
        if model is None:
            raise model_not_found(model_id)
        return model

    async def stream_chat_response(
        self,
        model_id: str,
        messages: list[HostMessage],
        options: ChatRequestOptions | None = None,
        cancellation: CancellationToken | None = None,
    ) -> AsyncIterator[ResponsePart]:
        """Yield response parts; errors before the first part propagate unchanged."""
        kind = read_placeholder_kind(self.vendor, model_id)
        if kind is not None:
            yield TextPart(value=_PLACEHOLDER_MESSAGES[kind].format(name=self.provider.display_name))
            return

        model = self._resolve_model(model_id)
        response = await model.send_request(messages, options, cancellation)
        async for part in response.stream:
            yield part

    async def provide_chat_response(
        self,
        model_id: str,
        messages: list[HostMessage],
        options: ChatRequestOptions | None,
        progress: ProgressCallback,
        cancellation: CancellationToken | None = None,
    ) -> None:
        async for part in self.stream_chat_response(model_id, messages, options, cancellation):
            result = progress(part)
            if inspect.isawaitable(result):
                await result

    async def provide_token_count(self, model_id: str, text: str | HostMessage) -> int:
        if read_placeholder_kind(self.vendor, model_id) is not None:
            return 0
        return self._resolve_model(model_id).count_tokens(text)

    def close(self) -> None:
        self._unsubscribe()
        self.on_did_change_model_information.clear()
