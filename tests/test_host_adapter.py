from __future__ import annotations

import httpx
import pytest

from coding_plans.config.store import VENDOR_API_KEY_PREFIX
from coding_plans.core.errors import ErrorKind, LanguageModelError
from coding_plans.domain.chat import HostMessage, TextPart, ToolCallPart
from coding_plans.providers.adapter import (
    BareInvocation,
    ConfigurationPayload,
    ConfiguredInvocation,
    GroupedInvocation,
    HostAdapter,
    parse_invocation,
)
from coding_plans.providers.generic import GenericProvider
from coding_plans.providers.vendors import AliyunProvider, ZhipuProvider


class CountingHandler:
    def __init__(self, models: list[dict] | None = None, status: int = 200):
        self.models = models if models is not None else [{"id": "glm-4"}]
        self.status = status
        self.model_calls = 0
        self.chat_calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/models"):
            self.model_calls += 1
            if self.status != 200:
                return httpx.Response(self.status)
            return httpx.Response(200, json={"data": self.models})
        self.chat_calls += 1
        return httpx.Response(
            200,
            json={
                "choices": [
                    {
                        "message": {
                            "content": "hello",
                            "tool_calls": [{"id": "c1", "function": {"name": "ls", "arguments": "{}"}}],
                        }
                    }
                ]
            },
        )


def _adapter(cls, make_config, make_executor, settings, handler, document=None) -> HostAdapter:
    provider = cls(config=make_config(document), executor=make_executor(handler), settings=settings)
    return HostAdapter(provider)


def test_parse_invocation() -> None:
    assert parse_invocation(None) == BareInvocation()
    assert parse_invocation({"group": "  "}) == BareInvocation()
    assert parse_invocation({"group": "work"}) == GroupedInvocation(group="work")
    assert parse_invocation({"configuration": {"apiKey": "k", "region": False}, "group": "g"}) == ConfiguredInvocation(
        payload=ConfigurationPayload(api_key="k", region=False), group="g"
    )
    assert parse_invocation({"configuration": {"api_key": 5}}) == ConfiguredInvocation(
        payload=ConfigurationPayload()
    )


@pytest.mark.asyncio
async def test_bare_invocation_lists_nothing(make_config, make_executor, settings) -> None:
    handler = CountingHandler()
    adapter = _adapter(ZhipuProvider, make_config, make_executor, settings, handler)
    assert await adapter.provide_model_information({}) == []
    assert handler.model_calls == 0


@pytest.mark.asyncio
async def test_setup_placeholder_without_key(make_config, make_executor, settings) -> None:
    adapter = _adapter(ZhipuProvider, make_config, make_executor, settings, CountingHandler())
    (info,) = await adapter.provide_model_information({"group": "default"})

    assert info.id == "zhipu-ai__setup_api_key__"
    assert info.max_input_tokens == 1
    assert info.max_output_tokens == 1
    assert info.capabilities.tool_calling is False


@pytest.mark.asyncio
async def test_configured_invocation_sets_key_and_lists(make_config, make_executor, settings) -> None:
    handler = CountingHandler(models=[{"id": "glm-4"}, {"id": "glm-4.6"}])
    adapter = _adapter(ZhipuProvider, make_config, make_executor, settings, handler)
    fired = []
    adapter.on_did_change_model_information.subscribe(lambda: fired.append(1))

    infos = await adapter.provide_model_information({"configuration": {"apiKey": " zk "}})
    assert [i.id for i in infos] == ["glm-4", "glm-4.6"]
    assert adapter.provider.get_api_key() == "zk"
    assert handler.model_calls == 1
    assert fired == [1]


@pytest.mark.asyncio
async def test_unchanged_configuration_does_not_refresh(make_config, make_executor, settings) -> None:
    handler = CountingHandler()
    adapter = _adapter(ZhipuProvider, make_config, make_executor, settings, handler)
    await adapter.provide_model_information({"configuration": {"apiKey": "zk", "region": True}})
    assert handler.model_calls == 1

    changed = await adapter.apply_configuration(ConfigurationPayload(api_key="zk", region=True))
    assert changed is False
    await adapter.provide_model_information({"configuration": {"apiKey": "zk"}})
    assert handler.model_calls == 1

    assert await adapter.apply_configuration(ConfigurationPayload(region=False)) is True
    assert handler.model_calls == 2
    assert adapter.provider.config.get_region("zhipu") is False


@pytest.mark.asyncio
async def test_region_is_ignored_for_single_endpoint_vendor(make_config, make_executor, settings) -> None:
    handler = CountingHandler()
    adapter = _adapter(AliyunProvider, make_config, make_executor, settings, handler)
    assert await adapter.apply_configuration(ConfigurationPayload(region=False)) is False
    assert adapter.provider.config.get_region("aliyun") is True


@pytest.mark.asyncio
async def test_unsupported_and_no_models_placeholders(make_config, make_executor, settings) -> None:
    unsupported = _adapter(AliyunProvider, make_config, make_executor, settings, CountingHandler(status=404))
    (info,) = await unsupported.provide_model_information({"configuration": {"apiKey": "ak"}})
    assert info.id == "aliyun-ai__unsupported__"

    empty = _adapter(ZhipuProvider, make_config, make_executor, settings, CountingHandler(models=[]))
    (info,) = await empty.provide_model_information({"configuration": {"apiKey": "zk"}})
    assert info.id == "zhipu-ai__no_models__"


@pytest.mark.asyncio
async def test_placeholder_chat_makes_no_network_call(make_config, make_executor, settings) -> None:
    handler = CountingHandler()
    adapter = _adapter(ZhipuProvider, make_config, make_executor, settings, handler)
    parts = []

    await adapter.provide_chat_response(
        "zhipu-ai__setup_api_key__", [HostMessage(role="user", content="hi")], None, parts.append
    )
    assert len(parts) == 1
    assert isinstance(parts[0], TextPart)
    assert "API key" in parts[0].value
    assert handler.chat_calls == 0
    assert await adapter.provide_token_count("zhipu-ai__setup_api_key__", "hello world") == 0


@pytest.mark.asyncio
async def test_chat_reports_parts_through_progress(make_config, make_executor, settings) -> None:
    handler = CountingHandler()
    adapter = _adapter(
        ZhipuProvider,
        make_config,
        make_executor,
        settings,
        handler,
        document={"providers": {"zhipu": {"baseUrl": "https://x/v1"}}},
    )
    await adapter.provide_model_information({"configuration": {"apiKey": "zk"}})

    reported = []

    async def progress(part) -> None:
        reported.append(part)

    await adapter.provide_chat_response("glm-4", [HostMessage(role="user", content="hi")], None, progress)

    assert reported[0] == TextPart(value="hello")
    assert isinstance(reported[1], ToolCallPart)
    assert reported[1].call_id == "c1"
    assert handler.chat_calls == 1
    assert await adapter.provide_token_count("glm-4", "hello") == 3


@pytest.mark.asyncio
async def test_unknown_model_is_not_found(make_config, make_executor, settings) -> None:
    adapter = _adapter(ZhipuProvider, make_config, make_executor, settings, CountingHandler())
    with pytest.raises(LanguageModelError) as exc_info:
        await adapter.provide_chat_response("glm-9", [HostMessage(role="user", content="hi")], None, lambda p: None)
    assert exc_info.value.kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_generic_adapter_ignores_api_key_payload(make_config, make_executor, settings) -> None:
    adapter = _adapter(
        GenericProvider,
        make_config,
        make_executor,
        settings,
        CountingHandler(),
        document={"vendors": [{"name": "v", "baseUrl": "https://v/v1", "models": [{"name": "m"}]}]},
    )
    await adapter.provider.refresh_models()
    infos = await adapter.provide_model_information({"configuration": {"apiKey": "ignored"}})
    assert [i.id for i in infos] == ["v/m"]
    adapter.close()
    adapter.provider.close()


@pytest.mark.asyncio
async def test_generic_adapter_without_credentials_asks_for_setup(make_config, make_executor, settings) -> None:
    handler = CountingHandler()
    adapter = _adapter(
        GenericProvider,
        make_config,
        make_executor,
        settings,
        handler,
        document={"vendors": [{"name": "A", "baseUrl": "https://x/v1"}]},
    )
    await adapter.provider.refresh_models()

    infos = await adapter.provide_model_information(GroupedInvocation(group="g"))
    assert [i.id for i in infos] == ["coding-plans__setup_api_key__"]
    assert handler.model_calls == 0

    await adapter.provider.config.secrets.store(VENDOR_API_KEY_PREFIX + "A", "ak")
    await adapter.provider.refresh_models()
    infos = await adapter.provide_model_information(GroupedInvocation(group="g"))
    assert [i.id for i in infos] == ["A/glm-4"]

    handler.models = []
    await adapter.provider.refresh_models()
    infos = await adapter.provide_model_information(GroupedInvocation(group="g"))
    assert [i.id for i in infos] == ["coding-plans__no_models__"]
    adapter.close()
    adapter.provider.close()


@pytest.mark.asyncio
async def test_token_count_for_unknown_model_is_not_found(make_config, make_executor, settings) -> None:
    adapter = _adapter(ZhipuProvider, make_config, make_executor, settings, CountingHandler())
    with pytest.raises(LanguageModelError) as exc_info:
        await adapter.provide_token_count("glm-9", "hello")
    assert exc_info.value.kind is ErrorKind.NOT_FOUND
