from __future__ import annotations

import json

import pytest

from coding_plans.config.secrets import InMemorySecretStore
from coding_plans.config.store import VENDOR_API_KEY_PREFIX, ConfigStore, normalize_vendors, parse_document
from coding_plans.core.config import Settings
from coding_plans.domain.models import ModelOverride


def test_vendor_normalization_is_lenient() -> None:
    vendors = normalize_vendors(
        [
            {
                "name": " deepseek ",
                "baseUrl": "https://api.deepseek.com/v1",
                "models": [
                    {"name": "deepseek-chat", "contextSize": 64000, "capabilities": {"tools": True, "vision": "no"}},
                    {"name": ""},
                    "junk",
                ],
            },
            {"name": "deepseek", "base_url": "https://dup"},
            {"baseUrl": "https://nameless"},
            42,
            {"name": "local", "base_url": "http://localhost:1234/v1", "useModelListEndpoint": False},
        ]
    )

    assert [v.name for v in vendors] == ["deepseek", "local"]
    model = vendors[0].models[0]
    assert model.max_input_tokens == 64000
    assert model.max_output_tokens == 64000
    assert model.capabilities.tools is True
    assert model.capabilities.vision is None
    assert len(vendors[0].models) == 1
    assert vendors[1].use_model_list_endpoint is False


def test_explicit_limits_beat_context_size() -> None:
    (vendor,) = normalize_vendors(
        [{"name": "v", "models": [{"name": "m", "contextSize": 1000, "maxOutputTokens": "256"}]}]
    )
    assert vendor.models[0].max_input_tokens == 1000
    assert vendor.models[0].max_output_tokens == 256


def test_parse_document_reads_providers_allowlist_and_overrides() -> None:
    document = parse_document(
        {
            "providers": {
                "zhipu": {"region": False, "models": [{"name": "glm-4.6"}]},
                "kimi": {"region": "overseas", "baseUrl": "https://proxy/v1"},
                "broken": [],
            },
            "modelAllowlist": ["glm-4.6", " ", 3],
            "modelOverrides": {"glm-4.6": {"maxInputTokens": 128000}, "bad": "x"},
        }
    )
    assert document.providers["zhipu"].region is False
    assert document.providers["kimi"].region is True
    assert document.providers["kimi"].base_url == "https://proxy/v1"
    assert "broken" not in document.providers
    assert document.model_allowlist == ["glm-4.6"]
    assert document.model_overrides["glm-4.6"].max_input_tokens == 128000
    assert "bad" not in document.model_overrides
    assert parse_document("nonsense").vendors == []


@pytest.mark.asyncio
async def test_vendor_credentials_fire_change_events(make_config, secrets) -> None:
    config = make_config({"vendors": [{"name": "deepseek", "baseUrl": "https://api.deepseek.com/v1"}]})
    fired: list[int] = []
    config.on_did_change.subscribe(lambda: fired.append(1))

    await config.set_api_key("deepseek", "  sk-1 ")
    assert await config.get_api_key("deepseek") == "sk-1"
    assert await secrets.get(VENDOR_API_KEY_PREFIX + "deepseek") == "sk-1"

    await config.set_api_key("deepseek", "")
    assert await config.get_api_key("deepseek") == ""
    assert await secrets.get(VENDOR_API_KEY_PREFIX + "deepseek") is None

    config.set_vendors([])
    assert len(fired) == 3


def test_vendors_are_returned_as_copies(make_config) -> None:
    config = make_config({"vendors": [{"name": "v", "baseUrl": "https://v/v1"}]})
    config.get_vendors()[0].base_url = "https://changed"
    assert config.get_vendor("v").base_url == "https://v/v1"
    assert config.get_vendor("missing") is None


def test_region_change_detection(make_config) -> None:
    config = make_config()
    assert config.get_region("zhipu") is True
    assert config.set_region("zhipu", True) is False
    assert config.set_region("zhipu", False) is True
    assert config.get_region("zhipu") is False


def test_overrides_and_allowlist(make_config) -> None:
    config = make_config()
    config.set_model_allowlist([" glm-4.6 ", ""])
    config.set_model_override("glm-4.6", ModelOverride(tool_calling=False))
    assert config.get_model_allowlist() == ["glm-4.6"]
    assert config.get_model_overrides()["glm-4.6"].tool_calling is False

    config.set_model_override("glm-4.6", None)
    assert config.get_model_overrides() == {}


def test_document_is_loaded_and_persisted(tmp_path) -> None:
    path = tmp_path / "coding-plans.json"
    path.write_text(json.dumps({"providers": {"minimax": {"region": False}}}), encoding="utf-8")

    config = ConfigStore.from_settings(Settings(coding_plans_config_path=str(path)), InMemorySecretStore())
    assert config.get_region("minimax") is False

    config.set_vendors([{"name": "v", "baseUrl": "https://v/v1"}])
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["vendors"][0]["name"] == "v"
    assert saved["providers"]["minimax"]["region"] is False

    reloaded = ConfigStore.from_settings(Settings(coding_plans_config_path=str(path)), InMemorySecretStore())
    assert reloaded.get_vendor("v").base_url == "https://v/v1"


def test_unreadable_document_falls_back_to_empty(tmp_path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    config = ConfigStore.from_settings(Settings(coding_plans_config_path=str(path)), InMemorySecretStore())
    assert config.get_vendors() == []


def test_fractional_override_values_are_floored() -> None:
    document = parse_document(
        {"modelOverrides": {"glm-4.6": {"maxInputTokens": 128000.5, "maxOutputTokens": 8192.9, "toolCalling": 0.5}}}
    )
    override = document.model_overrides["glm-4.6"]
    assert override.max_input_tokens == 128000
    assert override.max_output_tokens == 8192
    assert override.tool_calling == 1
