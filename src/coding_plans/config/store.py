"""Persisted gateway configuration: vendors, regions, model lists and overrides."""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from coding_plans.config.secrets import SecretStore
from coding_plans.core.config import Settings
from coding_plans.core.events import ChangeEvent
from coding_plans.domain.models import ModelOverride

log = logging.getLogger(__name__)

VENDOR_API_KEY_PREFIX = "coding-plans.vendor.apiKey."


class VendorModelCapabilities(BaseModel):
    tools: bool | None = None
    vision: bool | None = None


class VendorModelConfig(BaseModel):
    name: str
    description: str | None = None
    capabilities: VendorModelCapabilities | None = None
    max_input_tokens: int | None = None
    max_output_tokens: int | None = None


class VendorConfig(BaseModel):
    name: str
    base_url: str = ""
    models: list[VendorModelConfig] = Field(default_factory=list)
    # Query GET {base_url}/models when no static list is configured.
    use_model_list_endpoint: bool = True


class ProviderConfig(BaseModel):
    # True selects the mainland endpoint, False the overseas one.
    region: bool = True
    # Replaces the regional default endpoint when set.
    base_url: str | None = None
    models: list[VendorModelConfig] = Field(default_factory=list)


class ConfigDocument(BaseModel):
    vendors: list[VendorConfig] = Field(default_factory=list)
    providers: dict[str, ProviderConfig] = Field(default_factory=dict)
    model_allowlist: list[str] = Field(default_factory=list)
    model_overrides: dict[str, ModelOverride] = Field(default_factory=dict)


def _read_str(obj: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str):
            return value.strip()
    return ""


def read_positive_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and math.isfinite(value) and value > 0:
        return value
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        if math.isfinite(parsed) and parsed > 0:
            return parsed
    return None


def _read_limit(obj: dict[str, Any], *keys: str) -> int | None:
    for key in keys:
        value = read_positive_number(obj.get(key))
        if value is not None:
            return max(1, math.floor(value))
    return None


def normalize_model(raw: Any) -> VendorModelConfig | None:
    if not isinstance(raw, dict):
        return None
    name = _read_str(raw, "name")
    if not name:
        return None

    description = _read_str(raw, "description") or None
    context_size = _read_limit(raw, "contextSize", "context_size")
    max_input = _read_limit(raw, "maxInputTokens", "max_input_tokens") or context_size
    max_output = _read_limit(raw, "maxOutputTokens", "max_output_tokens") or context_size

    capabilities = None
    cap = raw.get("capabilities")
    if isinstance(cap, dict):
        capabilities = VendorModelCapabilities(
            tools=cap.get("tools") if isinstance(cap.get("tools"), bool) else None,
            vision=cap.get("vision") if isinstance(cap.get("vision"), bool) else None,
        )

    return VendorModelConfig(
        name=name,
        description=description,
        capabilities=capabilities,
        max_input_tokens=max_input,
        max_output_tokens=max_output,
    )


def normalize_models(raw: Any) -> list[VendorModelConfig]:
    if not isinstance(raw, list):
        return []
    return [m for m in (normalize_model(item) for item in raw) if m is not None]


def normalize_vendor(raw: Any) -> VendorConfig | None:
    if not isinstance(raw, dict):
        return None
    name = _read_str(raw, "name")
    if not name:
        return None
    use_endpoint = raw.get("useModelListEndpoint", raw.get("use_model_list_endpoint", True))
    return VendorConfig(
        name=name,
        base_url=_read_str(raw, "baseUrl", "base_url"),
        models=normalize_models(raw.get("models")),
        use_model_list_endpoint=use_endpoint if isinstance(use_endpoint, bool) else True,
    )


def normalize_vendors(raw: Any) -> list[VendorConfig]:
    if not isinstance(raw, list):
        return []
    vendors: list[VendorConfig] = []
    seen: set[str] = set()
    for item in raw:
        vendor = normalize_vendor(item)
        if vendor is None or vendor.name in seen:
            continue
        seen.add(vendor.name)
        vendors.append(vendor)
    return vendors


def parse_document(raw: Any) -> ConfigDocument:
    """Build a ConfigDocument from loosely-shaped JSON (camelCase or snake_case)."""
    if not isinstance(raw, dict):
        return ConfigDocument()

    providers: dict[str, ProviderConfig] = {}
    raw_providers = raw.get("providers")
    if isinstance(raw_providers, dict):
        for key, value in raw_providers.items():
            if not isinstance(value, dict):
                continue
            region = value.get("region", True)
            providers[str(key)] = ProviderConfig(
                region=region if isinstance(region, bool) else True,
                base_url=_read_str(value, "baseUrl", "base_url") or None,
                models=normalize_models(value.get("models")),
            )

    allowlist_raw = raw.get("modelAllowlist", raw.get("model_allowlist"))
    allowlist = (
        [s.strip() for s in allowlist_raw if isinstance(s, str) and s.strip()]
        if isinstance(allowlist_raw, list)
        else []
    )

    overrides: dict[str, ModelOverride] = {}
    overrides_raw = raw.get("modelOverrides", raw.get("model_overrides"))
    if isinstance(overrides_raw, dict):
        for model_id, value in overrides_raw.items():
            if not isinstance(value, dict):
                continue
            try:
                overrides[str(model_id)] = ModelOverride.model_validate(value)
            except ValidationError:
                log.warning("config.override_invalid", extra={"model": model_id})

    return ConfigDocument(
        vendors=normalize_vendors(raw.get("vendors")),
        providers=providers,
        model_allowlist=allowlist,
        model_overrides=overrides,
    )


class ConfigStore:
    """Owner of the configuration document and the generic vendors' credentials."""

    def __init__(
        self,
        secrets: SecretStore,
        document: ConfigDocument | None = None,
        path: Path | None = None,
    ) -> None:
        self.secrets = secrets
        self._document = document or ConfigDocument()
        self._path = path
        # Fires when the vendor list or a vendor credential changes.
        self.on_did_change = ChangeEvent("config.vendors")

    @classmethod
    def from_settings(cls, settings: Settings, secrets: SecretStore) -> "ConfigStore":
        path = Path(settings.coding_plans_config_path) if settings.coding_plans_config_path else None
        document = ConfigDocument()
        if path is not None and path.exists():
            try:
                document = parse_document(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError) as e:
                log.warning("config.load_failed", extra={"path": str(path), "error": str(e)})
        return cls(secrets, document=document, path=path)

    @property
    def document(self) -> ConfigDocument:
        return self._document

    def _persist(self) -> None:
        if self._path is None:
            return
        payload = self._document.model_dump(mode="json", exclude_none=True)
        self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    # --- generic vendors ---

    def get_vendors(self) -> list[VendorConfig]:
        return [v.model_copy(deep=True) for v in self._document.vendors]

    def get_vendor(self, name: str) -> VendorConfig | None:
        return next((v for v in self.get_vendors() if v.name == name), None)

    def set_vendors(self, raw: Any) -> list[VendorConfig]:
        vendors = normalize_vendors(raw)
        self._document = self._document.model_copy(update={"vendors": vendors})
        self._persist()
        self.on_did_change.fire()
        return self.get_vendors()

    async def get_api_key(self, vendor_name: str) -> str:
        key = await self.secrets.get(VENDOR_API_KEY_PREFIX + vendor_name)
        return (key or "").strip()

    async def set_api_key(self, vendor_name: str, api_key: str) -> None:
        secret_key = VENDOR_API_KEY_PREFIX + vendor_name
        normalized = api_key.strip()
        if normalized:
            await self.secrets.store(secret_key, normalized)
        else:
            await self.secrets.delete(secret_key)
        self.on_did_change.fire()

    # --- per-vendor providers ---

    def get_region(self, provider_key: str) -> bool:
        provider = self._document.providers.get(provider_key)
        return provider.region if provider is not None else True

    def set_region(self, provider_key: str, region: bool) -> bool:
        """Store the region flag; returns False when it was already set to `region`."""
        if self.get_region(provider_key) == region:
            return False
        providers = dict(self._document.providers)
        current = providers.get(provider_key) or ProviderConfig()
        providers[provider_key] = current.model_copy(update={"region": region})
        self._document = self._document.model_copy(update={"providers": providers})
        self._persist()
        return True

    def get_provider_base_url(self, provider_key: str) -> str | None:
        provider = self._document.providers.get(provider_key)
        return provider.base_url if provider is not None else None

    def get_provider_models(self, provider_key: str) -> list[VendorModelConfig]:
        provider = self._document.providers.get(provider_key)
        return [m.model_copy() for m in provider.models] if provider is not None else []

    # --- global model settings ---

    def get_model_allowlist(self) -> list[str]:
        return list(self._document.model_allowlist)

    def set_model_allowlist(self, model_ids: list[str]) -> None:
        cleaned = [m.strip() for m in model_ids if m.strip()]
        self._document = self._document.model_copy(update={"model_allowlist": cleaned})
        self._persist()

    def get_model_overrides(self) -> dict[str, ModelOverride]:
        return dict(self._document.model_overrides)

    def set_model_override(self, model_id: str, override: ModelOverride | None) -> None:
        overrides = dict(self._document.model_overrides)
        if override is None:
            overrides.pop(model_id, None)
        else:
            overrides[model_id] = override
        self._document = self._document.model_copy(update={"model_overrides": overrides})
        self._persist()
