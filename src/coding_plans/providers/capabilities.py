"""Model discovery decoding and per-model capability resolution.

Vendors describe models with several aliases for the same field. Each decoder
here is a pure function over untyped JSON that tries an ordered list of
candidate fields and returns the first usable value.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from coding_plans.domain.models import (
    DEFAULT_CONTEXT_SIZE,
    DiscoveredModelSettings,
    ModelOverride,
    RuntimeCapabilitySettings,
    tool_weight,
)

NON_CHAT_MARKERS = ("embedding", "rerank", "speech", "tts", "asr", "audio")

_MISSING = object()


def _path(entry: Any, *keys: str) -> Any:
    value = entry
    for key in keys:
        if not isinstance(value, Mapping) or key not in value:
            return _MISSING
        value = value[key]
    return value


def _first_positive(entry: Any, candidates: list[tuple[str, ...]]) -> int | None:
    for path in candidates:
        value = _path(entry, *path)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if math.isfinite(value) and value > 0:
            return math.floor(value)
    return None


def _first_flag(entry: Any, candidates: list[tuple[str, ...]], *, allow_weight: bool) -> bool | int | None:
    for path in candidates:
        value = _path(entry, *path)
        if isinstance(value, bool):
            return value
        if allow_weight and isinstance(value, (int, float)) and math.isfinite(value):
            return tool_weight(value)
    return None


def read_model_entries(payload: Any) -> list[Any]:
    """Entries of a /models response: {data: [...]}, {models: [...]} or a bare list."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        for key in ("data", "models"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


def read_model_id(entry: Any) -> str | None:
    if isinstance(entry, str):
        return entry.strip() or None
    for key in ("id", "model", "name"):
        value = _path(entry, key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def read_discovered_settings(entry: Any) -> DiscoveredModelSettings:
    return DiscoveredModelSettings(
        max_input_tokens=_first_positive(
            entry,
            [("capabilities", "max_input_tokens"), ("max_input_tokens",), ("max_tokens",), ("context_length",)],
        ),
        max_output_tokens=_first_positive(
            entry,
            [("capabilities", "max_output_tokens"), ("max_output_tokens",), ("max_tokens",), ("context_length",)],
        ),
        tool_calling=_first_flag(
            entry,
            [
                ("capabilities", "tool_calling"),
                ("capabilities", "function_calling"),
                ("tool_calling",),
                ("function_calling",),
            ],
            allow_weight=True,
        ),
        image_input=_first_flag(
            entry,
            [("capabilities", "image_input"), ("capabilities", "vision"), ("image_input",), ("vision",)],
            allow_weight=False,
        ),
    )


def is_chat_model(model_id: str) -> bool:
    lower = model_id.lower()
    return not any(marker in lower for marker in NON_CHAT_MARKERS)


def infer_family(model_id: str, fallback: str) -> str:
    parts = [p for p in model_id.split("-") if p]
    if len(parts) >= 2:
        return f"{parts[0]}-{parts[1]}"
    if parts:
        return parts[0]
    return fallback


def _clamp_tokens(value: float) -> int:
    return max(1, math.floor(value))


def resolve_runtime_settings(
    model_id: str,
    discovered: DiscoveredModelSettings | None,
    overrides: Mapping[str, ModelOverride],
    *,
    default_context_size: int = DEFAULT_CONTEXT_SIZE,
    default_tool_calling: bool = True,
    default_image_input: bool = False,
) -> RuntimeCapabilitySettings:
    """Per field: configured override, then discovered value, then default."""
    override = overrides.get(model_id) or ModelOverride()
    found = discovered or DiscoveredModelSettings()

    def pick(field: str, default: Any) -> Any:
        for candidate in (getattr(override, field), getattr(found, field)):
            if candidate is not None:
                return candidate
        return default

    return RuntimeCapabilitySettings(
        max_input_tokens=_clamp_tokens(pick("max_input_tokens", default_context_size)),
        max_output_tokens=_clamp_tokens(pick("max_output_tokens", default_context_size)),
        tool_calling=pick("tool_calling", default_tool_calling),
        image_input=pick("image_input", default_image_input),
    )
