from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

MODEL_VERSION_LABEL = "Coding Plans"
DEFAULT_CONTEXT_SIZE = 200_000


def tool_weight(value: float) -> int:
    """Integral weights are kept; a fractional non-zero weight still enables tools."""
    if float(value).is_integer():
        return int(value)
    return 1


class ModelCapabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    # bool, or a numeric weight some vendors report instead
    tool_calling: bool | int = True
    image_input: bool = False


class ModelDescriptor(BaseModel):
    """Resolved, display-ready description of one chat-capable model."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Vendor-scoped model id, or vendor/model for the generic gateway")
    vendor: str
    family: str
    name: str
    version: str = MODEL_VERSION_LABEL
    max_input_tokens: int = DEFAULT_CONTEXT_SIZE
    max_output_tokens: int = DEFAULT_CONTEXT_SIZE
    capabilities: ModelCapabilities = Field(default_factory=ModelCapabilities)
    description: str = ""


class DiscoveredModelSettings(BaseModel):
    """Limits and flags read from one entry of a vendor's /models response."""

    max_input_tokens: int | None = None
    max_output_tokens: int | None = None
    tool_calling: bool | int | None = None
    image_input: bool | None = None


class ModelOverride(BaseModel):
    """User-configured capability/context override for one model id."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    max_input_tokens: int | None = Field(default=None, alias="maxInputTokens")
    max_output_tokens: int | None = Field(default=None, alias="maxOutputTokens")
    tool_calling: bool | int | None = Field(default=None, alias="toolCalling")
    image_input: bool | None = Field(default=None, alias="imageInput")

    @field_validator("max_input_tokens", "max_output_tokens", mode="before")
    @classmethod
    def _floor_token_limit(cls, value: Any) -> Any:
        if isinstance(value, float) and math.isfinite(value) and value > 0:
            return math.floor(value)
        return value

    @field_validator("tool_calling", mode="before")
    @classmethod
    def _read_tool_weight(cls, value: Any) -> Any:
        if isinstance(value, float) and math.isfinite(value):
            return tool_weight(value)
        return value


class RuntimeCapabilitySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_input_tokens: int
    max_output_tokens: int
    tool_calling: bool | int
    image_input: bool
