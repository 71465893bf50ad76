from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, field_validator

# --- host-side message representation ---


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    value: str


class DataPart(BaseModel):
    """Binary content with a mime type, e.g. an attached file."""

    type: Literal["data"] = "data"
    mime_type: str
    data: bytes


class ToolCallPart(BaseModel):
    """Assistant request to invoke a tool."""

    type: Literal["tool_call"] = "tool_call"
    call_id: str = ""
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultPart(BaseModel):
    """Result of a tool invocation, sent back by the host."""

    type: Literal["tool_result"] = "tool_result"
    call_id: str
    content: list[Any] = Field(default_factory=list)

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_known_parts(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        out: list[Any] = []
        for item in value:
            if isinstance(item, dict) and item.get("type") == "text" and "value" in item:
                out.append(TextPart.model_validate(item))
            elif isinstance(item, dict) and item.get("type") == "data" and "mime_type" in item:
                out.append(DataPart.model_validate(item))
            else:
                out.append(item)
        return out


InputPart = Annotated[
    Union[TextPart, DataPart, ToolCallPart, ToolResultPart], Field(discriminator="type")
]
ResponsePart = Union[TextPart, ToolCallPart]


class HostMessage(BaseModel):
    """One message as handed over by the chat surface."""

    role: str
    content: str | list[InputPart]
    name: str | None = None


class ToolSpec(BaseModel):
    name: str
    description: str = ""
    input_schema: dict[str, Any] | None = None


class ToolMode(str, Enum):
    AUTO = "auto"
    REQUIRED = "required"


class ChatRequestOptions(BaseModel):
    tools: list[ToolSpec] = Field(default_factory=list)
    tool_mode: ToolMode = ToolMode.AUTO


# --- vendor wire format (OpenAI-compatible) ---


class ToolCallFunction(BaseModel):
    name: str
    arguments: str = "{}"


class ToolCall(BaseModel):
    id: str
    type: Literal["function"] = "function"
    function: ToolCallFunction


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system", "tool"]
    content: str
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None


class FunctionDefinition(BaseModel):
    name: str
    description: str | None = None
    parameters: dict[str, Any]


class ToolDefinition(BaseModel):
    type: Literal["function"] = "function"
    function: FunctionDefinition


class ChatCompletionRequest(BaseModel):
    model: str
    messages: list[ChatMessage]
    tools: list[ToolDefinition] | None = None
    tool_choice: Literal["auto", "required"] | None = None
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    stream: bool = False


class Usage(BaseModel):
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


@dataclass
class ChatResponse:
    """Emulated streaming reply.

    Vendors answer with one complete JSON body; `stream` and `text` replay it as
    finite async sequences that can each be consumed once.
    """

    stream: AsyncIterator[ResponsePart]
    text: AsyncIterator[str]
    usage: Usage | None = None
