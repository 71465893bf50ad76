"""Conversion between host messages and the vendor chat wire format."""

from __future__ import annotations

import json
import logging
import random
import time
from typing import Any, Literal

from coding_plans.domain.chat import (
    ChatMessage,
    ChatRequestOptions,
    DataPart,
    FunctionDefinition,
    HostMessage,
    ResponsePart,
    TextPart,
    ToolCall,
    ToolCallFunction,
    ToolCallPart,
    ToolDefinition,
    ToolMode,
    ToolResultPart,
)

log = logging.getLogger(__name__)

OPEN_OBJECT_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}, "additionalProperties": True}


def make_tool_call_id() -> str:
    return f"tool_{int(time.time() * 1000)}_{random.randint(0, 99999)}"


def to_chat_role(role: str) -> Literal["user", "assistant", "system"]:
    if role in ("user", "assistant"):
        return role
    return "system"


def read_data_part(part: DataPart) -> str:
    mime = part.mime_type
    if mime.startswith("text/") or "json" in mime:
        return part.data.decode("utf-8", errors="replace")
    return f"[{mime} {len(part.data)} bytes]"


def read_message_text(message: HostMessage | str) -> str:
    """Plain text of a message, as used for token estimates."""
    if isinstance(message, str):
        return message
    if isinstance(message.content, str):
        return message.content
    return "".join(p.value for p in message.content if isinstance(p, TextPart))


def _stringify_result_item(item: Any) -> str:
    if isinstance(item, TextPart):
        return item.value
    if isinstance(item, DataPart):
        return read_data_part(item)
    if isinstance(item, str):
        return item
    try:
        return json.dumps(item, ensure_ascii=False, default=_model_default)
    except (TypeError, ValueError):
        return str(item)


def _model_default(value: Any) -> Any:
    dump = getattr(value, "model_dump", None)
    if callable(dump):
        return dump(mode="json")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def stringify_tool_result(part: ToolResultPart) -> str:
    pieces = [_stringify_result_item(item) for item in part.content]
    return "\n".join(p for p in pieces if p)


def to_provider_messages(messages: list[HostMessage]) -> list[ChatMessage]:
    normalized: list[ChatMessage] = []

    for message in messages:
        if isinstance(message.content, str):
            normalized.append(ChatMessage(role=to_chat_role(message.role), content=message.content))
            continue

        text_parts: list[str] = []
        tool_calls: list[ToolCallPart] = []
        tool_results: list[ToolResultPart] = []

        for part in message.content:
            if isinstance(part, TextPart):
                text_parts.append(part.value)
            elif isinstance(part, ToolCallPart):
                tool_calls.append(part)
            elif isinstance(part, ToolResultPart):
                tool_results.append(part)
            elif isinstance(part, DataPart):
                text_parts.append(read_data_part(part))

        text = "".join(text_parts)

        if tool_results:
            for result in tool_results:
                normalized.append(
                    ChatMessage(role="tool", tool_call_id=result.call_id, content=stringify_tool_result(result))
                )
            if text.strip():
                normalized.append(ChatMessage(role="user", content=text))
            continue

        if tool_calls:
            normalized.append(
                ChatMessage(
                    role="assistant",
                    content=text,
                    tool_calls=[
                        ToolCall(
                            id=call.call_id or make_tool_call_id(),
                            function=ToolCallFunction(
                                name=call.name,
                                arguments=json.dumps(call.input or {}, ensure_ascii=False),
                            ),
                        )
                        for call in tool_calls
                    ],
                )
            )
            continue

        normalized.append(ChatMessage(role=to_chat_role(message.role), content=text))

    return normalized


def build_tool_definitions(options: ChatRequestOptions | None) -> list[ToolDefinition] | None:
    if options is None or not options.tools:
        return None
    return [
        ToolDefinition(
            function=FunctionDefinition(
                name=tool.name,
                description=tool.description or None,
                parameters=tool.input_schema or dict(OPEN_OBJECT_SCHEMA),
            )
        )
        for tool in options.tools
    ]


def build_tool_choice(options: ChatRequestOptions | None) -> Literal["auto", "required"] | None:
    if options is None or not options.tools:
        return None
    if options.tool_mode == ToolMode.REQUIRED:
        return "required"
    return "auto"


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    if not raw:
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {"raw": raw}
    if isinstance(parsed, dict):
        return parsed
    return {"value": parsed}


def build_response_parts(content: str, tool_calls: list[Any] | None) -> list[ResponsePart]:
    """Host response parts for one vendor reply; tool calls without a name are dropped."""
    parts: list[ResponsePart] = []
    if content.strip():
        parts.append(TextPart(value=content))

    for call in tool_calls or []:
        if not isinstance(call, dict):
            continue
        function = call.get("function") or {}
        name = function.get("name")
        if not name:
            log.debug("response.tool_call_without_name", extra={"call": call})
            continue
        parts.append(
            ToolCallPart(
                call_id=call.get("id") or make_tool_call_id(),
                name=name,
                input=parse_tool_arguments(function.get("arguments")),
            )
        )
    return parts
