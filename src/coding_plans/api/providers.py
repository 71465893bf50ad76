from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from coding_plans.core.cancellation import CancellationToken
from coding_plans.core.deps import get_host_adapter, get_provider_registry
from coding_plans.core.errors import LanguageModelError
from coding_plans.core.logging import LogContext, with_context
from coding_plans.domain.chat import ChatRequestOptions, HostMessage, ResponsePart
from coding_plans.providers.adapter import HostAdapter, ModelInformation
from coding_plans.providers.registry import ProviderRegistry

router = APIRouter(prefix="/providers")
log = logging.getLogger(__name__)

DISCONNECT_POLL_SECONDS = 0.5


class ModelInformationRequest(BaseModel):
    group: str | None = None
    configuration: dict[str, Any] | None = None


class ChatRequest(BaseModel):
    model: str
    messages: list[HostMessage]
    options: ChatRequestOptions = Field(default_factory=ChatRequestOptions)


class TokenCountRequest(BaseModel):
    model: str
    text: str | HostMessage


async def cancel_on_disconnect(request: Request, cancellation: CancellationToken) -> None:
    """Cancel the vendor call once the client goes away before the stream starts."""
    while not cancellation.is_cancellation_requested:
        if await request.is_disconnected():
            log.info("chat.client_disconnected")
            cancellation.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


def _sse(payload: Any) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def _encode_part(part: ResponsePart) -> bytes:
    return _sse(part.model_dump(mode="json"))


@router.get("")
def list_providers(registry: ProviderRegistry = Depends(get_provider_registry)) -> list[dict[str, Any]]:
    return [
        {
            "vendor": p.vendor,
            "name": p.display_name,
            "has_api_key": p.has_credentials(),
            "models": len(p.get_available_models()),
        }
        for p in registry.providers()
    ]


@router.post("/{vendor}/models", response_model=list[ModelInformation])
async def provide_model_information(
    body: ModelInformationRequest | None = None,
    adapter: HostAdapter = Depends(get_host_adapter),
) -> list[ModelInformation]:
    options = body.model_dump(exclude_none=True) if body is not None else {}
    return await adapter.provide_model_information(options)


@router.post("/{vendor}/chat")
async def provide_chat_response(
    request: Request,
    body: ChatRequest,
    adapter: HostAdapter = Depends(get_host_adapter),
) -> StreamingResponse:
    logger = with_context(
        log,
        LogContext(request_id=getattr(request.state, "request_id", None), vendor=adapter.vendor, model=body.model),
    )
    cancellation = CancellationToken()
    parts = adapter.stream_chat_response(body.model, body.messages, body.options, cancellation)

    # Pull the first part here so request errors surface as HTTP statuses.
    # Once streaming starts, a disconnect closes the generator instead.
    watcher = asyncio.ensure_future(cancel_on_disconnect(request, cancellation))
    try:
        first: ResponsePart | None = await parts.__anext__()
    except StopAsyncIteration:
        first = None
    except BaseException:
        cancellation.cancel()
        raise
    finally:
        watcher.cancel()

    async def stream_gen():
        count = 0
        try:
            if first is not None:
                count += 1
                yield _encode_part(first)
            async for part in parts:
                count += 1
                yield _encode_part(part)
        except LanguageModelError as e:
            logger.warning("chat.stream_failed", extra={"kind": e.kind.value, "error": e.message})
            yield _sse({"error": {"kind": e.kind.value, "message": e.message}})
        finally:
            cancellation.cancel()
            logger.info("chat.stream.done", extra={"parts": count})
        yield b"data: [DONE]\n\n"

    return StreamingResponse(
        stream_gen(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/{vendor}/tokens")
async def provide_token_count(
    body: TokenCountRequest,
    adapter: HostAdapter = Depends(get_host_adapter),
) -> dict[str, int]:
    return {"tokens": await adapter.provide_token_count(body.model, body.text)}
