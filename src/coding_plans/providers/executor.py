from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable
from typing import Any, Callable

import httpx

from coding_plans.core.cancellation import CancellationToken, OperationCancelled, run_cancellable
from coding_plans.core.errors import cancelled, classify_error, read_response_body, request_failed
from coding_plans.core.metrics import chat_retries_total
from coding_plans.domain.chat import (
    ChatCompletionRequest,
    ChatMessage,
    ChatRequestOptions,
    ChatResponse,
    ResponsePart,
    Usage,
)
from coding_plans.providers.capabilities import read_model_entries
from coding_plans.providers.messages import build_response_parts, build_tool_choice, build_tool_definitions

log = logging.getLogger(__name__)

DISCOVERY_UNSUPPORTED_STATUSES = frozenset({404, 405, 501})


def normalize_http_base_url(value: str | None) -> str | None:
    """http(s) base URL without trailing slashes, or None when unusable."""
    if not value or not value.strip():
        return None
    try:
        url = httpx.URL(value.strip())
    except httpx.InvalidURL:
        return None
    if url.scheme not in ("http", "https") or not url.host:
        return None
    return str(url).rstrip("/")


def is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


def is_discovery_unsupported(exc: BaseException) -> bool:
    return (
        isinstance(exc, httpx.HTTPStatusError)
        and exc.response.status_code in DISCOVERY_UNSUPPORTED_STATUSES
    )


def build_chat_payload(
    model: str,
    messages: list[ChatMessage],
    options: ChatRequestOptions | None,
    *,
    tool_calling: bool | int,
    temperature: float,
    top_p: float,
    max_tokens: int,
) -> ChatCompletionRequest:
    return ChatCompletionRequest(
        model=model,
        messages=messages,
        tools=build_tool_definitions(options) if tool_calling else None,
        tool_choice=build_tool_choice(options) if tool_calling else None,
        temperature=temperature,
        top_p=top_p,
        max_tokens=max_tokens,
        stream=False,
    )


def _read_usage(data: dict[str, Any]) -> Usage | None:
    usage = data.get("usage")
    if not isinstance(usage, dict):
        return None
    return Usage(
        prompt_tokens=usage.get("prompt_tokens"),
        completion_tokens=usage.get("completion_tokens"),
        total_tokens=usage.get("total_tokens"),
    )


async def _replay_parts(parts: list[ResponsePart]) -> AsyncIterator[ResponsePart]:
    for part in parts:
        yield part


async def _replay_text(text: str) -> AsyncIterator[str]:
    if text.strip():
        yield text


def build_chat_response(data: Any) -> ChatResponse:
    """Wrap one complete vendor reply as a single-pass response sequence."""
    if not isinstance(data, dict):
        raise request_failed("vendor returned an unexpected response body")

    choices = data.get("choices") or []
    first = choices[0] if choices and isinstance(choices[0], dict) else {}
    message = first.get("message") or {}
    content = message.get("content")
    if not isinstance(content, str):
        content = "" if content is None else str(content)

    parts = build_response_parts(content, message.get("tool_calls"))
    return ChatResponse(stream=_replay_parts(parts), text=_replay_text(content), usage=_read_usage(data))


class RequestExecutor:
    """Sends vendor requests; stateless apart from the shared HTTP client."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        max_retries: int = 2,
        backoff_seconds: float = 0.8,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = client
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    @staticmethod
    def _headers(api_key: str) -> dict[str, str]:
        return {"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"}

    async def post_chat_completions(
        self,
        base_url: str,
        api_key: str,
        payload: ChatCompletionRequest,
        cancellation: CancellationToken | None = None,
    ) -> dict[str, Any]:
        url = f"{base_url}/chat/completions"
        body = payload.model_dump(mode="json", exclude_none=True)
        attempt = 0

        while True:
            try:
                resp = await run_cancellable(
                    self._client.post(url, json=body, headers=self._headers(api_key)), cancellation
                )
                resp.raise_for_status()
            except OperationCancelled as e:
                log.info("chat.cancelled", extra={"url": url, "attempt": attempt})
                raise cancelled() from e
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if not is_retryable_status(status) or attempt >= self._max_retries:
                    log.warning("chat.failed", extra={"url": url, "status": status, "attempt": attempt})
                    raise classify_error(e) from e

                delay = self._backoff_seconds * (attempt + 1)
                log.warning("chat.retry", extra={"url": url, "status": status, "attempt": attempt, "delay": delay})
                chat_retries_total.labels(status=str(status)).inc()
                try:
                    await run_cancellable(self._sleep(delay), cancellation)
                except OperationCancelled as ce:
                    raise cancelled() from ce
                attempt += 1
                continue
            except httpx.HTTPError as e:
                log.exception("chat.transport_error", extra={"url": url})
                raise classify_error(e) from e

            data = read_response_body(resp)
            if not isinstance(data, dict):
                raise request_failed("vendor returned an unexpected response body")
            return data

    async def fetch_model_entries(self, base_url: str, api_key: str) -> list[Any]:
        """GET {base_url}/models. HTTP and transport errors propagate unclassified."""
        resp = await self._client.get(f"{base_url}/models", headers=self._headers(api_key))
        resp.raise_for_status()
        return read_model_entries(read_response_body(resp))
