from __future__ import annotations

import httpx

from coding_plans.core.errors import (
    MAX_ERROR_MESSAGE_CHARS,
    ErrorKind,
    classify_error,
    compact_error_message,
    model_not_found,
    read_api_error_message,
)


def _status_error(status: int, **kwargs) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://vendor.example/v1/chat/completions")
    response = httpx.Response(status, request=request, **kwargs)
    return httpx.HTTPStatusError("failed", request=request, response=response)


def test_compact_message_drops_stack_trace_and_whitespace() -> None:
    raw = "Upstream   said\n no\nTraceback (most recent call last):\n  File \"x.py\", line 1"
    assert compact_error_message(raw) == "Upstream said no"
    assert compact_error_message("boom\n    at Object.fetch (node:internal)") == "boom"


def test_compact_message_is_truncated() -> None:
    text = compact_error_message("x" * 800)
    assert len(text) == MAX_ERROR_MESSAGE_CHARS + 1
    assert text.endswith("…")


def test_compact_message_of_exceptions() -> None:
    assert compact_error_message(ValueError()) == "ValueError"
    assert compact_error_message(model_not_found("m")) == "Model not found: m"
    assert compact_error_message(None) == ""


def test_api_error_message_candidates() -> None:
    assert read_api_error_message({"error": {"message": "bad key"}}) == "bad key"
    assert read_api_error_message({"error": "quota"}) == "quota"
    assert read_api_error_message({"message": "flat"}) == "flat"
    assert read_api_error_message({"code": 1}) is None
    assert read_api_error_message(" plain ") == "plain"
    assert read_api_error_message(None) is None


def test_classify_http_errors() -> None:
    auth = classify_error(_status_error(401))
    assert auth.kind is ErrorKind.AUTH_INVALID
    assert auth.message == "API key is invalid or expired"

    limited = classify_error(_status_error(429))
    assert limited.kind is ErrorKind.RATE_LIMITED
    assert limited.message == "Rate limit exceeded"

    invalid = classify_error(_status_error(400, json={"message": "messages must not be empty"}))
    assert invalid.kind is ErrorKind.INVALID_REQUEST
    assert invalid.message == "Invalid request: messages must not be empty"

    failed = classify_error(_status_error(503))
    assert failed.kind is ErrorKind.UNKNOWN
    assert failed.message == "Request failed: HTTP 503"


def test_classify_passes_through_and_wraps() -> None:
    original = model_not_found("glm-9")
    assert classify_error(original) is original

    timeout = classify_error(httpx.ReadTimeout("read timed out"))
    assert timeout.message == "Request failed: vendor request timed out"

    other = classify_error(RuntimeError("socket closed"))
    assert other.kind is ErrorKind.UNKNOWN
    assert other.message == "Request failed: socket closed"
