from __future__ import annotations

import re
from enum import Enum
from typing import Any

import httpx
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

MAX_ERROR_MESSAGE_CHARS = 500

# Anything after one of these markers is a stack trace, not a message.
_STACK_TRACE_MARKER = re.compile(
    r"(Traceback \(most recent call last\)|\n\s*at\s+\S|\s+at\s+(?:Object|async|new|Module)\b|\n\s*File \")"
)


class ErrorKind(str, Enum):
    CANCELLED = "cancelled"
    AUTH_INVALID = "auth_invalid"
    RATE_LIMITED = "rate_limited"
    INVALID_REQUEST = "invalid_request"
    VENDOR_NOT_CONFIGURED = "vendor_not_configured"
    # Never raised; surfaces as a placeholder model.
    DISCOVERY_UNSUPPORTED = "discovery_unsupported"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


class LanguageModelError(Exception):
    """Classified failure of a model operation, safe to show to the user."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        blocked: bool = False,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.blocked = blocked

    def __repr__(self) -> str:
        return f"LanguageModelError(kind={self.kind.value!r}, message={self.message!r})"


def cancelled(detail: str = "Request was cancelled") -> LanguageModelError:
    return LanguageModelError(ErrorKind.CANCELLED, detail)


def auth_invalid(detail: str | None = None, status_code: int | None = None) -> LanguageModelError:
    return LanguageModelError(
        ErrorKind.AUTH_INVALID, detail or "API key is invalid or expired", status_code=status_code
    )


def api_key_required(vendor: str) -> LanguageModelError:
    return LanguageModelError(ErrorKind.AUTH_INVALID, f"API key required for {vendor}")


def rate_limited(detail: str | None = None) -> LanguageModelError:
    message = f"Rate limit exceeded: {detail}" if detail else "Rate limit exceeded"
    return LanguageModelError(ErrorKind.RATE_LIMITED, message, status_code=429, blocked=True)


def invalid_request(detail: str | None = None, status_code: int | None = 400) -> LanguageModelError:
    return LanguageModelError(
        ErrorKind.INVALID_REQUEST, f"Invalid request: {detail or 'unknown'}", status_code=status_code
    )


def vendor_not_configured(model_id: str) -> LanguageModelError:
    return LanguageModelError(
        ErrorKind.VENDOR_NOT_CONFIGURED, f"No vendor is configured for model {model_id}"
    )


def model_not_found(model_id: str) -> LanguageModelError:
    return LanguageModelError(ErrorKind.NOT_FOUND, f"Model not found: {model_id}")


def no_models_available() -> LanguageModelError:
    return LanguageModelError(ErrorKind.NOT_FOUND, "No chat model is available")


def request_failed(detail: str | None = None, status_code: int | None = None) -> LanguageModelError:
    return LanguageModelError(
        ErrorKind.UNKNOWN, f"Request failed: {detail or 'unknown error'}", status_code=status_code
    )


def compact_error_message(value: Any) -> str:
    """Collapse an error or message into one short display line."""
    if value is None:
        return ""
    if isinstance(value, LanguageModelError):
        text = value.message
    elif isinstance(value, BaseException):
        text = str(value) or type(value).__name__
    else:
        text = str(value)

    match = _STACK_TRACE_MARKER.search(text)
    if match:
        text = text[: match.start()]
    text = " ".join(text.split())
    if len(text) > MAX_ERROR_MESSAGE_CHARS:
        text = text[:MAX_ERROR_MESSAGE_CHARS] + "…"
    return text


def read_response_body(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return resp.text


def read_api_error_message(body: Any) -> str | None:
    """Vendor-supplied human message from an error body, if any."""
    if not body:
        return None
    if isinstance(body, dict):
        error = body.get("error")
        candidates = [error.get("message") if isinstance(error, dict) else error, body.get("message")]
        for candidate in candidates:
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
        return None
    if isinstance(body, str) and body.strip():
        return body.strip()
    return None


def classify_error(exc: BaseException) -> LanguageModelError:
    """Map a transport/HTTP failure into the error taxonomy."""
    if isinstance(exc, LanguageModelError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        detail = read_api_error_message(read_response_body(exc.response))
        compact = compact_error_message(detail) if detail else None

        if status in (401, 403):
            return auth_invalid(compact, status_code=status)
        if status == 429:
            return rate_limited(compact)
        if status == 400:
            return invalid_request(compact, status_code=status)
        return request_failed(compact or f"HTTP {status}", status_code=status)

    if isinstance(exc, httpx.TimeoutException):
        return request_failed("vendor request timed out")

    return request_failed(compact_error_message(exc))


# --- HTTP surface ---

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.CANCELLED: 499,
    ErrorKind.AUTH_INVALID: 401,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.VENDOR_NOT_CONFIGURED: 404,
    ErrorKind.DISCOVERY_UNSUPPORTED: 404,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNKNOWN: 502,
}


def not_found(detail: str = "Not found") -> HTTPException:
    return HTTPException(status_code=404, detail=detail)


def service_unavailable(detail: str = "Service is starting") -> HTTPException:
    return HTTPException(status_code=503, detail=detail)


async def language_model_error_handler(request: Request, exc: LanguageModelError) -> JSONResponse:
    status = STATUS_BY_KIND.get(exc.kind, 502)
    headers = {"Retry-After": "1"} if exc.kind is ErrorKind.RATE_LIMITED else None
    return JSONResponse(
        status_code=status,
        content={"detail": exc.message, "kind": exc.kind.value},
        headers=headers,
    )
