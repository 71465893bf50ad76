from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from coding_plans.core.config import get_settings
from coding_plans.core.logging import LogContext, with_context

log = logging.getLogger(__name__)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id (the caller's, when sent) and logs its outcome."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        header_name = get_settings().coding_plans_request_id_header
        request_id = request.headers.get(header_name) or uuid.uuid4().hex
        request.state.request_id = request_id
        logger = with_context(log, LogContext(request_id=request_id))

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        response.headers[header_name] = request_id
        response.headers["X-Response-Time-Ms"] = str(elapsed_ms)
        logger.info(
            "http.request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": elapsed_ms,
            },
        )
        return response
