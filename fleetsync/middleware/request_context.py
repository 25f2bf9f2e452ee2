"""Request correlation middleware."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from fleetsync.logging import reset_request_id, set_request_id

logger = logging.getLogger("fleetsync.http")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind ``x-request-id`` (or a fresh id) for the lifetime of each request."""

    async def dispatch(  # type: ignore[override]
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        token = set_request_id(request_id)
        request.state.request_id = request_id
        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            reset_request_id(token)
        logger.debug(
            "Request handled",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
                "request_id": request_id,
            },
        )
        response.headers.setdefault("x-request-id", request_id)
        return response
