"""Request logging middleware.

Logs method, path, status and elapsed time for every request, and tags the
response with an ``X-Request-ID`` (the caller's, when it sent one).
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger("fieldsync.requests")


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        start = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s -> %d in %.1f ms [device=%s request=%s]",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - start) * 1000,
            request.headers.get("deviceId", "-"),
            request_id,
        )
        response.headers.setdefault("X-Request-ID", request_id)
        return response
