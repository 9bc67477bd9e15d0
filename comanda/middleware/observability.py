from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from comanda.core.request_context import request_scope

logger = logging.getLogger(__name__)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        status_code = 500
        endpoint = request.url.path
        method = request.method

        with request_scope(request_id=request_id):
            try:
                response = await call_next(request)
                status_code = response.status_code
                response.headers["X-Request-ID"] = request_id
                return response
            finally:
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                logger.info(
                    "request completed %s %s status=%s",
                    method,
                    endpoint,
                    status_code,
                    extra={"request_id": request_id, "duration_ms": duration_ms},
                )
