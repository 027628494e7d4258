from __future__ import annotations

import logging
import time
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger("johapon.access")

SLOW_REQUEST_MS = 1000


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.perf_counter()
        method = request.method
        path = request.url.path
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error("%s %s failed after %.1fms", method, path, duration_ms)
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}"
        logger.info("%s %s %s %.1fms", method, path, response.status_code, duration_ms)
        if duration_ms > SLOW_REQUEST_MS:
            logger.warning("slow request: %s %s took %.1fms", method, path, duration_ms)
        return response
