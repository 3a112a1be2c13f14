"""FastAPI middleware for metrics, correlation IDs and request logging."""

import logging
import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.core.logging import clear_correlation_id, set_correlation_id
from app.core.metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_PROGRESS,
    HTTP_REQUESTS_TOTAL,
)

_UUID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
    flags=re.IGNORECASE,
)
_HLS_FILE_RE = re.compile(r"/hls/[^/]+$")


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware for collecting HTTP request metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        method = request.method
        path = self._normalize_path(request.url.path)

        HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=path).inc()

        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration = time.perf_counter() - start_time
            HTTP_REQUEST_DURATION_SECONDS.labels(
                method=method, endpoint=path
            ).observe(duration)
            HTTP_REQUESTS_TOTAL.labels(
                method=method, endpoint=path, status_code=str(status_code)
            ).inc()
            HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=path).dec()

    def _normalize_path(self, path: str) -> str:
        """Normalize path to reduce cardinality.

        Replaces UUIDs and HLS file names with placeholders; segment
        requests would otherwise create one label per segment.
        """
        path = _UUID_RE.sub("{id}", path)
        path = _HLS_FILE_RE.sub("/hls/{filename}", path)
        return re.sub(r"/\d+(?=/|$)", "/{id}", path)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Middleware for managing correlation IDs."""

    CORRELATION_ID_HEADER = "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(
            self.CORRELATION_ID_HEADER,
            str(uuid.uuid4()),
        )
        set_correlation_id(correlation_id)

        try:
            response = await call_next(request)
            response.headers[self.CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            clear_correlation_id()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request/response logging."""

    def __init__(self, app: ASGIApp, skip_paths: tuple[str, ...] = ("/metrics",)):
        super().__init__(app)
        self.skip_paths = skip_paths
        self.logger = logging.getLogger("app.requests")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.skip_paths:
            return await call_next(request)

        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            self.logger.error(
                "Request failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                    "error": str(e),
                },
                exc_info=True,
            )
            raise

        self.logger.info(
            "Request completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                "client_ip": request.client.host if request.client else None,
            },
        )
        return response


__all__ = [
    "MetricsMiddleware",
    "CorrelationIdMiddleware",
    "RequestLoggingMiddleware",
]
