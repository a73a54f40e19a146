"""
Custom middleware for the Pigeon SMS wallet service.
"""

import time
import uuid
from typing import Any, Callable, Dict, Tuple
from datetime import datetime

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from pigeon.observability import record_http_metrics

logger = structlog.get_logger()

CORRELATION_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for request/response logging with correlation ID support.

    Request bodies are never logged: they carry passwords.
    """

    def __init__(self, app, exclude_paths: set = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or {"/healthz", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        correlation_id = request.headers.get(CORRELATION_HEADER) or f"req_{uuid.uuid4().hex[:16]}"
        request.state.correlation_id = correlation_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        start_time = time.time()
        logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
            user_agent=request.headers.get("User-Agent", "unknown"),
            correlation_id=correlation_id
        )

        try:
            response = await call_next(request)

            process_time = time.time() - start_time
            logger.info(
                "Request completed",
                status_code=response.status_code,
                process_time_ms=round(process_time * 1000, 2),
                correlation_id=correlation_id
            )

            response.headers[CORRELATION_HEADER] = correlation_id
            return response

        except Exception as e:
            process_time = time.time() - start_time
            logger.error(
                "Request failed",
                error=str(e),
                error_type=type(e).__name__,
                process_time_ms=round(process_time * 1000, 2),
                correlation_id=correlation_id
            )

            return JSONResponse(
                status_code=500,
                content={
                    "ok": False,
                    "error": "An unexpected error occurred",
                    "correlation_id": correlation_id,
                    "timestamp": datetime.utcnow().isoformat()
                },
                headers={CORRELATION_HEADER: correlation_id}
            )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers to responses.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers.update({
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
            "Content-Security-Policy": "default-src 'self'",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Cache-Control": "no-store"
        })

        return response


class RequestMetrics:
    """Process-wide request counters shown on ``/metrics``."""

    def __init__(self):
        self.request_count = 0
        self.error_count = 0
        self.total_processing_time = 0.0

    def record(self, status_code: int, processing_time: float) -> None:
        self.request_count += 1
        self.total_processing_time += processing_time
        if status_code >= 400:
            self.error_count += 1

    def snapshot(self) -> Dict[str, Any]:
        avg_processing_time = (
            self.total_processing_time / self.request_count
            if self.request_count > 0 else 0
        )

        return {
            "total_requests": self.request_count,
            "error_count": self.error_count,
            "error_rate": self.error_count / self.request_count if self.request_count > 0 else 0,
            "avg_processing_time_ms": round(avg_processing_time * 1000, 2)
        }


# Global metrics instance
request_metrics = RequestMetrics()


def get_metrics() -> Dict[str, Any]:
    """Get current application metrics."""
    return request_metrics.snapshot()


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect basic metrics about requests.
    """

    def __init__(self, app, metrics: RequestMetrics = None):
        super().__init__(app)
        self.metrics = metrics or request_metrics

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception:
            processing_time = time.time() - start_time
            self.metrics.record(500, processing_time)
            record_http_metrics(request.method, request.url.path, 500, processing_time)
            raise

        processing_time = time.time() - start_time
        self.metrics.record(response.status_code, processing_time)
        record_http_metrics(request.method, request.url.path, response.status_code, processing_time)
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Simple rate limiting middleware (in-memory, for basic protection).

    Paths under ``exempt_paths`` are not counted. SMS gateway webhooks go
    there: every user's message arrives from the gateway's address.
    """

    def __init__(
        self,
        app,
        max_requests: int = 100,
        window_seconds: int = 60,
        exempt_paths: Tuple[str, ...] = (),
        clock: Callable[[], float] = time.time
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.exempt_paths = tuple(exempt_paths)
        self.requests: Dict[str, list] = {}
        self._clock = clock
        self._last_sweep = clock()

    def _prune(self, current_time: float) -> None:
        """Drop clients with no requests inside the window."""
        self.requests = {
            client_ip: times for client_ip, times in self.requests.items()
            if times and current_time - times[-1] < self.window_seconds
        }
        self._last_sweep = current_time

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(self.exempt_paths):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        current_time = self._clock()

        if current_time - self._last_sweep >= self.window_seconds:
            self._prune(current_time)

        # Clean old requests
        recent = [
            req_time for req_time in self.requests.get(client_ip, [])
            if current_time - req_time < self.window_seconds
        ]

        if len(recent) >= self.max_requests:
            self.requests[client_ip] = recent
            logger.warning(
                "Rate limit exceeded",
                client_ip=client_ip,
                request_count=len(recent),
                max_requests=self.max_requests
            )

            return JSONResponse(
                status_code=429,
                content={
                    "ok": False,
                    "error": f"Too many requests. Limit: {self.max_requests} per {self.window_seconds} seconds",
                    "correlation_id": request.headers.get(CORRELATION_HEADER, "unknown"),
                    "timestamp": datetime.utcnow().isoformat()
                },
                headers={"Retry-After": str(self.window_seconds)}
            )

        recent.append(current_time)
        self.requests[client_ip] = recent

        return await call_next(request)
