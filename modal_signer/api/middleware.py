"""Request tracing and body-size middleware for the bridge API."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

log = structlog.get_logger()

_UNLOGGED_PATHS = ("/health", "/metrics")

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Cache-Control": "no-store",
}

BODY_LIMIT = 65_536  # 64 KB


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Assign a unique request ID, add security headers, and log every request.

    - Reads ``X-Request-ID`` from the incoming request or generates a UUID4.
    - Binds the ID to structlog contextvars so all log lines include ``request_id``.
    - Returns the ID in the ``X-Request-ID`` response header.
    - Logs method, path, status code, and duration for every request.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.monotonic()
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            for header, value in _SECURITY_HEADERS.items():
                response.headers.setdefault(header, value)
            duration_s = time.monotonic() - start
            path = request.url.path
            if path not in _UNLOGGED_PATHS:
                from modal_signer.api.metrics import REQUEST_COUNT, REQUEST_LATENCY

                REQUEST_COUNT.labels(
                    method=request.method,
                    endpoint=path,
                    status=response.status_code,
                ).inc()
                REQUEST_LATENCY.labels(endpoint=path).observe(duration_s)
                log.info(
                    "request",
                    method=request.method,
                    path=path,
                    status=response.status_code,
                    duration_ms=round(duration_s * 1000, 1),
                    client=request.client.host if request.client else "unknown",
                )
            return response
        finally:
            structlog.contextvars.unbind_contextvars("request_id")


class BodyLimitMiddleware(BaseHTTPMiddleware):
    """Reject oversized bodies by Content-Length before they reach a handler.

    Only declared lengths are checked here; chunked bodies are capped after
    reading by the route handlers.
    """

    def __init__(self, app: object, limit: int = BODY_LIMIT) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._limit = limit

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                too_large = int(content_length) > self._limit
            except ValueError:
                return JSONResponse(status_code=400, content={"error": "bad request"})
            if too_large:
                log.warning("request_body_too_large", path=request.url.path, content_length=content_length)
                return JSONResponse(status_code=413, content={"error": "request body too large"})
        return await call_next(request)


def get_cors_origins(env_value: str = "") -> list[str]:
    """Parse CORS origins from a comma-separated value.

    Returns ["*"] when unset. In production, set CORS_ORIGINS to the login
    front-end origins.
    """
    if not env_value:
        log.warning("cors_wildcard", msg="CORS_ORIGINS not set; using wildcard. Set CORS_ORIGINS in production.")
        return ["*"]
    return [o.strip() for o in env_value.split(",") if o.strip()]
