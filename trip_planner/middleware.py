"""Security middleware for the trip planner API.

Provides:
    - API key authentication (X-API-Key header, single shared key)
    - Rate limiting (per-IP, in-memory sliding window; model-backed routes
      draw from a smaller budget)
    - Audit logging (one structured line per request, with trip id)
"""

from __future__ import annotations

import logging
import re
import secrets
import time
from collections import defaultdict
from typing import Callable, Set

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("audit")

_TRIP_PATH_RE = re.compile(r"^/v1/trips/([^/]+)")

# Routes that call the chat / image / speech models.
EXPENSIVE_SUFFIXES = (
    "/itinerary/generate",
    "/itinerary/refine",
    "/discover",
    "/visualize",
    "/voice",
)


def trip_id_from_path(path: str) -> str:
    match = _TRIP_PATH_RE.match(path)
    return match.group(1) if match else "-"


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Require X-API-Key header on all non-exempt paths."""

    EXEMPT_PATHS: Set[str] = {"/v1/health", "/docs", "/openapi.json", "/redoc"}

    def __init__(self, app, api_key: str):
        super().__init__(app)
        self.api_key = api_key

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        key = request.headers.get("X-API-Key", "")
        if not key or not secrets.compare_digest(key, self.api_key):
            audit_logger.warning(
                "AUTH_FAIL ip=%s path=%s",
                request.client.host if request.client else "unknown",
                request.url.path,
            )
            return JSONResponse(
                status_code=401,
                content={"error": "Invalid or missing API key", "status_code": 401},
            )
        return await call_next(request)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window rate limiter (per-IP, in-memory).

    Requests to model-backed routes are counted twice: once against the
    general budget and once against ``max_expensive``.
    """

    def __init__(
        self,
        app,
        max_requests: int = 120,
        max_expensive: int = 20,
        window_seconds: int = 60,
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.max_expensive = max_expensive
        self.window = window_seconds
        self._hits: dict[str, list[float]] = defaultdict(list)
        self._expensive_hits: dict[str, list[float]] = defaultdict(list)

    def _over_limit(self, bucket: dict[str, list[float]], ip: str, limit: int, now: float) -> bool:
        bucket[ip] = [t for t in bucket[ip] if now - t < self.window]
        return len(bucket[ip]) >= limit

    def _reject(self, request: Request, client_ip: str, kind: str) -> JSONResponse:
        audit_logger.warning(
            "RATE_LIMIT ip=%s path=%s kind=%s", client_ip, request.url.path, kind,
        )
        return JSONResponse(
            status_code=429,
            content={"error": "Rate limit exceeded", "status_code": 429},
            headers={"Retry-After": str(self.window)},
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        client_ip = request.client.host if request.client else "0.0.0.0"
        now = time.time()

        if self._over_limit(self._hits, client_ip, self.max_requests, now):
            return self._reject(request, client_ip, "general")

        expensive = request.method == "POST" and request.url.path.endswith(EXPENSIVE_SUFFIXES)
        if expensive:
            if self._over_limit(self._expensive_hits, client_ip, self.max_expensive, now):
                return self._reject(request, client_ip, "model")
            self._expensive_hits[client_ip].append(now)

        self._hits[client_ip].append(now)
        return await call_next(request)


class AuditLogMiddleware(BaseHTTPMiddleware):
    """Log every request with structured fields."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.time()
        client_ip = request.client.host if request.client else "unknown"

        response = await call_next(request)
        elapsed_ms = round((time.time() - start) * 1000, 1)

        audit_logger.info(
            "method=%s path=%s status=%d ip=%s trip=%s elapsed_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            client_ip,
            trip_id_from_path(request.url.path),
            elapsed_ms,
        )
        return response
