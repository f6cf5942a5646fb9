"""
SuperClip Backend — Rate Limiting Middleware
===============================================

What:  Per-IP sliding window rate limiter (default 100 requests / 15 minutes).
How:   Tracks request timestamps per client IP in memory.
Who:   Applied to every request via Starlette middleware.
When:  Second in the middleware chain, inside RequestIDMiddleware.

Algorithm: Sliding Window Log
    1. Each IP gets a list of request timestamps
    2. On each request, drop timestamps older than the window
    3. If the remaining count >= limit, reject with 429
    4. Otherwise record the current timestamp and continue

Bypass:
    Requests whose X-API-Key header matches INTERNAL_API_KEY are not counted.

Headers:
    RateLimit-Limit / RateLimit-Remaining on every counted response,
    Retry-After on 429.

This limiter is per process. It is unrelated to plan quotas, which the
entitlement engine enforces per user.
"""

import hmac
import logging
import time
from collections import defaultdict
from typing import Dict, List

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from app.config import settings
from app.exceptions import AppError, ErrorKind
from app.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory sliding window rate limiter keyed by client IP."""

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._seen = 0

    def _is_internal(self, request: Request) -> bool:
        key = settings.internal_api_key
        supplied = request.headers.get("X-API-Key")
        return bool(key) and supplied is not None and hmac.compare_digest(supplied, key)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS or self._is_internal(request):
            return await call_next(request)

        client_ip = (
            getattr(request.client, "host", "unknown")
            if request.client
            else "unknown"
        )
        limit = settings.rate_limit_requests
        window = settings.rate_limit_window

        now = time.time()
        window_start = now - window

        # ── Sliding Window: drop expired entries ──────────────────────────
        recent = [ts for ts in self._requests[client_ip] if ts > window_start]
        self._requests[client_ip] = recent

        if len(recent) >= limit:
            retry_after = int(recent[0] + window - now) + 1
            logger.warning(
                "Rate limit exceeded for IP %s: %d requests in %ds window",
                client_ip,
                len(recent),
                window,
            )
            error = AppError(
                ErrorKind.RATE_LIMITED,
                f"Too many requests. Please wait {retry_after} seconds before retrying.",
                details={"retry_after": retry_after},
            )
            content = error.to_dict()
            content["request_id"] = request_id_var.get("")
            return JSONResponse(
                status_code=error.http_status,
                content=content,
                headers={
                    "Retry-After": str(retry_after),
                    "RateLimit-Limit": str(limit),
                    "RateLimit-Remaining": "0",
                },
            )

        recent.append(now)

        # Every 1000th counted request, forget IPs with no requests in the window
        self._seen += 1
        if self._seen % 1000 == 0:
            self._cleanup_inactive_ips(window_start)

        response = await call_next(request)
        response.headers["RateLimit-Limit"] = str(limit)
        response.headers["RateLimit-Remaining"] = str(max(limit - len(recent), 0))
        return response

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        inactive_ips = [
            ip for ip, timestamps in self._requests.items()
            if not timestamps or max(timestamps) < window_start
        ]
        for ip in inactive_ips:
            del self._requests[ip]

        if inactive_ips:
            logger.debug("Cleaned up %d inactive IP entries", len(inactive_ips))
