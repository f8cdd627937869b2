from __future__ import annotations

import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from portal.core.logging import log, set_request_id

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        # JSON only: nothing served here should load or embed anything.
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response

class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and write one access log line for it."""

    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("x-request-id") or uuid4().hex
        set_request_id(rid)
        start = time.perf_counter()
        try:
            response: Response = await call_next(request)
        except Exception:
            ms = (time.perf_counter() - start) * 1000.0
            log.error("%s %s -> 500 (%.1f ms)", request.method, request.url.path, ms)
            # The id stays set so the catch-all handler's record carries it.
            raise
        ms = (time.perf_counter() - start) * 1000.0
        log.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, ms)
        response.headers["X-Request-ID"] = rid
        set_request_id(None)
        return response
