"""Uniform JSON error responses.

Every failure leaves the API as ``{"success": false, "message": ...}``. A
handler may raise ``HTTPException`` with a dict ``detail`` holding
``message`` plus extra keys (``code`` for instance); those keys are merged
into the body.
"""

from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse

from portal.core.logging import log

class ProviderError(Exception):
    """The auth provider rejected a call or could not be reached."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

class StorageError(Exception):
    """An object storage upload, removal or lookup failed."""

class MailerError(Exception):
    """The SMTP relay refused or failed to deliver a message."""

def error_body(message: str, **extra) -> dict:
    return {"success": False, "message": message, **extra}

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        extra = dict(exc.detail)
        message = extra.pop("message", "Request failed.")
        body = error_body(message, **extra)
    else:
        body = error_body(str(exc.detail))
    return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
    fields = [f for f in fields if f]
    message = "Missing or invalid fields."
    if fields:
        message = f"Missing or invalid fields: {', '.join(fields)}."
    return JSONResponse(error_body(message), status_code=400)

async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(error_body("Too many requests. Try again later."), status_code=429)

async def unhandled_exception_handler(request: Request, exc: Exception):
    log.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(error_body("Internal server error."), status_code=500)

def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
