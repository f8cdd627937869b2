from __future__ import annotations
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request

from portal.core.settings import settings
from portal.core.logging import configure_logging
from portal.core.errors import register_exception_handlers
from portal.core.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from portal.core.ratelimit import limiter
from portal.api import events, news, posts, profile, recovery, users, verification

configure_logging(settings.log_level)

app = FastAPI(title="Portal API", version="0.1.0")
app.state.limiter = limiter
register_exception_handlers(app)

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(users.router)
app.include_router(recovery.router)
app.include_router(verification.router)
app.include_router(profile.router)
app.include_router(posts.router)
app.include_router(events.router)
app.include_router(news.router)

@app.get("/health")
@limiter.limit("30/minute")
async def health(request: Request):
    return {"success": True, "status": "ok"}
