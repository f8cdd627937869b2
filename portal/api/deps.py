from __future__ import annotations
import hmac
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from portal.core.errors import ProviderError
from portal.core.logging import log
from portal.core.settings import settings
from portal.services.provider import AuthProvider, get_auth_provider

bearer = HTTPBearer(auto_error=False)

async def resolve_provider_user(token: str | None, provider: AuthProvider):
    if not token:
        raise HTTPException(status_code=401, detail="Authorization required for this action.")
    try:
        return await provider.get_user(token)
    except ProviderError as exc:
        log.warning("rejected session token: %s", exc.message)
        raise HTTPException(status_code=401, detail="Invalid session. Please sign in again.")

async def get_auth_user(
    cred: HTTPAuthorizationCredentials | None = Depends(bearer),
    provider: AuthProvider = Depends(get_auth_provider),
):
    """Provider user behind the bearer token of the request."""
    return await resolve_provider_user(cred.credentials if cred else None, provider)

def require_admin(
    x_admin_secret: str | None = Header(default=None),
    cred: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> None:
    if not settings.admin_secret:
        log.error("ADMIN_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Security configuration missing. Contact support.")
    provided = (x_admin_secret or "").strip() or (cred.credentials.strip() if cred else "")
    if not provided or not hmac.compare_digest(provided.encode(), settings.admin_secret.encode()):
        raise HTTPException(status_code=401, detail="Invalid admin secret.")
