from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Request
from jose import JWTError
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.schemas import EmailIn, ResetPasswordIn
from portal.core.errors import ProviderError
from portal.core.logging import log
from portal.core.ratelimit import limiter
from portal.core.settings import settings
from portal.db.session import get_db
from portal.models import User
from portal.services.auth import decode_provider_token
from portal.services.provider import AuthProvider, get_auth_provider
from portal.services.users import find_by_email

router = APIRouter(prefix="/api/users", tags=["recovery"])

@router.post("/forgot-password")
@limiter.limit(settings.auth_rate_limit)
async def forgot_password(
    request: Request,
    data: EmailIn,
    db: AsyncSession = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider),
):
    if not data.email:
        raise HTTPException(status_code=400, detail="Email is required.")

    # Same answer for unknown addresses so accounts cannot be enumerated.
    if await find_by_email(db, data.email) is None:
        return {"success": True, "message": "If the email exists, we will send instructions."}

    try:
        await provider.reset_password_for_email(data.email, redirect_to=f"{settings.frontend_url.rstrip('/')}/profile/reset-password")
    except ProviderError as exc:
        log.error("password reset email failed for %s: %s", data.email, exc.message)
        raise HTTPException(status_code=500, detail="Could not send the instructions.")

    return {"success": True, "message": "Recovery email sent."}

@router.post("/reset-password")
async def reset_password(
    data: ResetPasswordIn,
    db: AsyncSession = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider),
):
    if not data.access_token or not data.password:
        raise HTTPException(status_code=400, detail="Token and new password are required.")

    try:
        payload = decode_provider_token(data.access_token)
    except JWTError as exc:
        log.warning("rejected password reset token: %s", exc)
        raise HTTPException(status_code=400, detail="Invalid or expired token.")

    try:
        await provider.update_password(payload["sub"], data.password)
    except ProviderError as exc:
        log.error("provider password update failed: %s", exc.message)
        raise HTTPException(status_code=400, detail=exc.message)

    # Following a recovery link proves ownership of the mailbox.
    if payload.get("email"):
        await db.execute(update(User).where(User.email == payload["email"]).values(email_verified=True))
        await db.commit()

    return {"success": True, "message": "Password reset successfully."}
