from __future__ import annotations
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from jose import JWTError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.schemas import EmailIn, VerifyEmailIn
from portal.core.errors import MailerError, ProviderError
from portal.core.logging import log
from portal.core.ratelimit import limiter
from portal.core.settings import settings
from portal.db.session import get_db
from portal.models import User
from portal.services.auth import decode_verification_token
from portal.services.mailer import Mailer, get_mailer
from portal.services.provider import AuthProvider, get_auth_provider
from portal.services.users import find_by_email, is_confirmed

router = APIRouter(prefix="/api/users", tags=["verification"])

async def mark_verified(db: AsyncSession, email: str | None, supabase_id: str | None = None) -> None:
    if not email:
        return
    values: dict = {"email_verified": True}
    if supabase_id:
        values["supabase_id"] = supabase_id
    await db.execute(update(User).where(User.email == email).values(**values))
    await db.commit()

def verified_response(email: str | None, already: bool) -> dict:
    return {
        "success": True,
        "message": "Email was already verified." if already else "Email verified successfully.",
        "alreadyVerified": already,
        "email": email,
    }

@router.post("/send-verification")
@limiter.limit(settings.auth_rate_limit)
async def send_verification(
    request: Request,
    data: EmailIn,
    db: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    if not data.email:
        raise HTTPException(status_code=400, detail="Email is required.")
    user = await find_by_email(db, data.email)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found.")
    if user.email_verified:
        raise HTTPException(status_code=400, detail="This email is already verified.")
    try:
        await mailer.send_verification_email(user)
    except MailerError:
        log.exception("failed to resend verification email to %s", user.email)
        raise HTTPException(status_code=500, detail="Could not resend the email.")
    return {"success": True, "message": "Verification email sent again."}

@router.post("/verify-email")
async def verify_email(
    data: VerifyEmailIn,
    db: AsyncSession = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider),
):
    # 1) provider session from the confirmation redirect
    if data.access_token:
        try:
            provider_user = await provider.get_user(data.access_token)
        except ProviderError as exc:
            log.warning("verification with access token rejected: %s", exc.message)
            raise HTTPException(status_code=400, detail="Invalid or expired token.")
        if not provider_user.email:
            raise HTTPException(status_code=400, detail="Invalid or expired token.")
        await mark_verified(db, provider_user.email, provider_user.id)
        return verified_response(provider_user.email, is_confirmed(provider_user))

    if not data.token:
        raise HTTPException(status_code=400, detail="Token and email are required.")

    # 2) one-time code mailed by the provider
    if data.email:
        return await _verify_otp(db, provider, data.email, data.token, data.type or "signup")

    # 3) link from our own verification email
    try:
        payload = decode_verification_token(data.token)
        user_id = UUID(payload["sub"])
    except (JWTError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid or expired token.")
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=400, detail="Invalid or expired token.")
    already = user.email_verified
    user.email_verified = True
    await db.commit()
    return verified_response(user.email, already)

async def _verify_otp(db: AsyncSession, provider: AuthProvider, email: str, token: str, otp_type: str) -> dict:
    try:
        provider_user = await provider.verify_otp(email, token, otp_type)
    except ProviderError as exc:
        log.warning("otp verification failed for %s: %s", email, exc.message)
        # A reused or expired code is fine when the address is verified already.
        existing = await find_by_email(db, email)
        already = bool(existing and existing.email_verified)
        supabase_id = existing.supabase_id if existing else None
        if existing is not None and existing.supabase_id:
            try:
                admin_user = await provider.get_user_by_id(existing.supabase_id)
            except ProviderError as lookup_exc:
                log.error("provider user lookup failed: %s", lookup_exc.message)
                admin_user = None
            if admin_user is not None:
                already = already or is_confirmed(admin_user)
                supabase_id = admin_user.id or supabase_id
        if not already:
            raise HTTPException(status_code=400, detail=exc.message)
        await mark_verified(db, email, supabase_id)
        return verified_response(email, True)

    user_email = (provider_user.email if provider_user else None) or email
    await mark_verified(db, user_email, provider_user.id if provider_user else None)
    return verified_response(user_email, False)
