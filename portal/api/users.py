from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import bearer
from portal.api.schemas import LoginIn, RegisterIn
from portal.core.errors import ProviderError
from portal.core.logging import log
from portal.core.ratelimit import limiter
from portal.core.settings import settings
from portal.db.session import get_db
from portal.models import User
from portal.services.provider import AuthProvider, get_auth_provider
from portal.services.users import is_confirmed, metadata_of, metadata_string, mirror_from_login, upsert_mirror

router = APIRouter(prefix="/api/users", tags=["users"])

def normalize_provider_error(message: str | None) -> str:
    if not message:
        return "Could not process the request."
    normalized = message.lower()
    if "email" in normalized:
        if "already registered" in normalized:
            return "Email already registered."
        if "not confirmed" in normalized:
            return "Your email has not been verified yet."
    if "invalid login credentials" in normalized:
        return "Invalid credentials."
    return message

@router.post("/register", status_code=201)
@limiter.limit(settings.auth_rate_limit)
async def register(
    request: Request,
    data: RegisterIn,
    db: AsyncSession = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider),
):
    existing = await db.execute(select(User.id).where(or_(User.email == data.email, User.username == data.username)).limit(1))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Email or username already registered.")

    try:
        provider_user = await provider.sign_up(
            data.email,
            data.password,
            metadata={"fullName": data.full_name, "username": data.username},
            redirect_to=f"{settings.frontend_url.rstrip('/')}/profile/verification",
        )
    except ProviderError as exc:
        log.warning("sign up rejected by provider: %s", exc.message)
        raise HTTPException(status_code=400, detail=normalize_provider_error(exc.message))

    if provider_user is None or not provider_user.email:
        raise HTTPException(status_code=500, detail="Could not complete registration. Try again.")

    try:
        await upsert_mirror(
            db,
            provider_user.email,
            full_name=data.full_name,
            username=data.username,
            email_verified=is_confirmed(provider_user),
            avatar_url=metadata_string(metadata_of(provider_user), ("avatarUrl",)),
            supabase_id=provider_user.id,
        )
    except SQLAlchemyError:
        log.exception("failed to mirror registered user %s", provider_user.email)
        raise HTTPException(status_code=500, detail="Could not complete registration. Try again.")

    return {
        "success": True,
        "message": "Registration complete! Check your email to activate the account.",
        "emailSent": not is_confirmed(provider_user),
    }

@router.post("/login")
@limiter.limit(settings.auth_rate_limit)
async def login(
    request: Request,
    data: LoginIn,
    db: AsyncSession = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider),
):
    if not data.email or not data.password:
        raise HTTPException(status_code=400, detail="Provide email and password.")

    try:
        provider_user, session = await provider.sign_in(data.email, data.password)
    except ProviderError as exc:
        if "email not confirmed" in exc.message.lower():
            raise HTTPException(status_code=403, detail={"message": normalize_provider_error(exc.message), "code": "EMAIL_NOT_VERIFIED"})
        raise HTTPException(status_code=401, detail=normalize_provider_error(exc.message))

    if session is None or provider_user is None or not provider_user.email:
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    try:
        user = await mirror_from_login(db, provider_user)
    except SQLAlchemyError:
        log.exception("failed to mirror user %s on login", provider_user.email)
        raise HTTPException(status_code=500, detail="Could not sign in. Try again.")

    return {
        "success": True,
        "user": {
            "name": user.full_name,
            "email": user.email,
            "username": user.username,
            "avatarUrl": user.avatar_url,
            "token": session.access_token,
        },
        "token": session.access_token,
        "refreshToken": session.refresh_token,
    }

@router.post("/logout")
async def logout(
    cred: HTTPAuthorizationCredentials | None = Depends(bearer),
    provider: AuthProvider = Depends(get_auth_provider),
):
    if cred is not None:
        try:
            await provider.sign_out(cred.credentials)
        except ProviderError as exc:
            log.info("provider sign out ignored: %s", exc.message)
    return {"success": True}
