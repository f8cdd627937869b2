from __future__ import annotations
import os
import time
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import bearer, resolve_provider_user
from portal.api.schemas import ProfileOut, ProfileUpdateIn
from portal.core.errors import ProviderError, StorageError
from portal.core.logging import log
from portal.core.settings import settings
from portal.db.session import get_db
from portal.services.provider import AuthProvider, get_auth_provider
from portal.services.storage import ObjectStorage, get_storage
from portal.services.users import metadata_of, mirror_for_profile

router = APIRouter(prefix="/api/profile", tags=["profile"])

MAX_AVATAR_BYTES = 5 * 1024 * 1024

def access_token_of(request: Request, cred: HTTPAuthorizationCredentials | None, body_token: str | None = None) -> str | None:
    if cred is not None:
        return cred.credentials.strip()
    query_token = request.query_params.get("accessToken")
    if query_token:
        return query_token
    return body_token.strip() if body_token else None

async def current_profile(token: str | None, db: AsyncSession, provider: AuthProvider):
    provider_user = await resolve_provider_user(token, provider)
    if not provider_user.email:
        raise HTTPException(status_code=401, detail="User has no email address.")
    return provider_user, await mirror_for_profile(db, provider_user)

@router.get("/me")
async def get_me(
    request: Request,
    cred: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: AsyncSession = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider),
):
    _, user = await current_profile(access_token_of(request, cred), db, provider)
    return {"success": True, "profile": ProfileOut.from_user(user)}

@router.put("/me")
async def update_me(
    request: Request,
    data: ProfileUpdateIn,
    cred: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: AsyncSession = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider),
):
    provider_user, user = await current_profile(access_token_of(request, cred, data.access_token), db, provider)

    updates: dict = {}
    if data.full_name is not None:
        name = data.full_name.strip()
        if name and name != user.full_name:
            updates["full_name"] = name
    if data.bio is not None:
        updates["bio"] = data.bio.strip() or None
    if data.city is not None:
        updates["city"] = data.city.strip() or None

    if not updates:
        return {"success": True, "profile": ProfileOut.from_user(user)}

    try:
        for key, value in updates.items():
            setattr(user, key, value)
        await db.commit()
        metadata = metadata_of(provider_user)
        metadata.update({"fullName": user.full_name, "bio": user.bio, "city": user.city})
        await provider.update_user_metadata(provider_user.id, {k: v for k, v in metadata.items() if v is not None})
    except (SQLAlchemyError, ProviderError):
        log.exception("failed to update profile of %s", user.email)
        raise HTTPException(status_code=500, detail="Could not update the profile.")

    return {"success": True, "profile": ProfileOut.from_user(user)}

@router.post("/me/avatar")
async def update_avatar(
    request: Request,
    avatar: Optional[UploadFile] = File(default=None),
    access_token: Optional[str] = Form(default=None, alias="accessToken"),
    cred: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: AsyncSession = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider),
    storage: ObjectStorage = Depends(get_storage),
):
    provider_user, user = await current_profile(access_token_of(request, cred, access_token), db, provider)

    if avatar is None:
        raise HTTPException(status_code=400, detail="No file uploaded.")
    content_type = avatar.content_type or ""
    if not content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Only images are allowed.")
    data = await avatar.read()
    if len(data) > MAX_AVATAR_BYTES:
        raise HTTPException(status_code=400, detail="Image exceeds the 5 MB limit.")

    ext = (os.path.splitext(avatar.filename or "")[1] or ".png").lower()
    object_path = f"{provider_user.id}/avatar-{int(time.time() * 1000)}{ext}"

    try:
        avatar_url = await storage.upload(settings.supabase_profile_bucket, object_path, data, content_type, upsert=True)
    except StorageError:
        log.exception("avatar upload failed for %s", user.email)
        raise HTTPException(status_code=500, detail="Image upload failed.")

    try:
        user.avatar_url = avatar_url
        await db.commit()
        metadata = metadata_of(provider_user)
        metadata["avatarUrl"] = avatar_url
        await provider.update_user_metadata(provider_user.id, metadata)
    except (SQLAlchemyError, ProviderError):
        log.exception("failed to point %s at the new avatar", user.email)
        raise HTTPException(status_code=500, detail="Could not update the profile picture.")

    return {"success": True, "profile": ProfileOut.from_user(user)}
