"""Local mirror of provider identities.

The auth provider owns accounts; the ``users`` table shadows them so posts
can reference an author and profiles can carry bio and city. These helpers
keep that mirror in step with what the provider returns.
"""

from __future__ import annotations

import re
import time
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.models import User

NAME_KEYS = ("fullName", "name", "full_name", "given_name")
AVATAR_KEYS = ("avatarUrl", "avatar_url", "picture")
USERNAME_KEYS = ("username", "preferred_username")

def sanitize_username(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower())
    slug = slug.strip("-")
    return re.sub(r"-{2,}", "-", slug)

async def ensure_unique_username(db: AsyncSession, desired: str, exclude_user_id: Optional[UUID] = None) -> str:
    base = sanitize_username(desired) or f"usuario-{int(time.time() * 1000)}"
    candidate = base
    counter = 1
    while True:
        q = select(User.id).where(User.username == candidate)
        if exclude_user_id is not None:
            q = q.where(User.id != exclude_user_id)
        if (await db.execute(q)).scalar_one_or_none() is None:
            return candidate
        candidate = f"{base}-{counter}"
        counter += 1

def metadata_of(provider_user: Any) -> dict:
    return dict(getattr(provider_user, "user_metadata", None) or {})

def metadata_string(metadata: dict, keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = metadata.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None

def is_confirmed(provider_user: Any) -> bool:
    return bool(getattr(provider_user, "email_confirmed_at", None))

async def find_by_email(db: AsyncSession, email: str) -> Optional[User]:
    return (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()

async def find_mirror(db: AsyncSession, provider_user: Any) -> Optional[User]:
    """Mirror row for a provider user: by provider id first, then by email."""
    user = (await db.execute(select(User).where(User.supabase_id == provider_user.id))).scalar_one_or_none()
    if user is None and provider_user.email:
        user = await find_by_email(db, provider_user.email.lower())
    return user

async def upsert_mirror(db: AsyncSession, email: str, **fields) -> User:
    """Create or update the mirror row keyed by ``email`` and commit."""
    user = await find_by_email(db, email)
    if user is None:
        user = User(email=email, **fields)
        db.add(user)
    else:
        for key, value in fields.items():
            setattr(user, key, value)
    await db.commit()
    return user

async def mirror_from_login(db: AsyncSession, provider_user: Any) -> User:
    metadata = metadata_of(provider_user)
    email = provider_user.email
    full_name = metadata_string(metadata, ("fullName", "name")) or email.split("@")[0]
    existing = await find_by_email(db, email)
    if existing is not None:
        username = existing.username
    else:
        username = await ensure_unique_username(db, metadata_string(metadata, ("username",)) or email)
    fields = dict(
        full_name=full_name,
        username=username,
        email_verified=is_confirmed(provider_user),
        supabase_id=provider_user.id,
    )
    avatar_url = metadata_string(metadata, AVATAR_KEYS)
    if avatar_url:
        fields["avatar_url"] = avatar_url
    return await upsert_mirror(db, email, **fields)

async def mirror_for_profile(db: AsyncSession, provider_user: Any) -> User:
    """Return the caller's mirror row, creating it on first sight."""
    existing = await find_by_email(db, provider_user.email)
    if existing is not None:
        return existing
    metadata = metadata_of(provider_user)
    desired = metadata_string(metadata, ("username",)) or provider_user.email
    user = User(
        full_name=metadata_string(metadata, ("fullName", "name")) or provider_user.email.split("@")[0],
        username=await ensure_unique_username(db, desired),
        email=provider_user.email,
        avatar_url=metadata_string(metadata, ("avatarUrl", "avatar_url")),
        email_verified=is_confirmed(provider_user),
        bio=metadata_string(metadata, ("bio",)),
        city=metadata_string(metadata, ("city",)),
        supabase_id=provider_user.id,
    )
    db.add(user)
    await db.commit()
    return user

async def ensure_author(db: AsyncSession, provider_user: Any) -> User:
    """Resolve the mirror row that will author a post.

    Looks the user up by provider id or email, refreshes name, avatar and
    email when the provider's copy changed, and creates the row otherwise.
    Does not commit.
    """
    metadata = metadata_of(provider_user)
    email = (provider_user.email or "").lower() or None

    existing = await find_mirror(db, provider_user)

    full_name = metadata_string(metadata, NAME_KEYS) or (email.split("@")[0] if email else None) or "Morador"
    avatar_url = metadata_string(metadata, AVATAR_KEYS)

    if existing is not None:
        changed = (
            existing.supabase_id != provider_user.id
            or (avatar_url and existing.avatar_url != avatar_url)
            or existing.full_name != full_name
            or (email and existing.email != email)
        )
        if changed:
            existing.full_name = full_name
            if avatar_url:
                existing.avatar_url = avatar_url
            existing.email = email or existing.email
            existing.email_verified = is_confirmed(provider_user)
            existing.supabase_id = provider_user.id
        return existing

    desired = metadata_string(metadata, USERNAME_KEYS) or (email.split("@")[0] if email else f"usuario-{str(provider_user.id)[:8]}")
    user = User(
        full_name=full_name,
        username=await ensure_unique_username(db, desired),
        email=email or f"{provider_user.id}@portal.pm",
        avatar_url=avatar_url,
        email_verified=is_confirmed(provider_user),
        supabase_id=provider_user.id,
    )
    db.add(user)
    await db.flush()
    return user
