from __future__ import annotations
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from portal.core.settings import settings

VERIFY_PURPOSE = "email-verification"

def create_verification_token(user_id: str, email: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "iss": settings.jwt_issuer,
        "sub": user_id,
        "email": email,
        "purpose": VERIFY_PURPOSE,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=settings.verification_token_hours)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")

def decode_verification_token(token: str) -> dict:
    payload = jwt.decode(token, settings.jwt_secret, algorithms=["HS256"], issuer=settings.jwt_issuer)
    if payload.get("purpose") != VERIFY_PURPOSE or not payload.get("sub"):
        raise JWTError("not an email verification token")
    return payload

def decode_provider_token(token: str) -> dict:
    # Access tokens minted by the auth provider (password recovery links).
    payload = jwt.decode(token, settings.supabase_jwt_secret, algorithms=["HS256"], audience=settings.supabase_jwt_audience)
    if not payload.get("sub"):
        raise JWTError("token has no subject")
    return payload
