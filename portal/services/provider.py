"""Auth provider client.

Thin async facade over the supabase-py client. Calls are blocking, so each
one runs in the threadpool. Provider failures surface as ``ProviderError``
carrying the provider's own message.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Callable

from starlette.concurrency import run_in_threadpool
from supabase import AuthError, Client, create_client

from portal.core.errors import ProviderError
from portal.core.settings import settings

@lru_cache(maxsize=1)
def get_admin_client() -> Client:
    """Service-role client: token checks, admin user updates, storage."""
    return create_client(settings.supabase_url, settings.supabase_service_role_key)

def new_public_client() -> Client:
    # Anon-key clients hold session state after sign-in; one per call.
    return create_client(settings.supabase_url, settings.supabase_anon_key)

async def _call(fn: Callable[..., Any], *args, **kwargs) -> Any:
    try:
        return await run_in_threadpool(fn, *args, **kwargs)
    except AuthError as exc:
        message = getattr(exc, "message", None) or str(exc)
        raise ProviderError(message, getattr(exc, "status", None)) from exc

class AuthProvider:
    def __init__(
        self,
        admin_factory: Callable[[], Client] = get_admin_client,
        public_factory: Callable[[], Client] = new_public_client,
    ) -> None:
        self._admin_factory = admin_factory
        self._public_factory = public_factory

    async def sign_up(self, email: str, password: str, metadata: dict, redirect_to: str):
        client = self._public_factory()
        res = await _call(client.auth.sign_up, {
            "email": email,
            "password": password,
            "options": {"data": metadata, "email_redirect_to": redirect_to},
        })
        return res.user

    async def sign_in(self, email: str, password: str):
        """Return ``(user, session)`` for valid credentials."""
        client = self._public_factory()
        res = await _call(client.auth.sign_in_with_password, {"email": email, "password": password})
        return res.user, res.session

    async def sign_out(self, access_token: str) -> None:
        admin = self._admin_factory()
        await _call(admin.auth.admin.sign_out, access_token)

    async def get_user(self, access_token: str):
        admin = self._admin_factory()
        res = await _call(admin.auth.get_user, access_token)
        if res is None or res.user is None:
            raise ProviderError("Invalid or expired token.")
        return res.user

    async def get_user_by_id(self, user_id: str):
        admin = self._admin_factory()
        res = await _call(admin.auth.admin.get_user_by_id, user_id)
        return res.user if res else None

    async def update_user_metadata(self, user_id: str, metadata: dict) -> None:
        admin = self._admin_factory()
        await _call(admin.auth.admin.update_user_by_id, user_id, {"user_metadata": metadata})

    async def update_password(self, user_id: str, password: str) -> None:
        admin = self._admin_factory()
        await _call(admin.auth.admin.update_user_by_id, user_id, {"password": password})

    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        client = self._public_factory()
        await _call(client.auth.reset_password_for_email, email, {"redirect_to": redirect_to})

    async def verify_otp(self, email: str, token: str, otp_type: str = "signup"):
        client = self._public_factory()
        res = await _call(client.auth.verify_otp, {"email": email, "token": token, "type": otp_type})
        return res.user

_provider: AuthProvider | None = None

def get_auth_provider() -> AuthProvider:
    global _provider
    if _provider is None:
        _provider = AuthProvider()
    return _provider
