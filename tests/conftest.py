from __future__ import annotations
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SUPABASE_URL", "https://project.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "anon-key")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "service-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "supabase-test-secret")
os.environ.setdefault("JWT_SECRET", "local-test-secret")
os.environ.setdefault("ADMIN_SECRET", "admin-test-secret")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from portal.core.errors import MailerError, ProviderError, StorageError
from portal.db.base import Base
from portal.db.session import get_db
from portal.main import app
import portal.models  # noqa: F401
from portal.services.mailer import get_mailer
from portal.services.provider import get_auth_provider
from portal.services.storage import get_storage

ADMIN_HEADERS = {"X-Admin-Secret": "admin-test-secret"}
STORAGE_BASE = "https://project.supabase.co/storage/v1/object/public"


def provider_user(email: str = "ana@example.com", confirmed: bool = True, **metadata):
    return SimpleNamespace(
        id=str(uuid.uuid4()),
        email=email,
        email_confirmed_at=datetime.now(timezone.utc).isoformat() if confirmed else None,
        user_metadata=metadata,
    )


class FakeAuthProvider:
    """In-memory stand-in for the auth provider, keyed by access token."""

    def __init__(self) -> None:
        self.sessions: dict[str, SimpleNamespace] = {}
        self.users_by_id: dict[str, SimpleNamespace] = {}
        self.passwords: dict[str, str] = {}
        self.calls: list[tuple] = []
        self.sign_up_error: str | None = None
        self.sign_in_error: str | None = None
        self.otp_error: str | None = None
        self.reset_error: str | None = None

    def add_session(self, user, token: str | None = None) -> str:
        token = token or f"token-{uuid.uuid4().hex}"
        self.sessions[token] = user
        self.users_by_id[user.id] = user
        return token

    async def sign_up(self, email, password, metadata, redirect_to):
        self.calls.append(("sign_up", email))
        if self.sign_up_error:
            raise ProviderError(self.sign_up_error, 400)
        user = provider_user(email, confirmed=False, **metadata)
        self.users_by_id[user.id] = user
        self.passwords[email] = password
        return user

    async def sign_in(self, email, password):
        self.calls.append(("sign_in", email))
        if self.sign_in_error:
            raise ProviderError(self.sign_in_error, 400)
        user = next((u for u in self.users_by_id.values() if u.email == email), None)
        if user is None:
            raise ProviderError("Invalid login credentials", 400)
        token = self.add_session(user)
        return user, SimpleNamespace(access_token=token, refresh_token=f"refresh-{token}")

    async def sign_out(self, access_token):
        self.calls.append(("sign_out", access_token))
        if self.sessions.pop(access_token, None) is None:
            raise ProviderError("Session not found", 404)

    async def get_user(self, access_token):
        user = self.sessions.get(access_token)
        if user is None:
            raise ProviderError("invalid JWT", 401)
        return user

    async def get_user_by_id(self, user_id):
        return self.users_by_id.get(user_id)

    async def update_user_metadata(self, user_id, metadata):
        self.calls.append(("update_user_metadata", user_id, dict(metadata)))
        user = self.users_by_id.get(user_id)
        if user is not None:
            user.user_metadata = dict(metadata)

    async def update_password(self, user_id, password):
        self.calls.append(("update_password", user_id))
        if user_id not in self.users_by_id:
            raise ProviderError("User not found", 404)

    async def reset_password_for_email(self, email, redirect_to):
        self.calls.append(("reset_password_for_email", email, redirect_to))
        if self.reset_error:
            raise ProviderError(self.reset_error, 500)

    async def verify_otp(self, email, token, otp_type="signup"):
        self.calls.append(("verify_otp", email, token, otp_type))
        if self.otp_error:
            raise ProviderError(self.otp_error, 403)
        user = next((u for u in self.users_by_id.values() if u.email == email), None)
        return user or provider_user(email)


class FakeStorage:
    """Records uploads and removals; can be told to fail the Nth upload."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.uploads: list[tuple[str, str]] = []
        self.removed: list[tuple[str, str]] = []
        self.fail_on_upload: int | None = None
        self.fail_removal = False

    async def upload(self, bucket, path, data, content_type, upsert=False):
        if self.fail_on_upload is not None and len(self.uploads) + 1 == self.fail_on_upload:
            raise StorageError(f"upload of {bucket}/{path} failed: boom")
        self.uploads.append((bucket, path))
        self.objects[(bucket, path)] = data
        return self.public_url(bucket, path)

    async def remove(self, bucket, paths):
        if self.fail_removal:
            raise StorageError(f"removal from {bucket} failed: boom")
        for path in paths:
            self.removed.append((bucket, path))
            self.objects.pop((bucket, path), None)

    def public_url(self, bucket, path):
        return f"{STORAGE_BASE}/{bucket}/{path}"


class FakeMailer:
    def __init__(self) -> None:
        self.sent: list = []
        self.fail = False

    async def send_verification_email(self, user):
        if self.fail:
            raise MailerError("delivery failed")
        self.sent.append(user.email)


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def auth_provider():
    return FakeAuthProvider()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
async def client(session_factory, auth_provider, storage, mailer):
    async def override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_auth_provider] = lambda: auth_provider
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_mailer] = lambda: mailer
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def signed_in(auth_provider):
    """Register a provider session and return ``(user, auth headers)``."""

    def make(email: str = "ana@example.com", **metadata):
        user = provider_user(email, **metadata)
        token = auth_provider.add_session(user)
        return user, {"Authorization": f"Bearer {token}"}

    return make


@pytest.fixture
def seed(session_factory):
    """Insert ORM rows directly and return them detached."""

    async def add(*rows):
        async with session_factory() as session:
            session.add_all(rows)
            await session.commit()
        return rows[0] if len(rows) == 1 else rows

    return add
