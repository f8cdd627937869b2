"""Object storage on the provider's buckets.

Wraps the storage API of the service-role client with upload, removal and
public-URL helpers. Errors from the client surface as ``StorageError``.
"""

from __future__ import annotations

from typing import Callable, Sequence
from urllib.parse import unquote, urlparse

from starlette.concurrency import run_in_threadpool
from supabase import Client

from portal.core.errors import StorageError
from portal.services.provider import get_admin_client

PUBLIC_PREFIX = "/storage/v1/object/public/"

def storage_path_from_public_url(public_url: str | None, bucket: str) -> str | None:
    """Recover the object path inside ``bucket`` from its public URL.

    Returns None when the URL is empty, unparseable or points elsewhere.
    """
    if not public_url:
        return None
    try:
        path = urlparse(public_url).path
    except ValueError:
        return None
    marker = f"{PUBLIC_PREFIX}{bucket}/"
    idx = path.find(marker)
    if idx == -1:
        return None
    return unquote(path[idx + len(marker):]) or None

class ObjectStorage:
    """Upload/remove objects and build their public URLs."""

    def __init__(self, client_factory: Callable[[], Client] = get_admin_client) -> None:
        self._client_factory = client_factory

    def _bucket(self, bucket: str):
        return self._client_factory().storage.from_(bucket)

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str, upsert: bool = False) -> str:
        """Store ``data`` at ``path`` and return the object's public URL."""
        store = self._bucket(bucket)
        try:
            await run_in_threadpool(
                store.upload,
                path,
                data,
                {"content-type": content_type, "x-upsert": "true" if upsert else "false"},
            )
        except Exception as exc:
            raise StorageError(f"upload of {bucket}/{path} failed: {exc}") from exc
        return self.public_url(bucket, path)

    async def remove(self, bucket: str, paths: Sequence[str]) -> None:
        if not paths:
            return
        store = self._bucket(bucket)
        try:
            await run_in_threadpool(store.remove, list(paths))
        except Exception as exc:
            raise StorageError(f"removal from {bucket} failed: {exc}") from exc

    def public_url(self, bucket: str, path: str) -> str:
        # Some client versions leave an empty query string on the URL.
        return self._bucket(bucket).get_public_url(path).rstrip("?")

_storage: ObjectStorage | None = None

def get_storage() -> ObjectStorage:
    global _storage
    if _storage is None:
        _storage = ObjectStorage()
    return _storage
