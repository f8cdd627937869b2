from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from portal.core.settings import settings

# Keyed on the remote address and kept in memory; nothing is persisted.
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
