from __future__ import annotations
import enum
from datetime import datetime, timezone

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class PostStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

class EventStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
