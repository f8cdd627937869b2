from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Optional
from uuid import UUID
from datetime import datetime

from portal.models import Event, News, Post, User

class CamelModel(BaseModel):
    # The web client speaks camelCase; Python code uses snake_case names.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

# --- requests ---

class RegisterIn(CamelModel):
    full_name: str = Field(min_length=1, max_length=200)
    username: str = Field(min_length=1, max_length=120)
    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=1, max_length=128)

class LoginIn(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None

class EmailIn(CamelModel):
    email: Optional[str] = None

class ResetPasswordIn(CamelModel):
    access_token: Optional[str] = None
    password: Optional[str] = None

class VerifyEmailIn(CamelModel):
    token: Optional[str] = None
    email: Optional[str] = None
    type: Optional[str] = None
    access_token: Optional[str] = None

class ProfileUpdateIn(CamelModel):
    full_name: Optional[str] = None
    bio: Optional[str] = None
    city: Optional[str] = None
    access_token: Optional[str] = None

class RejectIn(CamelModel):
    reason: Any = None

class AlertIn(CamelModel):
    alert_users: Any = None

class LikeIn(CamelModel):
    action: Any = None

class ReportIn(CamelModel):
    reason: Any = None

class PollVoteIn(CamelModel):
    option_id: Optional[str] = None

class EventCreateIn(CamelModel):
    title: Any = None
    description: Any = None
    category: Any = None
    location: Any = None
    start_date: Any = None
    end_date: Any = None
    start_time: Any = None
    end_time: Any = None

# --- responses ---

class MediaOut(CamelModel):
    id: UUID
    url: str
    mime_type: str

class ReportOut(CamelModel):
    id: UUID
    reason: Optional[str] = None
    created_at: datetime

class PostReportOut(ReportOut):
    post_id: UUID

class PollOut(CamelModel):
    question: str
    options: list[dict[str, Any]]

class PostOut(CamelModel):
    id: UUID
    author_id: Optional[UUID] = None
    author_name: str
    author_username: Optional[str] = None
    author_avatar_url: Optional[str] = None
    content: str
    category: str
    location: Optional[str] = None
    event_date: Optional[datetime] = None
    poll: Optional[PollOut] = None
    alert_users: bool
    likes: int
    shares: int
    status: str
    rejected_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    approved_at: Optional[datetime] = None
    media: list[MediaOut] = []
    reports_count: int = 0
    reports: Optional[list[ReportOut]] = None

    @classmethod
    def from_post(cls, post: Post, include_reports: bool = False) -> "PostOut":
        """Build the response for a post loaded with author, media and reports."""
        poll = None
        if post.poll_question:
            options = post.poll_options if isinstance(post.poll_options, list) else []
            poll = PollOut(question=post.poll_question, options=options)
        return cls(
            id=post.id,
            author_id=post.author_id,
            author_name=post.author_name,
            author_username=post.author.username if post.author else None,
            author_avatar_url=post.author_avatar_url,
            content=post.content,
            category=post.category,
            location=post.location,
            event_date=post.event_date,
            poll=poll,
            alert_users=post.alert_users,
            likes=post.likes,
            shares=post.shares,
            status=post.status.value,
            rejected_reason=post.rejected_reason,
            created_at=post.created_at,
            updated_at=post.updated_at,
            approved_at=post.approved_at,
            media=[MediaOut.model_validate(m) for m in post.media],
            reports_count=len(post.reports),
            reports=[ReportOut.model_validate(r) for r in post.reports] if include_reports else None,
        )

class EventOut(CamelModel):
    id: UUID
    title: str
    description: Optional[str] = None
    category: str
    location: Optional[str] = None
    start_date: datetime
    end_date: datetime
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    status: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_event(cls, event: Event) -> "EventOut":
        data = cls.model_validate(event)
        data.status = event.status.value
        return data

class NewsOut(CamelModel):
    id: UUID
    image_url: str
    title: str
    source: str
    url: str
    created_at: datetime

    @classmethod
    def from_news(cls, news: News) -> "NewsOut":
        return cls.model_validate(news)

class ProfileOut(CamelModel):
    full_name: str
    email: str
    username: str
    avatar_url: Optional[str] = None
    bio: str = ""
    city: str = ""

    @classmethod
    def from_user(cls, user: User) -> "ProfileOut":
        return cls(
            full_name=user.full_name,
            email=user.email,
            username=user.username,
            avatar_url=user.avatar_url,
            bio=user.bio or "",
            city=user.city or "",
        )
