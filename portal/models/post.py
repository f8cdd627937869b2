from __future__ import annotations
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any
from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from portal.db.base import Base
from portal.models.common import PostStatus, utcnow

if TYPE_CHECKING:
    from portal.models.user import User

class Post(Base):
    __tablename__ = "posts"
    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=uuid.uuid4)
    author_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Copied at creation so the post keeps its byline if the user changes.
    author_name: Mapped[str] = mapped_column(String(200), nullable=False)
    author_avatar_url: Mapped[str | None] = mapped_column(Text(), nullable=True)

    content: Mapped[str] = mapped_column(Text(), nullable=False)
    category: Mapped[str] = mapped_column(String(120), nullable=False)
    location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    event_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    poll_question: Mapped[str | None] = mapped_column(Text(), nullable=True)
    poll_options: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON(), nullable=True)  # [{id, text, votes}]

    alert_users: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=False)
    likes: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    shares: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)

    status: Mapped[PostStatus] = mapped_column(Enum(PostStatus, name="post_status"), nullable=False, default=PostStatus.PENDING, index=True)
    rejected_reason: Mapped[str | None] = mapped_column(Text(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    author: Mapped["User | None"] = relationship(back_populates="posts")
    media: Mapped[list["PostMedia"]] = relationship(back_populates="post", cascade="all, delete-orphan", order_by="PostMedia.created_at")
    reports: Mapped[list["PostReport"]] = relationship(back_populates="post", cascade="all, delete-orphan", order_by="PostReport.created_at.desc()")

class PostMedia(Base):
    __tablename__ = "post_media"
    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=uuid.uuid4)
    post_id: Mapped[uuid.UUID] = mapped_column(Uuid(), ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    url: Mapped[str] = mapped_column(Text(), nullable=False)
    storage_path: Mapped[str | None] = mapped_column(Text(), nullable=True)
    mime_type: Mapped[str] = mapped_column(String(120), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    post: Mapped[Post] = relationship(back_populates="media")

class PostReport(Base):
    __tablename__ = "post_reports"
    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=uuid.uuid4)
    post_id: Mapped[uuid.UUID] = mapped_column(Uuid(), ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    reason: Mapped[str | None] = mapped_column(Text(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    post: Mapped[Post] = relationship(back_populates="reports")
