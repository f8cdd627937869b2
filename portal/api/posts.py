from __future__ import annotations
import os
from typing import Any, Optional
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from starlette.datastructures import UploadFile

from portal.api.deps import get_auth_user, require_admin
from portal.api.parsing import (
    extract_poll_options,
    normalize_post_status,
    parse_bool,
    parse_datetime,
    parse_limit,
    sanitize_string,
)
from portal.api.schemas import AlertIn, LikeIn, PollVoteIn, PostOut, PostReportOut, RejectIn, ReportIn
from portal.core.errors import StorageError
from portal.core.logging import log
from portal.core.settings import settings
from portal.db.session import get_db
from portal.models import Post, PostMedia, PostReport, PostStatus
from portal.models.common import utcnow
from portal.services.storage import ObjectStorage, get_storage
from portal.services.users import ensure_author, find_mirror, metadata_of, metadata_string

router = APIRouter(prefix="/api/posts", tags=["posts"])

MAX_MEDIA_FILES = 6
MAX_MEDIA_BYTES = 15 * 1024 * 1024
MEDIA_TYPE_ERROR = "Only image or video files are allowed."

class MediaRejected(ValueError):
    """An uploaded file is not acceptable as post media."""

def is_allowed_mime(mime: str | None) -> bool:
    return bool(mime) and (mime.startswith("image/") or mime.startswith("video/"))

def _post_query():
    return select(Post).options(
        selectinload(Post.media),
        selectinload(Post.reports),
        selectinload(Post.author),
    )

async def _get_post(db: AsyncSession, post_id: UUID) -> Post | None:
    q = _post_query().where(Post.id == post_id).execution_options(populate_existing=True)
    return (await db.execute(q)).scalar_one_or_none()

async def _require_post(db: AsyncSession, post_id: UUID) -> Post:
    post = await _get_post(db, post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found.")
    return post

async def discard_uploads(storage: ObjectStorage, paths: list[str]) -> None:
    """Best-effort removal of objects whose post will never exist."""
    if not paths:
        return
    try:
        await storage.remove(settings.supabase_posts_bucket, paths)
    except StorageError:
        log.warning("could not remove %d orphaned media objects: %s", len(paths), paths, exc_info=True)

async def upload_media_files(storage: ObjectStorage, files: list[UploadFile], owner_id: str) -> list[dict]:
    """Upload ``files`` one by one; on the first failure remove what was stored and re-raise."""
    uploaded: list[dict] = []
    try:
        for f in files:
            mime = f.content_type or ""
            if not is_allowed_mime(mime):
                raise MediaRejected(MEDIA_TYPE_ERROR)
            data = await f.read()
            if len(data) > MAX_MEDIA_BYTES:
                raise MediaRejected("Each media file must be at most 15 MB.")
            ext = os.path.splitext(f.filename or "")[1].lower()
            if not ext:
                ext = ".jpg" if mime.startswith("image/") else ".mp4"
            path = f"posts/{owner_id}/{uuid4()}{ext}"
            url = await storage.upload(settings.supabase_posts_bucket, path, data, mime)
            uploaded.append({"url": url, "storage_path": path, "mime_type": mime})
        return uploaded
    except Exception:
        await discard_uploads(storage, [u["storage_path"] for u in uploaded])
        raise

async def _read_fields(request: Request) -> Any:
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Malformed JSON body.")
        return body if isinstance(body, dict) else {}
    return await request.form()

@router.get("")
async def list_posts(
    status: Optional[str] = None,
    alert_only: Optional[str] = Query(default=None, alias="alertOnly"),
    has_reports: Optional[str] = Query(default=None, alias="hasReports"),
    include_reports: Optional[str] = Query(default=None, alias="includeReports"),
    limit: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    wanted = normalize_post_status(status)
    include = parse_bool(include_reports)
    q = _post_query().order_by(Post.created_at.desc())
    if wanted is None:
        q = q.where(Post.status == PostStatus.APPROVED)
    elif wanted != "ALL":
        q = q.where(Post.status == wanted)
    if parse_bool(alert_only):
        q = q.where(Post.alert_users.is_(True))
    if parse_bool(has_reports):
        q = q.where(Post.reports.any())
    take = parse_limit(limit)
    if take:
        q = q.limit(take)
    try:
        posts = (await db.execute(q)).scalars().all()
    except SQLAlchemyError:
        log.exception("failed to list posts")
        raise HTTPException(status_code=500, detail="Could not load the posts.")
    return {"success": True, "posts": [PostOut.from_post(p, include_reports=include) for p in posts]}

@router.post("", status_code=201)
async def create_post(
    request: Request,
    provider_user=Depends(get_auth_user),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    fields = await _read_fields(request)
    metadata = metadata_of(provider_user)

    content = sanitize_string(fields.get("content"))
    if not content:
        raise HTTPException(status_code=400, detail="Content is required.")

    raw_category = fields.get("category")
    category = sanitize_string(raw_category if raw_category else "outro")
    if category == "outro":
        category = sanitize_string(fields.get("customCategory")) or "outro"
    if not category:
        raise HTTPException(status_code=400, detail="Category is required.")

    alert_raw = fields.get("alertUsers")
    if alert_raw is None:
        alert_raw = fields.get("isImportant")

    poll_question = sanitize_string(fields.get("pollQuestion"))
    poll_options = extract_poll_options(fields)
    if poll_question and len(poll_options) < 2:
        raise HTTPException(status_code=400, detail="Provide at least two poll options.")

    getlist = getattr(fields, "getlist", None)
    files = [f for f in getlist("media") if isinstance(f, UploadFile)] if getlist else []
    if len(files) > MAX_MEDIA_FILES:
        raise HTTPException(status_code=400, detail=f"At most {MAX_MEDIA_FILES} media files per post.")

    try:
        media = await upload_media_files(storage, files, str(provider_user.id))
    except MediaRejected as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except StorageError:
        log.exception("media upload failed")
        raise HTTPException(status_code=500, detail="Could not upload the post media.")

    try:
        author = await ensure_author(db, provider_user)
        author_name = (
            sanitize_string(fields.get("authorName"))
            or metadata_string(metadata, ("fullName", "full_name", "name"))
            or author.full_name
            or provider_user.email
            or "Morador"
        )
        author_avatar = (
            sanitize_string(fields.get("authorAvatarUrl"))
            or metadata_string(metadata, ("avatarUrl", "avatar_url", "picture"))
            or author.avatar_url
        )
        has_poll = bool(poll_question) and len(poll_options) >= 2
        post = Post(
            author_id=author.id,
            author_name=author_name,
            author_avatar_url=author_avatar or None,
            content=content,
            category=category,
            location=sanitize_string(fields.get("location")) or None,
            event_date=parse_datetime(fields.get("eventDate")),
            poll_question=poll_question if has_poll else None,
            poll_options=poll_options if has_poll else None,
            alert_users=parse_bool(alert_raw),
            status=PostStatus.PENDING,
            media=[PostMedia(**m) for m in media],
        )
        db.add(post)
        await db.commit()
    except Exception as exc:
        log.exception("failed to create post")
        await db.rollback()
        await discard_uploads(storage, [m["storage_path"] for m in media])
        raise HTTPException(status_code=500, detail="Could not submit the post for approval.") from exc

    created = await _get_post(db, post.id)
    return {"success": True, "message": "Post submitted for approval.", "post": PostOut.from_post(created, include_reports=True)}

@router.get("/reports/all", dependencies=[Depends(require_admin)])
async def list_reported_posts(db: AsyncSession = Depends(get_db)):
    q = _post_query().where(Post.reports.any()).order_by(Post.created_at.desc())
    try:
        posts = (await db.execute(q)).scalars().all()
    except SQLAlchemyError:
        log.exception("failed to list reported posts")
        raise HTTPException(status_code=500, detail="Could not load the reports.")
    return {"success": True, "posts": [PostOut.from_post(p, include_reports=True) for p in posts]}

@router.patch("/{post_id}/approve", dependencies=[Depends(require_admin)])
async def approve_post(post_id: UUID, db: AsyncSession = Depends(get_db)):
    post = await _require_post(db, post_id)
    if post.status == PostStatus.APPROVED:
        return {"success": True, "post": PostOut.from_post(post, include_reports=True)}
    post.status = PostStatus.APPROVED
    post.approved_at = utcnow()
    await db.commit()
    post = await _get_post(db, post_id)
    log.info("post %s approved", post_id)
    return {"success": True, "post": PostOut.from_post(post, include_reports=True)}

@router.patch("/{post_id}/reject", dependencies=[Depends(require_admin)])
async def reject_post(post_id: UUID, data: Optional[RejectIn] = None, db: AsyncSession = Depends(get_db)):
    post = await _require_post(db, post_id)
    reason = sanitize_string(data.reason) if data else ""
    post.status = PostStatus.REJECTED
    post.rejected_reason = reason or None
    post.alert_users = False
    await db.commit()
    post = await _get_post(db, post_id)
    log.info("post %s rejected", post_id)
    return {"success": True, "post": PostOut.from_post(post, include_reports=True)}

@router.patch("/{post_id}/alert", dependencies=[Depends(require_admin)])
async def set_post_alert(post_id: UUID, data: Optional[AlertIn] = None, db: AsyncSession = Depends(get_db)):
    post = await _require_post(db, post_id)
    post.alert_users = parse_bool(data.alert_users) if data else False
    await db.commit()
    post = await _get_post(db, post_id)
    return {"success": True, "post": PostOut.from_post(post, include_reports=True)}

@router.post("/{post_id}/like")
async def like_post(post_id: UUID, data: Optional[LikeIn] = None, db: AsyncSession = Depends(get_db)):
    action = sanitize_string(data.action).lower() if data else ""
    increment = -1 if action == "decrement" else 1
    res = await db.execute(
        update(Post)
        .where(Post.id == post_id)
        .values(likes=Post.likes + increment)
        .returning(Post.likes)
        .execution_options(synchronize_session=False)
    )
    likes = res.scalar_one_or_none()
    if likes is None:
        await db.rollback()
        raise HTTPException(status_code=404, detail="Post not found.")
    if likes < 0:
        await db.execute(update(Post).where(Post.id == post_id).values(likes=0).execution_options(synchronize_session=False))
        likes = 0
    await db.commit()
    return {"success": True, "likes": likes}

@router.post("/{post_id}/share")
async def share_post(post_id: UUID, db: AsyncSession = Depends(get_db)):
    res = await db.execute(
        update(Post)
        .where(Post.id == post_id)
        .values(shares=Post.shares + 1)
        .returning(Post.shares)
        .execution_options(synchronize_session=False)
    )
    shares = res.scalar_one_or_none()
    if shares is None:
        await db.rollback()
        raise HTTPException(status_code=404, detail="Post not found.")
    await db.commit()
    return {"success": True, "shares": shares}

@router.post("/{post_id}/report", status_code=201)
async def report_post(post_id: UUID, data: Optional[ReportIn] = None, db: AsyncSession = Depends(get_db)):
    exists = (await db.execute(select(Post.id).where(Post.id == post_id))).scalar_one_or_none()
    if exists is None:
        raise HTTPException(status_code=404, detail="Post not found.")
    reason = sanitize_string(data.reason) if data else ""
    report = PostReport(post_id=post_id, reason=reason or None)
    db.add(report)
    await db.commit()
    return {"success": True, "report": PostReportOut.model_validate(report)}

@router.post("/{post_id}/poll/vote")
async def vote_poll(post_id: UUID, data: Optional[PollVoteIn] = None, db: AsyncSession = Depends(get_db)):
    option_id = data.option_id if data else None
    if not option_id:
        raise HTTPException(status_code=400, detail="Choose a poll option.")
    post = (await db.execute(select(Post).where(Post.id == post_id))).scalar_one_or_none()
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found.")
    if post.status != PostStatus.APPROVED:
        raise HTTPException(status_code=400, detail="Only published posts accept poll votes.")
    if not isinstance(post.poll_options, list) or not post.poll_options:
        raise HTTPException(status_code=400, detail="This post has no active poll.")

    found = False
    options = []
    for option in post.poll_options:
        if isinstance(option, dict) and option.get("id") == option_id:
            votes = option.get("votes")
            option = {**option, "votes": (votes if isinstance(votes, int) else 0) + 1}
            found = True
        options.append(option)
    if not found:
        raise HTTPException(status_code=404, detail="Poll option not found.")

    # Assign a new list so the JSON column is flagged dirty.
    post.poll_options = options
    await db.commit()
    return {"success": True, "poll": {"question": post.poll_question, "options": options}}

@router.delete("/{post_id}")
async def delete_post(
    post_id: UUID,
    provider_user=Depends(get_auth_user),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    post = await _require_post(db, post_id)

    caller = await find_mirror(db, provider_user)
    if post.author_id is None or caller is None or caller.id != post.author_id:
        raise HTTPException(status_code=403, detail="You are not allowed to delete this post.")
    if post.status != PostStatus.APPROVED:
        raise HTTPException(status_code=400, detail="Only approved posts can be deleted.")

    paths = [m.storage_path for m in post.media if m.storage_path]
    if paths:
        try:
            await storage.remove(settings.supabase_posts_bucket, paths)
        except StorageError:
            log.warning("could not remove media of post %s before deleting it", post_id, exc_info=True)

    await db.delete(post)
    await db.commit()
    return {"success": True, "message": "Post deleted."}
