from __future__ import annotations
import os
from typing import Optional
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.parsing import sanitize_string
from portal.api.schemas import NewsOut
from portal.core.errors import StorageError
from portal.core.logging import log
from portal.core.settings import settings
from portal.db.session import get_db
from portal.models import News
from portal.services.storage import ObjectStorage, get_storage, storage_path_from_public_url

router = APIRouter(prefix="/api/news", tags=["news"])

MAX_IMAGE_BYTES = 5 * 1024 * 1024

@router.get("")
async def list_news(db: AsyncSession = Depends(get_db)):
    try:
        items = (await db.execute(select(News).order_by(News.created_at.desc()))).scalars().all()
    except SQLAlchemyError:
        log.exception("failed to list news")
        raise HTTPException(status_code=500, detail="Could not load the news.")
    return {"success": True, "news": [NewsOut.from_news(n) for n in items]}

@router.post("", status_code=201)
async def create_news(
    title: Optional[str] = Form(default=None),
    source: Optional[str] = Form(default=None),
    url: Optional[str] = Form(default=None),
    image: Optional[UploadFile] = File(default=None),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    title, source, url = sanitize_string(title), sanitize_string(source), sanitize_string(url)
    if not title or not source or not url:
        raise HTTPException(status_code=400, detail="Title, source and link are required.")
    if image is None:
        raise HTTPException(status_code=400, detail="An image is required.")
    content_type = image.content_type or ""
    if not content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Only images are allowed.")
    data = await image.read()
    if len(data) > MAX_IMAGE_BYTES:
        raise HTTPException(status_code=400, detail="Image exceeds the 5 MB limit.")

    ext = os.path.splitext(image.filename or "")[1].lower() or ".png"
    object_path = f"news/{uuid4()}{ext}"
    bucket = settings.supabase_news_bucket
    try:
        image_url = await storage.upload(bucket, object_path, data, content_type)
    except StorageError:
        log.exception("news image upload failed")
        raise HTTPException(status_code=500, detail="Image upload failed.")

    news = News(image_url=image_url, title=title, source=source, url=url)
    try:
        db.add(news)
        await db.commit()
    except SQLAlchemyError:
        log.exception("failed to create news")
        await db.rollback()
        try:
            await storage.remove(bucket, [object_path])
        except StorageError:
            log.warning("could not remove orphaned news image %s", object_path, exc_info=True)
        raise HTTPException(status_code=500, detail="Could not create the news item.")
    return {"success": True, "news": NewsOut.from_news(news)}

@router.delete("/{news_id}")
async def delete_news(
    news_id: UUID,
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    news = (await db.execute(select(News).where(News.id == news_id))).scalar_one_or_none()
    if news is None:
        raise HTTPException(status_code=404, detail="News item not found.")

    bucket = settings.supabase_news_bucket
    path = storage_path_from_public_url(news.image_url, bucket)
    if path:
        try:
            await storage.remove(bucket, [path])
        except StorageError:
            log.warning("could not remove news image %s", path, exc_info=True)

    await db.delete(news)
    await db.commit()
    return {"success": True}
