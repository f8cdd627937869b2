from __future__ import annotations
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import get_auth_user
from portal.api.parsing import normalize_event_status, parse_event_date, parse_limit, sanitize_string
from portal.api.schemas import EventCreateIn, EventOut
from portal.core.logging import log
from portal.db.session import get_db
from portal.models import Event, EventStatus

router = APIRouter(prefix="/api/events", tags=["events"])

async def _require_event(db: AsyncSession, event_id: UUID) -> Event:
    event = (await db.execute(select(Event).where(Event.id == event_id))).scalar_one_or_none()
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found.")
    return event

@router.get("")
async def list_events(status: Optional[str] = None, limit: Optional[str] = None, db: AsyncSession = Depends(get_db)):
    wanted = normalize_event_status(status) or EventStatus.APPROVED
    q = select(Event).where(Event.status == wanted).order_by(Event.start_date.asc())
    take = parse_limit(limit)
    if take:
        q = q.limit(take)
    try:
        events = (await db.execute(q)).scalars().all()
    except SQLAlchemyError:
        log.exception("failed to list events")
        raise HTTPException(status_code=500, detail="Could not load the events.")
    return {"success": True, "events": [EventOut.from_event(e) for e in events]}

@router.post("", status_code=201, dependencies=[Depends(get_auth_user)])
async def create_event(data: EventCreateIn, db: AsyncSession = Depends(get_db)):
    title = sanitize_string(data.title)
    if not title:
        raise HTTPException(status_code=400, detail="Title is required.")

    start_date = parse_event_date(data.start_date)
    if start_date is None:
        raise HTTPException(status_code=400, detail="Invalid start date.")
    end_date = parse_event_date(data.end_date) or start_date
    if end_date < start_date:
        raise HTTPException(status_code=400, detail="End date cannot be before the start date.")
    start_time = sanitize_string(data.start_time)
    end_time = sanitize_string(data.end_time)
    if start_time and end_time and end_time < start_time:
        raise HTTPException(status_code=400, detail="End time cannot be before the start time.")

    event = Event(
        title=title,
        description=sanitize_string(data.description) or None,
        category=sanitize_string(data.category) or "Evento",
        location=sanitize_string(data.location) or None,
        start_date=start_date,
        end_date=end_date,
        start_time=start_time or None,
        end_time=end_time or None,
        status=EventStatus.PENDING,
    )
    try:
        db.add(event)
        await db.commit()
    except SQLAlchemyError:
        log.exception("failed to create event")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Could not submit the event for approval.")
    return {"success": True, "message": "Event submitted for approval.", "event": EventOut.from_event(event)}

@router.patch("/{event_id}/approve")
async def approve_event(event_id: UUID, db: AsyncSession = Depends(get_db)):
    event = await _require_event(db, event_id)
    if event.status != EventStatus.APPROVED:
        event.status = EventStatus.APPROVED
        await db.commit()
        await db.refresh(event)
        log.info("event %s approved", event_id)
    return {"success": True, "event": EventOut.from_event(event)}

@router.delete("/{event_id}")
async def delete_event(event_id: UUID, db: AsyncSession = Depends(get_db)):
    event = await _require_event(db, event_id)
    await db.delete(event)
    await db.commit()
    return {"success": True, "message": "Event deleted."}
