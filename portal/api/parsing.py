"""Lenient coercion of request values.

Form posts and JSON bodies from the web client send booleans, dates and
lists in several shapes; these helpers reduce them to plain Python values.
"""

from __future__ import annotations

import json
import re
from datetime import date, datetime, timezone
from typing import Any, Mapping, Optional, Union

from portal.models import EventStatus, PostStatus

MAX_PAGE_SIZE = 100
TRUTHY = {"1", "true", "yes", "on"}
_POLL_KEY = re.compile(r"pollOptions\[(\d+)\]")

def sanitize_string(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (list, tuple)):
        first = next((v for v in value if isinstance(v, str)), None)
        return first.strip() if first is not None else ""
    return ""

def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (list, tuple)):
        return parse_bool(value[0]) if value else False
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY
    return False

def parse_limit(value: Any) -> Optional[int]:
    """Positive page size capped at ``MAX_PAGE_SIZE``; None means no limit."""
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    if parsed <= 0:
        return None
    return min(parsed, MAX_PAGE_SIZE)

def parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

def parse_event_date(value: Union[str, date, None]) -> Optional[datetime]:
    """Map a calendar date to 12:00 UTC of that day.

    Only the ``YYYY-MM-DD`` part of a string is used, so "2025-03-10" and
    "2025-03-10T23:30:00-03:00" both land on 2025-03-10. The result reads
    as the same calendar day in every offset from UTC-12 to UTC+11.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, 12, tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None
    parts = value.strip().split("T")[0].split("-")
    if len(parts) != 3:
        return None
    try:
        year, month, day = (int(p) for p in parts)
        return datetime(year, month, day, 12, tzinfo=timezone.utc)
    except ValueError:
        return None

def normalize_post_status(value: Any) -> Union[PostStatus, str, None]:
    """PostStatus, the string "ALL", or None when absent or unknown."""
    if not isinstance(value, str):
        return None
    normalized = value.strip().upper()
    if normalized == "ALL":
        return "ALL"
    try:
        return PostStatus(normalized)
    except ValueError:
        return None

def normalize_event_status(value: Any) -> Optional[EventStatus]:
    if not isinstance(value, str):
        return None
    try:
        return EventStatus(value.strip().upper())
    except ValueError:
        return None

def extract_poll_options(form: Any) -> list[dict]:
    """Collect poll options from a form or mapping.

    Accepts a repeated ``pollOptions`` field, a single ``pollOptions`` value
    holding a JSON array (or one plain option), and indexed
    ``pollOptions[N]`` keys. Options come back ordered with ids
    ``opt1``, ``opt2``... and zero votes.
    """
    collected: dict[int, str] = {}
    getlist = getattr(form, "getlist", None)
    if getlist is not None:
        direct = [v for v in getlist("pollOptions") if isinstance(v, str)]
    else:
        raw = form.get("pollOptions") if isinstance(form, Mapping) else None
        direct = raw if isinstance(raw, list) else ([raw] if raw is not None else [])

    if len(direct) == 1 and isinstance(direct[0], str):
        try:
            parsed = json.loads(direct[0])
        except ValueError:
            parsed = None
        items = parsed if isinstance(parsed, list) else [direct[0]]
    else:
        items = direct
    for index, item in enumerate(items):
        text = sanitize_string(item)
        if text:
            collected[index] = text

    for key in list(form.keys()):
        match = _POLL_KEY.fullmatch(key)
        if not match:
            continue
        text = sanitize_string(form.get(key))
        if text:
            collected[int(match.group(1))] = text

    ordered = [text for _, text in sorted(collected.items())]
    return [{"id": f"opt{pos}", "text": text, "votes": 0} for pos, text in enumerate(ordered, start=1)]
