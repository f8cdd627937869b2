"""Logging setup for the portal API.

Records go to stdout as one JSON object per line. The id of the request
being served is stamped on each record when it is emitted, so it survives
handlers that format later.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)

log = logging.getLogger("portal")

def set_request_id(rid: str | None) -> None:
    _request_id.set(rid)

def get_request_id() -> str | None:
    return _request_id.get()

class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        return True

class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        out = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        rid = getattr(record, "request_id", None)
        if rid:
            out["request_id"] = rid
        if record.exc_info:
            out["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(out, ensure_ascii=False, default=str)

def configure_logging(level: int | str = "INFO") -> logging.Logger:
    """Send root logging to stdout as JSON; repeated calls replace the handler.

    uvicorn's own access log is turned down because the request middleware
    writes one access line per request with its id and latency.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(JSONFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    return log
