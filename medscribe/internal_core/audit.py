from __future__ import annotations

"""
Metadata-only audit trail for transcript sessions.

Design intent:
- Callers pass counters and codes as keyword fields; free text is limited to a short note.
- Events for unknown or expired sessions are dropped, never raised.
- Every appended event is mirrored to the module logger at DEBUG.
"""

import datetime as _dt
import logging
import re
import time
from typing import Any, Mapping, Optional

from .contracts import AuditEvent, AuditEventType
from .session_store import InMemorySessionStore

logger = logging.getLogger(__name__)

MAX_DETAIL_CHARS = 200
_WHITESPACE_RE = re.compile(r"\s+")


def elapsed_ms(start_monotonic: float) -> int:
    return max(0, int((time.monotonic() - start_monotonic) * 1000))


def _render_fields(fields: Mapping[str, Any]) -> str:
    # Field values are single tokens so the detail stays parseable as key=value pairs.
    return " ".join(f"{key}={_WHITESPACE_RE.sub('_', str(value).strip())}" for key, value in fields.items())


def build_detail(note: str = "", **fields: Any) -> str:
    """
    Flatten `note` plus `key=value` fields into one line capped at `MAX_DETAIL_CHARS`.

    Never pass transcript text, patient names or audio bytes here.
    """
    parts = [_WHITESPACE_RE.sub(" ", note or "").strip(), _render_fields(fields)]
    detail = " ".join(part for part in parts if part)
    if len(detail) > MAX_DETAIL_CHARS:
        detail = detail[:MAX_DETAIL_CHARS] + "..."
    return detail


def log_event(
    store: InMemorySessionStore,
    session_id: str,
    event_type: AuditEventType,
    code: str,
    note: str = "",
    *,
    duration_ms: Optional[int] = None,
    **fields: Any,
) -> Optional[AuditEvent]:
    if not store.has_session(session_id):
        logger.debug("audit_event_dropped session_id=%s type=%s reason=unknown_session", session_id, event_type)
        return None
    event = AuditEvent(
        ts_iso=_dt.datetime.now(_dt.timezone.utc).isoformat(),
        session_id=session_id,
        type=event_type,
        code=code,
        detail=build_detail(note, **fields),
        duration_ms=duration_ms,
    )
    store.append_audit_event(session_id, event)
    logger.debug("audit_event session_id=%s type=%s code=%s %s", session_id, event_type, code, event.detail)
    return event
