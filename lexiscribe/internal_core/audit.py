from __future__ import annotations

import logging
import textwrap
from datetime import datetime, timezone
from typing import Optional

from .contracts import AuditEvent, AuditEventType
from .job_store import InMemoryJobStore

logger = logging.getLogger(__name__)

DETAIL_MAX_CHARS = 200


def clip_detail(detail: str) -> str:
    """
    Flatten audit detail to one line of at most `DETAIL_MAX_CHARS`.

    Callers pass key=value metadata only (counts, codes, indexes); transcript
    text and audio never belong here. Overlong details lose whole trailing
    words and end with an ellipsis.
    """
    return textwrap.shorten(str(detail or ""), width=DETAIL_MAX_CHARS, placeholder=" …")


def log_event(
    store: InMemoryJobStore,
    job_id: str,
    event_type: AuditEventType,
    code: str,
    detail: str,
    duration_ms: Optional[int] = None,
) -> Optional[AuditEvent]:
    event = AuditEvent(
        ts_iso=datetime.now(timezone.utc).isoformat(),
        job_id=job_id,
        type=event_type,
        code=code,
        detail=clip_detail(detail),
        duration_ms=duration_ms,
    )
    try:
        store.append_audit_event(job_id, event)
    except KeyError:
        logger.debug("audit event dropped, job gone job_id=%s type=%s", job_id, event_type)
        return None
    logger.debug("audit job_id=%s type=%s code=%s duration_ms=%s", job_id, event_type, code, duration_ms)
    return event
