from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from sellerdesk.extensions import db
from sellerdesk.models import PlatformEvent
from sellerdesk.utils.observability import get_request_id


def _safe_value(value: Any):
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _safe_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_safe_value(v) for v in value]
    return str(value)


def log_event(
    event_type: str,
    *,
    actor_id: str | None = None,
    subject_type: str | None = None,
    subject_id: str | None = None,
    severity: str = "INFO",
    request_id: str | None = None,
    metadata: dict | None = None,
) -> PlatformEvent | None:
    """Best-effort audit row.

    Runs in a savepoint so a failed insert leaves the caller's transaction usable.
    """
    try:
        request_id = request_id or get_request_id()
    except RuntimeError:
        request_id = None
    event = PlatformEvent(
        event_type=(event_type or "unknown").strip()[:80],
        actor_id=str(actor_id)[:128] if actor_id is not None else None,
        subject_type=(subject_type or "").strip()[:80] or None,
        subject_id=str(subject_id)[:160] if subject_id is not None else None,
        request_id=(request_id or "").strip()[:80] or None,
        severity=(severity or "INFO").strip().upper()[:16] or "INFO",
        metadata_json=json.dumps(_safe_value(metadata or {}), separators=(",", ":"), ensure_ascii=False),
    )
    try:
        with db.session.begin_nested():
            db.session.add(event)
            db.session.flush()
    except SQLAlchemyError:
        return None
    return event
