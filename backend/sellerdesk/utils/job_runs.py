from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from sellerdesk.extensions import db
from sellerdesk.models import JobRun


def record_job_run(
    *,
    job_name: str,
    ok: bool,
    started_at: datetime,
    overdue_count: int = 0,
    error: str | None = None,
) -> JobRun | None:
    duration_ms = max(0, int((datetime.utcnow() - started_at).total_seconds() * 1000))
    row = JobRun(
        job_name=(job_name or "unknown").strip()[:64],
        ran_at=datetime.utcnow(),
        ok=bool(ok),
        duration_ms=duration_ms,
        overdue_count=int(overdue_count or 0),
        error=(error or "")[:1000] or None,
    )
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        return None
    return row
