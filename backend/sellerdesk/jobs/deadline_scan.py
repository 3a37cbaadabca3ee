from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import or_

from sellerdesk.extensions import db
from sellerdesk.models import Order
from sellerdesk.services.order_workflow import WorkflowStatus, derive_workflow_status
from sellerdesk.utils import clock
from sellerdesk.utils.events import log_event
from sellerdesk.utils.job_runs import record_job_run

JOB_NAME = "workflow_deadline_scan"

_REPORTED_IDS_MAX = 50


def run_deadline_scan(now: int | None = None, *, limit: int = 5000) -> dict:
    """Count orders whose deadlines have lapsed. Never changes order state.

    An expired acceptance is only persisted when the vendor next tries to
    accept, and an overdue pickup plan is a display state, so the scan only
    reports what the shared derivation shows at `now`.
    """
    started_at = datetime.utcnow()
    now = int(now if now is not None else clock.now_ms())
    try:
        rows = (
            Order.query.filter(
                or_(
                    Order.workflow_status.in_([WorkflowStatus.PENDING, WorkflowStatus.ACCEPTED]),
                    Order.workflow_status.is_(None),
                    Order.workflow_status == "",
                )
            )
            .order_by(Order.created_at.asc())
            .limit(max(1, int(limit)))
            .all()
        )
        expired_ids: list[str] = []
        overdue_ids: list[str] = []
        for order in rows:
            status = derive_workflow_status(order.snapshot(), now)
            if status == WorkflowStatus.EXPIRED:
                expired_ids.append(order.id)
            elif status == WorkflowStatus.ADMIN_OVERDUE:
                overdue_ids.append(order.id)
        # Nothing above may be flushed back.
        db.session.rollback()
    except Exception as e:
        db.session.rollback()
        record_job_run(job_name=JOB_NAME, ok=False, started_at=started_at, error=str(e))
        current_app.logger.exception("workflow_deadline_scan_failed err=%s", e)
        raise

    result = {
        "ok": True,
        "now": now,
        "scanned": len(rows),
        "pending_expired": len(expired_ids),
        "admin_overdue": len(overdue_ids),
        "pending_expired_ids": expired_ids[:_REPORTED_IDS_MAX],
        "admin_overdue_ids": overdue_ids[:_REPORTED_IDS_MAX],
    }
    lapsed = bool(expired_ids or overdue_ids)
    log_event(
        JOB_NAME,
        subject_type="orders",
        severity="WARN" if lapsed else "INFO",
        metadata=result,
    )
    db.session.commit()
    record_job_run(
        job_name=JOB_NAME,
        ok=True,
        started_at=started_at,
        overdue_count=len(expired_ids) + len(overdue_ids),
    )
    if lapsed:
        current_app.logger.warning(
            "workflow_deadline_scan_lapsed pending_expired=%s admin_overdue=%s",
            len(expired_ids),
            len(overdue_ids),
        )
    else:
        current_app.logger.info("workflow_deadline_scan_ok scanned=%s", len(rows))
    return result
