from __future__ import annotations

import json
import time
from datetime import datetime

from celery import shared_task
from flask import current_app


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    current_app.logger.info(json.dumps(payload))


def _retry_countdown(retries: int) -> int:
    return int(min(900, max(5, 5 * (2 ** int(max(0, retries))))))


@shared_task(
    bind=True,
    name="sellerdesk.tasks.workflow_tasks.scan_workflow_deadlines",
    max_retries=3,
)
def scan_workflow_deadlines(self, *, trace_id: str = ""):
    started = time.perf_counter()
    from sellerdesk.jobs.deadline_scan import run_deadline_scan

    try:
        result = run_deadline_scan()
    except Exception as exc:
        if int(self.request.retries or 0) < int(self.max_retries or 0):
            countdown = _retry_countdown(int(self.request.retries or 0))
            _task_log(
                "scan_workflow_deadlines",
                status="retrying",
                started_at=started,
                trace_id=trace_id,
                detail=str(exc),
                countdown=countdown,
            )
            raise self.retry(exc=exc, countdown=countdown)
        _task_log(
            "scan_workflow_deadlines",
            status="failed",
            started_at=started,
            trace_id=trace_id,
            detail=str(exc),
        )
        raise
    _task_log(
        "scan_workflow_deadlines",
        status="ok",
        started_at=started,
        trace_id=trace_id,
        pending_expired=result.get("pending_expired", 0),
        admin_overdue=result.get("admin_overdue", 0),
    )
    return result
