from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from sellerdesk import create_app
from sellerdesk.extensions import db
from sellerdesk.jobs.deadline_scan import run_deadline_scan
from sellerdesk.models import JobRun, Order, PlatformEvent
from sellerdesk.services.order_workflow import THIRTY_MIN_MS, THREE_HOURS_MS
from sellerdesk.tasks.workflow_tasks import scan_workflow_deadlines

T0 = 1_700_000_000_000


class DeadlineScanTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._prev_db_uri = os.getenv("SQLALCHEMY_DATABASE_URI")
        cls._prev_db_url = os.getenv("DATABASE_URL")
        db_uri = "sqlite:///:memory:"
        os.environ["SQLALCHEMY_DATABASE_URI"] = db_uri
        os.environ["DATABASE_URL"] = db_uri
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        with cls.app.app_context():
            db.create_all()
            rows = [
                # pending, still inside the window at T0 + 1h
                Order(id="a_v1", shopify_order_id="a", merchant_id="v1", created_at=T0,
                      workflow_status="vendor_pending", vendor_accept_by=T0 + THREE_HOURS_MS),
                # pending, window lapsed long ago
                Order(id="b_v1", shopify_order_id="b", merchant_id="v1", created_at=T0 - THREE_HOURS_MS * 2,
                      workflow_status=None),
                # accepted, plan deadline lapsed
                Order(id="c_v2", shopify_order_id="c", merchant_id="v2", created_at=T0,
                      workflow_status="vendor_accepted", vendor_accepted_at=T0,
                      admin_plan_by=T0 + THIRTY_MIN_MS),
                # accepted, plan deadline still ahead
                Order(id="d_v2", shopify_order_id="d", merchant_id="v2", created_at=T0,
                      workflow_status="vendor_accepted", vendor_accepted_at=T0 + 59 * 60 * 1000,
                      admin_plan_by=T0 + 89 * 60 * 1000),
                # already moving
                Order(id="e_v3", shopify_order_id="e", merchant_id="v3", created_at=T0 - THREE_HOURS_MS * 9,
                      workflow_status="pickup_assigned", vendor_accepted_at=T0 - THREE_HOURS_MS * 8,
                      admin_plan_by=T0 - THREE_HOURS_MS * 8 + THIRTY_MIN_MS),
            ]
            db.session.add_all(rows)
            db.session.commit()

    @classmethod
    def tearDownClass(cls):
        if cls._prev_db_uri is None:
            os.environ.pop("SQLALCHEMY_DATABASE_URI", None)
        else:
            os.environ["SQLALCHEMY_DATABASE_URI"] = cls._prev_db_uri
        if cls._prev_db_url is None:
            os.environ.pop("DATABASE_URL", None)
        else:
            os.environ["DATABASE_URL"] = cls._prev_db_url

    def _statuses(self) -> dict:
        return {o.id: (o.workflow_status, o.version) for o in Order.query.all()}

    def test_scan_reports_lapsed_orders_without_mutating(self):
        now = T0 + 60 * 60 * 1000
        with self.app.app_context():
            before = self._statuses()
            result = run_deadline_scan(now)
            self.assertEqual(result["pending_expired_ids"], ["b_v1"])
            self.assertEqual(result["admin_overdue_ids"], ["c_v2"])
            self.assertEqual(result["scanned"], 4)
            self.assertEqual(self._statuses(), before)

            event = (
                PlatformEvent.query.filter_by(event_type="workflow_deadline_scan")
                .order_by(PlatformEvent.id.desc())
                .first()
            )
            self.assertEqual(event.severity, "WARN")
            self.assertEqual(event.metadata_dict()["admin_overdue"], 1)

            run = JobRun.query.filter_by(job_name="workflow_deadline_scan").order_by(JobRun.id.desc()).first()
            self.assertTrue(run.ok)
            self.assertEqual(run.overdue_count, 2)

    def test_quiet_scan_logs_info(self):
        with self.app.app_context():
            result = run_deadline_scan(T0 - THREE_HOURS_MS * 3)
            self.assertEqual(result["pending_expired"], 0)
            self.assertEqual(result["admin_overdue"], 0)
            event = (
                PlatformEvent.query.filter_by(event_type="workflow_deadline_scan")
                .order_by(PlatformEvent.id.desc())
                .first()
            )
            self.assertEqual(event.severity, "INFO")

    def test_task_uses_clock(self):
        with self.app.app_context():
            with patch("sellerdesk.utils.clock.now_ms", return_value=T0 + 60 * 60 * 1000):
                result = scan_workflow_deadlines()
            self.assertEqual(result["now"], T0 + 60 * 60 * 1000)
            self.assertEqual(result["admin_overdue"], 1)


if __name__ == "__main__":
    unittest.main()
