from __future__ import annotations

import os
import unittest
import uuid
from unittest.mock import patch

from sellerdesk import create_app
from sellerdesk.extensions import db
from sellerdesk.models import Order
from sellerdesk.services.order_workflow import THIRTY_MIN_MS, THREE_HOURS_MS
from sellerdesk.utils.jwt_utils import create_token

T0 = 1_700_000_000_000


class OrderWorkflowApiTestCase(unittest.TestCase):
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
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        with cls.app.app_context():
            db.session.remove()
            db.drop_all()
        if cls._prev_db_uri is None:
            os.environ.pop("SQLALCHEMY_DATABASE_URI", None)
        else:
            os.environ["SQLALCHEMY_DATABASE_URI"] = cls._prev_db_uri
        if cls._prev_db_url is None:
            os.environ.pop("DATABASE_URL", None)
        else:
            os.environ["DATABASE_URL"] = cls._prev_db_url

    def setUp(self):
        self.vendor_id = f"vendor-{uuid.uuid4().hex[:8]}"
        self.vendor = {"Authorization": f"Bearer {create_token(self.vendor_id)}"}
        self.other = {"Authorization": f"Bearer {create_token('someone-else')}"}
        self.admin = {"Authorization": f"Bearer {create_token('ops-admin', admin=True)}"}

    def _seed(self, *, created_at: int = T0) -> str:
        shopify_id = uuid.uuid4().hex[:12]
        with self.app.app_context():
            order = Order(
                id=Order.compose_id(shopify_id, self.vendor_id),
                shopify_order_id=shopify_id,
                order_number=f"#{shopify_id[:4]}",
                merchant_id=self.vendor_id,
                created_at=created_at,
                workflow_status="vendor_pending",
                vendor_accept_by=created_at + THREE_HOURS_MS,
                line_items=[{"title": "Kurta", "sku": "K-1", "quantity": 1, "price": 799.0, "total": 799.0}],
                subtotal=799.0,
                workflow_timeline=[],
            )
            db.session.add(order)
            db.session.commit()
            return order.id

    def _load(self, order_id: str) -> dict:
        with self.app.app_context():
            return db.session.get(Order, order_id).snapshot()

    def _post(self, path: str, body: dict, headers: dict, now: int):
        with patch("sellerdesk.utils.clock.now_ms", return_value=now):
            return self.client.post(path, json=body, headers=headers)

    def test_happy_path_records_four_timeline_entries(self):
        order_id = self._seed()
        t_accept = T0 + 60 * 60 * 1000
        res = self._post("/api/orders/accept", {"orderId": order_id}, self.vendor, t_accept)
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["workflowStatus"], "vendor_accepted")
        self.assertEqual(body["adminPlanBy"], t_accept + THIRTY_MIN_MS)
        self.assertEqual(body["invoice"]["status"], "ready")
        self.assertIn("/api/orders/invoice?orderId=", body["invoice"]["url"])

        t_assign = t_accept + 20 * 60 * 1000
        res = self._post(
            "/api/admin/assign-pickup",
            {"orderId": order_id, "pickupWindow": "3-5pm", "deliveryPartner": {"name": "Ravi", "phone": "+91 98765 43210"}},
            self.admin,
            t_assign,
        )
        self.assertEqual(res.status_code, 200)
        self.assertFalse(res.get_json()["overdue"])

        t_dispatch = t_assign + 60 * 60 * 1000
        res = self._post("/api/orders/mark-dispatched", {"orderId": order_id}, self.vendor, t_dispatch)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["dispatchedAt"], t_dispatch)

        snap = self._load(order_id)
        self.assertEqual(snap["workflow_status"], "dispatched")
        self.assertEqual(
            [e["type"] for e in snap["workflow_timeline"]],
            ["vendor_accepted", "invoice_ready", "pickup_assigned", "dispatched"],
        )
        self.assertEqual(snap["pickup_assigned_by"], "ops-admin")
        self.assertEqual(snap["delivery_partner"]["phone"], "+91 98765 43210")
        self.assertEqual(snap["updated_at"], t_dispatch)

    def test_overdue_pickup_is_recorded_but_allowed(self):
        order_id = self._seed()
        t_accept = T0 + 10_000
        self._post("/api/orders/accept", {"orderId": order_id}, self.vendor, t_accept)
        res = self._post("/api/admin/assign-pickup", {"orderId": order_id}, self.admin, t_accept + 45 * 60 * 1000)
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.get_json()["overdue"])
        snap = self._load(order_id)
        self.assertEqual(
            [e["type"] for e in snap["workflow_timeline"]][-2:],
            ["admin_overdue", "pickup_assigned"],
        )
        self.assertIsNone(snap["pickup_plan"])
        self.assertIsNone(snap["delivery_partner"])

    def test_expired_acceptance_persists_once(self):
        order_id = self._seed()
        late = T0 + 4 * 60 * 60 * 1000
        res = self._post("/api/orders/accept", {"orderId": order_id}, self.vendor, late)
        self.assertEqual(res.status_code, 410)
        self.assertFalse(res.get_json()["ok"])
        res = self._post("/api/orders/accept", {"orderId": order_id}, self.vendor, late + 1000)
        self.assertEqual(res.status_code, 410)
        snap = self._load(order_id)
        self.assertEqual(snap["workflow_status"], "vendor_expired")
        self.assertEqual([e["type"] for e in snap["workflow_timeline"]], ["vendor_expired"])
        self.assertIsNone(snap["vendor_accepted_at"])

    def test_repeated_calls_do_not_grow_timeline(self):
        order_id = self._seed()
        for i in range(3):
            res = self._post("/api/orders/accept", {"orderId": order_id}, self.vendor, T0 + 1000 + i)
            self.assertEqual(res.status_code, 200)
        self.assertTrue(res.get_json()["alreadyAccepted"])
        snap = self._load(order_id)
        self.assertEqual(snap["vendor_accepted_at"], T0 + 1000)
        self.assertEqual(len(snap["workflow_timeline"]), 2)

    def test_missing_credentials_is_unauthorized(self):
        order_id = self._seed()
        res = self.client.post("/api/orders/accept", json={"orderId": order_id})
        self.assertEqual(res.status_code, 401)
        res = self.client.post(
            "/api/orders/accept", json={"orderId": order_id}, headers={"Authorization": "Bearer not-a-token"}
        )
        self.assertEqual(res.status_code, 401)

    def test_unknown_order_is_not_found(self):
        res = self._post("/api/orders/accept", {"orderId": "nope_nobody"}, self.vendor, T0)
        self.assertEqual(res.status_code, 404)
        self.assertFalse(res.get_json()["ok"])

    def test_missing_order_id_is_bad_request(self):
        res = self._post("/api/orders/accept", {}, self.vendor, T0)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["field"], "orderId")

    def test_non_object_body_is_bad_request(self):
        order_id = self._seed()
        for path, headers in (
            ("/api/orders/accept", self.vendor),
            ("/api/admin/assign-pickup", self.admin),
            ("/api/orders/mark-dispatched", self.vendor),
        ):
            for body in ([order_id], order_id, 42):
                res = self._post(path, body, headers, T0 + 10)
                self.assertEqual(res.status_code, 400, (path, body))
                self.assertEqual(res.get_json()["field"], "body")
        self.assertEqual(self._load(order_id)["workflow_status"], "vendor_pending")

    def test_other_vendor_cannot_touch_order(self):
        order_id = self._seed()
        res = self._post("/api/orders/accept", {"orderId": order_id}, self.other, T0 + 10)
        self.assertEqual(res.status_code, 403)
        self.assertEqual(self._load(order_id)["workflow_status"], "vendor_pending")

    def test_non_admin_assign_is_forbidden_before_lookup(self):
        res = self._post("/api/admin/assign-pickup", {"orderId": "does_not_exist"}, self.vendor, T0)
        self.assertEqual(res.status_code, 403)

    def test_admin_claim_variants_are_accepted(self):
        order_id = self._seed()
        self._post("/api/orders/accept", {"orderId": order_id}, self.vendor, T0 + 10)
        token = create_token("legacy-admin", extra_claims={"role": "admin"})
        res = self._post(
            "/api/admin/assign-pickup", {"orderId": order_id}, {"Authorization": f"Bearer {token}"}, T0 + 20
        )
        self.assertEqual(res.status_code, 200)

    def test_invalid_phone_is_rejected_without_mutation(self):
        order_id = self._seed()
        self._post("/api/orders/accept", {"orderId": order_id}, self.vendor, T0 + 10)
        res = self._post(
            "/api/admin/assign-pickup",
            {"orderId": order_id, "deliveryPartner": {"phone": "abc"}},
            self.admin,
            T0 + 20,
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["field"], "deliveryPartner.phone")
        self.assertEqual(self._load(order_id)["workflow_status"], "vendor_accepted")

    def test_dispatch_before_pickup_is_conflict(self):
        order_id = self._seed()
        self._post("/api/orders/accept", {"orderId": order_id}, self.vendor, T0 + 10)
        res = self._post("/api/orders/mark-dispatched", {"orderId": order_id}, self.vendor, T0 + 20)
        self.assertEqual(res.status_code, 409)
        body = res.get_json()
        self.assertEqual(body["currentStatus"], "vendor_accepted")
        self.assertEqual(body["requiredStatus"], "pickup_assigned")

    def test_wrong_method_returns_json_405(self):
        res = self.client.delete("/api/orders/accept")
        self.assertEqual(res.status_code, 405)
        self.assertFalse(res.get_json()["ok"])

    def test_get_on_action_paths_returns_json_405(self):
        for path in ("/api/orders/accept", "/api/orders/mark-dispatched"):
            res = self.client.get(path, headers=self.vendor)
            self.assertEqual(res.status_code, 405, path)
            body = res.get_json()
            self.assertFalse(body["ok"])
            self.assertEqual(body["status"], 405)

    def test_unexpected_failure_returns_generic_500(self):
        order_id = self._seed()
        with patch("sellerdesk.segments.segment_order_workflow.decide_mark_dispatched", side_effect=RuntimeError("boom")):
            res = self._post("/api/orders/mark-dispatched", {"orderId": order_id}, self.vendor, T0 + 10)
        self.assertEqual(res.status_code, 500)
        body = res.get_json()
        self.assertEqual(body, {"ok": False, "error": "Internal server error"})
        self.assertEqual(self._load(order_id)["workflow_status"], "vendor_pending")


if __name__ == "__main__":
    unittest.main()
