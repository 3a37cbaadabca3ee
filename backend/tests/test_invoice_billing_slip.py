from __future__ import annotations

import os
import unittest
import uuid
from unittest.mock import patch

from sellerdesk import create_app
from sellerdesk.extensions import db
from sellerdesk.models import Order
from sellerdesk.services.order_workflow import THREE_HOURS_MS
from sellerdesk.utils.billing_slip_pdf import (
    billing_slip_lines,
    render_billing_slip_pdf,
    sanitize_line,
)
from sellerdesk.utils.jwt_utils import create_token

T0 = 1_700_000_000_000


class BillingSlipRendererTestCase(unittest.TestCase):
    def test_sanitize_keeps_printable_ascii_only(self):
        self.assertEqual(sanitize_line("Total: Rs 1,499.00"), "Total: Rs 1,499.00")
        self.assertEqual(sanitize_line("₹1499 – café\n"), "?1499 ? caf??")
        self.assertEqual(sanitize_line(None), "")

    def test_pdf_structure(self):
        pdf = render_billing_slip_pdf(["BILLING SLIP", "Order: #1001"])
        self.assertTrue(pdf.startswith(b"%PDF-1.4\n"))
        self.assertTrue(pdf.rstrip().endswith(b"%%EOF"))
        self.assertIn(b"/MediaBox [0 0 595 842]", pdf)
        self.assertIn(b"/BaseFont /Helvetica", pdf)
        self.assertIn(b"14 TL", pdf)
        self.assertIn(b"(Order: #1001) Tj", pdf)

    def test_xref_offsets_point_at_objects(self):
        pdf = render_billing_slip_pdf(["a", "b"])
        xref_at = int(pdf.rsplit(b"startxref\n", 1)[1].split(b"\n", 1)[0])
        self.assertEqual(pdf[xref_at:xref_at + 4], b"xref")
        entries = pdf[xref_at:].split(b"\n")[3:8]
        for num, entry in enumerate(entries, start=1):
            offset = int(entry[:10])
            self.assertTrue(pdf[offset:].startswith(f"{num} 0 obj".encode("ascii")))

    def test_rendering_is_deterministic(self):
        lines = billing_slip_lines(
            {
                "id": "5001_v1",
                "order_number": "#5001",
                "merchant_id": "v1",
                "line_items": [{"title": "Saree", "sku": "S-1", "quantity": 2, "price": 500}],
                "subtotal": 1000,
                "financial_status": "PAID",
                "workflow_status": "vendor_accepted",
            }
        )
        self.assertIn("  Saree [S-1] x2  INR 1000.00", lines)
        self.assertIn("Payment: paid", lines)
        self.assertEqual(render_billing_slip_pdf(lines), render_billing_slip_pdf(list(lines)))

    def test_parentheses_are_escaped(self):
        pdf = render_billing_slip_pdf(["Note (fragile) \\ handle"])
        self.assertIn(b"(Note \\(fragile\\) \\\\ handle) Tj", pdf)


class InvoiceEndpointTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._prev_db_uri = os.getenv("SQLALCHEMY_DATABASE_URI")
        cls._prev_db_url = os.getenv("DATABASE_URL")
        cls._prev_base = os.getenv("PUBLIC_BASE_URL")
        db_uri = "sqlite:///:memory:"
        os.environ["SQLALCHEMY_DATABASE_URI"] = db_uri
        os.environ["DATABASE_URL"] = db_uri
        os.environ["PUBLIC_BASE_URL"] = "https://sellers.example.com"
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        with cls.app.app_context():
            db.create_all()
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        for key, prev in (
            ("SQLALCHEMY_DATABASE_URI", cls._prev_db_uri),
            ("DATABASE_URL", cls._prev_db_url),
            ("PUBLIC_BASE_URL", cls._prev_base),
        ):
            if prev is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = prev

    def setUp(self):
        self.vendor_id = f"v-{uuid.uuid4().hex[:8]}"
        self.vendor = {"Authorization": f"Bearer {create_token(self.vendor_id)}"}
        self.admin = {"Authorization": f"Bearer {create_token('finance-admin', admin=True)}"}

    def _seed(self, **overrides) -> str:
        shopify_id = uuid.uuid4().hex[:10]
        fields = dict(
            id=Order.compose_id(shopify_id, self.vendor_id),
            shopify_order_id=shopify_id,
            order_number="#" + shopify_id[:5],
            merchant_id=self.vendor_id,
            created_at=T0,
            workflow_status="vendor_pending",
            vendor_accept_by=T0 + THREE_HOURS_MS,
            line_items=[{"title": "Mug", "quantity": 1, "price": 250.0, "total": 250.0}],
            subtotal=250.0,
            financial_status="paid",
            workflow_timeline=[],
        )
        fields.update(overrides)
        with self.app.app_context():
            db.session.add(Order(**fields))
            db.session.commit()
        return fields["id"]

    def _get(self, query: str, headers: dict, now: int = T0 + 1000):
        with patch("sellerdesk.utils.clock.now_ms", return_value=now):
            return self.client.get(f"/api/orders/invoice?{query}", headers=headers)

    def test_pending_order_has_no_invoice(self):
        order_id = self._seed()
        res = self._get(f"orderId={order_id}", self.vendor)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["currentStatus"], "vendor_pending")

    def test_pdf_download_after_acceptance(self):
        order_id = self._seed()
        with patch("sellerdesk.utils.clock.now_ms", return_value=T0 + 500):
            accepted = self.client.post("/api/orders/accept", json={"orderId": order_id}, headers=self.vendor)
        self.assertTrue(accepted.get_json()["invoice"]["url"].startswith("https://sellers.example.com/api/orders/invoice?orderId="))

        res = self._get(f"orderId={order_id}", self.vendor)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.mimetype, "application/pdf")
        self.assertIn("attachment", res.headers.get("Content-Disposition", ""))
        self.assertTrue(res.data.startswith(b"%PDF-"))

        again = self._get(f"orderId={order_id}", self.admin, now=T0 + 9000)
        self.assertEqual(again.data, res.data)

    def test_missing_invoice_is_generated_once_in_transaction(self):
        order_id = self._seed(
            workflow_status="pickup_assigned",
            vendor_accepted_at=T0 + 10,
            admin_plan_by=T0 + 10 + 30 * 60 * 1000,
            invoice=None,
        )
        res = self._get(f"orderId={order_id}&format=json", self.vendor, now=T0 + 2000)
        self.assertEqual(res.status_code, 200)
        invoice = res.get_json()["invoice"]
        self.assertEqual(invoice["status"], "ready")
        self.assertEqual(invoice["generatedAt"], T0 + 2000)

        self._get(f"orderId={order_id}&format=json", self.vendor, now=T0 + 3000)
        with self.app.app_context():
            snap = db.session.get(Order, order_id).snapshot()
        self.assertEqual(snap["invoice"]["generatedAt"], T0 + 2000)
        self.assertEqual([e["type"] for e in snap["workflow_timeline"]], ["invoice_ready"])

    def test_other_vendor_is_forbidden(self):
        order_id = self._seed(workflow_status="vendor_accepted", vendor_accepted_at=T0 + 1)
        stranger = {"Authorization": f"Bearer {create_token('stranger')}"}
        res = self._get(f"orderId={order_id}", stranger)
        self.assertEqual(res.status_code, 403)

    def test_unknown_order_and_missing_param(self):
        self.assertEqual(self._get("orderId=nope", self.vendor).status_code, 404)
        res = self._get("", self.vendor)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["field"], "orderId")


if __name__ == "__main__":
    unittest.main()
