from __future__ import annotations

import io
import os
import re
from urllib.parse import quote

from flask import Blueprint, current_app, jsonify, request, send_file

from sellerdesk.services.order_workflow import (
    InvalidPickupInput,
    decide_accept,
    decide_assign_pickup,
    decide_invoice,
    decide_mark_dispatched,
    derive_workflow_status,
    parse_pickup_input,
)
from sellerdesk.utils import clock
from sellerdesk.utils.billing_slip_pdf import billing_slip_lines, render_billing_slip_pdf
from sellerdesk.utils.identity import current_identity
from sellerdesk.utils.order_store import OrderNotFound, run_order_transaction
from sellerdesk.utils.workflow_settings import current_settings, plan_deadline_fn

order_workflow_bp = Blueprint("order_workflow_bp", __name__, url_prefix="/api/orders")
admin_workflow_bp = Blueprint("admin_workflow_bp", __name__, url_prefix="/api/admin")

_ORDER_ID_MAX = 160


def _unauthorized():
    return jsonify({"ok": False, "error": "Unauthorized"}), 401


def _bad_request(field: str, message: str):
    return jsonify({"ok": False, "error": message, "field": field}), 400


def _json_body() -> dict | None:
    """Request body as a dict; an absent body reads as empty, other JSON as None."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    return payload if isinstance(payload, dict) else None


def _order_id_from(raw) -> str | None:
    if raw is None or isinstance(raw, (dict, list, bool)):
        return None
    order_id = str(raw).strip()
    if not order_id or len(order_id) > _ORDER_ID_MAX:
        return None
    return order_id


def invoice_url_for(order_id: str) -> str:
    base = (os.getenv("PUBLIC_BASE_URL") or "").strip().rstrip("/")
    if not base:
        base = request.url_root.rstrip("/")
    return f"{base}/api/orders/invoice?orderId={quote(order_id, safe='')}"


def _run_transition(order_id: str, decide, *, action: str, actor_id: str):
    try:
        outcome, snapshot = run_order_transaction(order_id, decide)
    except OrderNotFound:
        return None, None, (jsonify({"ok": False, "error": "Order not found"}), 404)
    except Exception as e:
        current_app.logger.exception(
            "order_transition_failed action=%s order_id=%s actor=%s err=%s",
            action,
            order_id,
            actor_id,
            e,
        )
        return None, None, (jsonify({"ok": False, "error": "Internal server error"}), 500)

    if outcome.mutates:
        current_app.logger.info(
            "order_transition action=%s order_id=%s actor=%s status=%s code=%s",
            action,
            order_id,
            actor_id,
            snapshot.get("workflow_status"),
            outcome.status_code,
        )
    return outcome, snapshot, None


@order_workflow_bp.post("/accept")
def accept_order():
    ident = current_identity()
    if not ident:
        return _unauthorized()
    payload = _json_body()
    if payload is None:
        return _bad_request("body", "JSON object body required")
    order_id = _order_id_from(payload.get("orderId"))
    if not order_id:
        return _bad_request("orderId", "orderId is required")

    plan_by = plan_deadline_fn(current_settings())
    invoice_url = invoice_url_for(order_id)

    def _decide(order, now):
        return decide_accept(order, ident, now, plan_by=plan_by, invoice_url=invoice_url)

    outcome, _, failure = _run_transition(order_id, _decide, action="accept", actor_id=ident.user_id)
    if failure:
        return failure
    return jsonify(outcome.body), outcome.status_code


@admin_workflow_bp.post("/assign-pickup")
def assign_pickup():
    ident = current_identity()
    if not ident:
        return _unauthorized()
    if not ident.is_admin:
        return jsonify({"ok": False, "error": "Admin access required"}), 403

    payload = _json_body()
    if payload is None:
        return _bad_request("body", "JSON object body required")
    order_id = _order_id_from(payload.get("orderId"))
    if not order_id:
        return _bad_request("orderId", "orderId is required")
    try:
        pickup = parse_pickup_input(payload)
    except InvalidPickupInput as e:
        return _bad_request(e.field, e.message)

    def _decide(order, now):
        return decide_assign_pickup(order, ident, now, pickup)

    outcome, _, failure = _run_transition(order_id, _decide, action="assign_pickup", actor_id=ident.user_id)
    if failure:
        return failure
    return jsonify(outcome.body), outcome.status_code


@order_workflow_bp.post("/mark-dispatched")
def mark_dispatched():
    ident = current_identity()
    if not ident:
        return _unauthorized()
    payload = _json_body()
    if payload is None:
        return _bad_request("body", "JSON object body required")
    order_id = _order_id_from(payload.get("orderId"))
    if not order_id:
        return _bad_request("orderId", "orderId is required")

    def _decide(order, now):
        return decide_mark_dispatched(order, ident, now)

    outcome, _, failure = _run_transition(order_id, _decide, action="mark_dispatched", actor_id=ident.user_id)
    if failure:
        return failure
    return jsonify(outcome.body), outcome.status_code


def _slip_filename(snapshot: dict) -> str:
    label = str(snapshot.get("order_number") or snapshot.get("id") or "order")
    label = re.sub(r"[^A-Za-z0-9_.-]+", "_", label).strip("_") or "order"
    return f"billing_slip_{label[:80]}.pdf"


@order_workflow_bp.get("/invoice")
def get_invoice():
    ident = current_identity()
    if not ident:
        return _unauthorized()
    order_id = _order_id_from(request.args.get("orderId"))
    if not order_id:
        return _bad_request("orderId", "orderId is required")

    invoice_url = invoice_url_for(order_id)

    def _decide(order, now):
        return decide_invoice(order, ident, now, invoice_url=invoice_url)

    outcome, snapshot, failure = _run_transition(order_id, _decide, action="invoice", actor_id=ident.user_id)
    if failure:
        return failure
    if not outcome.ok:
        return jsonify(outcome.body), outcome.status_code

    if (request.args.get("format") or "").strip().lower() == "json":
        return jsonify(outcome.body), 200

    slip = dict(snapshot)
    slip["workflow_status"] = derive_workflow_status(snapshot, clock.now_ms())
    pdf_bytes = render_billing_slip_pdf(billing_slip_lines(slip))
    return send_file(
        io.BytesIO(pdf_bytes),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=_slip_filename(snapshot),
    )
