from __future__ import annotations

from flask import Blueprint, abort, jsonify, request
from sqlalchemy import and_, func, or_

from sellerdesk.extensions import db
from sellerdesk.models import Order
from sellerdesk.services.order_workflow import (
    THIRTY_MIN_MS,
    THREE_HOURS_MS,
    WorkflowStatus,
    deadline_countdown,
    derive_workflow_status,
)
from sellerdesk.utils import clock
from sellerdesk.utils.identity import current_identity

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api/orders")
admin_orders_bp = Blueprint("admin_orders_bp", __name__, url_prefix="/api/admin/orders")

_LIST_LIMIT_MAX = 200
# POST-only action paths that share the `/<order_id>` prefix.
_ACTION_PATHS = frozenset({"accept", "mark-dispatched"})


def _order_view(order: Order, now: int, *, include_timeline: bool = False) -> dict:
    snap = order.snapshot()
    data = order.to_dict(include_timeline=include_timeline)
    data["workflowStatus"] = derive_workflow_status(snap, now)
    countdown = deadline_countdown(snap, now)
    data["deadline"] = {"label": countdown["label"], "msLeft": countdown["msLeft"]} if countdown else None
    return data


def _limit_arg() -> int:
    raw = (request.args.get("limit") or "").strip()
    try:
        value = int(raw) if raw else 100
    except ValueError:
        value = 100
    return max(1, min(value, _LIST_LIMIT_MAX))


def _workflow_filter():
    """Returns (filter, error_response). Empty filter means all."""
    wf = (request.args.get("workflow") or "").strip().lower()
    if not wf or wf == "all":
        return "", None
    if wf not in WorkflowStatus.DISPLAYED:
        return None, (
            jsonify(
                {
                    "ok": False,
                    "error": f"Unknown workflow filter: {wf}",
                    "field": "workflow",
                }
            ),
            400,
        )
    return wf, None


def _stored_pending():
    return or_(
        Order.workflow_status == WorkflowStatus.PENDING,
        Order.workflow_status.is_(None),
        Order.workflow_status == "",
    )


def _derived_status_clause(wf: str, now: int):
    """SQL form of derive_workflow_status(order, now) == wf."""
    accept_by = func.coalesce(Order.vendor_accept_by, Order.created_at + THREE_HOURS_MS)
    plan_by = func.coalesce(Order.admin_plan_by, Order.vendor_accepted_at + THIRTY_MIN_MS)
    if wf == WorkflowStatus.PENDING:
        return and_(_stored_pending(), accept_by >= now)
    if wf == WorkflowStatus.EXPIRED:
        return or_(
            Order.workflow_status == WorkflowStatus.EXPIRED,
            and_(_stored_pending(), accept_by < now),
        )
    if wf == WorkflowStatus.ACCEPTED:
        return and_(
            Order.workflow_status == WorkflowStatus.ACCEPTED,
            or_(plan_by.is_(None), plan_by >= now),
        )
    if wf == WorkflowStatus.ADMIN_OVERDUE:
        return and_(Order.workflow_status == WorkflowStatus.ACCEPTED, plan_by < now)
    return Order.workflow_status == wf


def _filtered_orders(query, wf: str, now: int) -> list[dict]:
    if wf:
        query = query.filter(_derived_status_clause(wf, now))
    rows = query.order_by(Order.created_at.desc()).limit(_limit_arg()).all()
    return [_order_view(o, now) for o in rows]


@orders_bp.get("")
def list_my_orders():
    ident = current_identity()
    if not ident:
        return jsonify({"ok": False, "error": "Unauthorized"}), 401
    wf, err = _workflow_filter()
    if err:
        return err
    now = clock.now_ms()
    items = _filtered_orders(Order.query.filter(Order.merchant_id == ident.user_id), wf, now)
    return jsonify({"ok": True, "items": items, "count": len(items), "now": now}), 200


@orders_bp.get("/<order_id>")
def get_order(order_id: str):
    if order_id in _ACTION_PATHS:
        abort(405, valid_methods=["POST"])
    ident = current_identity()
    if not ident:
        return jsonify({"ok": False, "error": "Unauthorized"}), 401
    order = db.session.get(Order, order_id)
    if order is None:
        return jsonify({"ok": False, "error": "Order not found"}), 404
    if not ident.is_admin and str(order.merchant_id) != str(ident.user_id):
        return jsonify({"ok": False, "error": "Unauthorized - not your order"}), 403
    return jsonify({"ok": True, "order": _order_view(order, clock.now_ms(), include_timeline=True)}), 200


@admin_orders_bp.get("")
def admin_list_orders():
    ident = current_identity()
    if not ident:
        return jsonify({"ok": False, "error": "Unauthorized"}), 401
    if not ident.is_admin:
        return jsonify({"ok": False, "error": "Admin access required"}), 403
    wf, err = _workflow_filter()
    if err:
        return err
    now = clock.now_ms()
    items = _filtered_orders(Order.query, wf, now)
    return jsonify({"ok": True, "items": items, "count": len(items), "now": now}), 200
