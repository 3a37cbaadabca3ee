"""Order fulfillment workflow: pure decision logic.

Every function here takes an order snapshot (the dict produced by
`Order.snapshot()`), the acting identity and the current time in epoch
milliseconds, and returns an `Outcome`. Nothing here touches the database;
the caller applies `Outcome.changes` and `Outcome.timeline` inside the same
transaction that loaded the snapshot.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

THREE_HOURS_MS = 3 * 60 * 60 * 1000
THIRTY_MIN_MS = 30 * 60 * 1000


class WorkflowStatus:
    PENDING = "vendor_pending"
    ACCEPTED = "vendor_accepted"
    PICKUP_ASSIGNED = "pickup_assigned"
    DISPATCHED = "dispatched"
    EXPIRED = "vendor_expired"
    # Display-only: stored status stays vendor_accepted.
    ADMIN_OVERDUE = "admin_overdue"

    STORED = (PENDING, ACCEPTED, PICKUP_ASSIGNED, DISPATCHED, EXPIRED)
    DISPLAYED = STORED + (ADMIN_OVERDUE,)

    # vendor_expired branches off vendor_pending and absorbs.
    RANK = {
        PENDING: 0,
        ACCEPTED: 1,
        EXPIRED: 1,
        PICKUP_ASSIGNED: 2,
        DISPATCHED: 3,
    }

    ACCEPTED_OR_LATER = (ACCEPTED, PICKUP_ASSIGNED, DISPATCHED)
    ASSIGNED_OR_LATER = (PICKUP_ASSIGNED, DISPATCHED)
    INVOICE_ELIGIBLE = (ACCEPTED, PICKUP_ASSIGNED, DISPATCHED)


class TimelineType:
    VENDOR_ACCEPTED = "vendor_accepted"
    INVOICE_READY = "invoice_ready"
    VENDOR_EXPIRED = "vendor_expired"
    ADMIN_OVERDUE = "admin_overdue"
    PICKUP_ASSIGNED = "pickup_assigned"
    DISPATCHED = "dispatched"


@dataclass
class Outcome:
    ok: bool
    status_code: int
    body: dict
    changes: dict = field(default_factory=dict)
    timeline: list[dict] = field(default_factory=list)

    @property
    def mutates(self) -> bool:
        return bool(self.changes or self.timeline)


def _fail(status_code: int, error: str, **extra) -> Outcome:
    body = {"ok": False, "error": error}
    body.update(extra)
    return Outcome(ok=False, status_code=status_code, body=body)


def _iso(ms: int | None) -> str:
    if ms is None:
        return ""
    return datetime.fromtimestamp(int(ms) / 1000.0, tz=timezone.utc).isoformat()


def timeline_entry(at: int, type_: str, note: str = "") -> dict:
    return {"at": int(at), "type": type_, "note": note or ""}


# ---------------------------------------------------------------------------
# Deadlines and derived state
# ---------------------------------------------------------------------------

def stored_status(order: dict) -> str:
    return (order.get("workflow_status") or "").strip() or WorkflowStatus.PENDING


def accept_deadline(order: dict) -> int:
    if order.get("vendor_accept_by") is not None:
        return int(order["vendor_accept_by"])
    return int(order.get("created_at") or 0) + THREE_HOURS_MS


def plan_deadline(order: dict) -> int | None:
    if order.get("admin_plan_by") is not None:
        return int(order["admin_plan_by"])
    accepted_at = order.get("vendor_accepted_at")
    if accepted_at is None:
        return None
    return int(accepted_at) + THIRTY_MIN_MS


def is_accept_expired(order: dict, now: int) -> bool:
    return int(now) > accept_deadline(order)


def is_plan_overdue(order: dict, now: int) -> bool:
    deadline = plan_deadline(order)
    return deadline is not None and int(now) > deadline


def derive_workflow_status(order: dict, now: int) -> str:
    """Displayed status: the stored status refined by the deadlines.

    The write paths decide expiry and overdue through the same helpers, so
    a read and a write at the same instant always agree.
    """
    status = stored_status(order)
    if status == WorkflowStatus.PENDING and is_accept_expired(order, now):
        return WorkflowStatus.EXPIRED
    if status == WorkflowStatus.ACCEPTED and is_plan_overdue(order, now):
        return WorkflowStatus.ADMIN_OVERDUE
    return status


def deadline_countdown(order: dict, now: int) -> dict | None:
    status = derive_workflow_status(order, now)
    if status in (WorkflowStatus.PENDING, WorkflowStatus.EXPIRED) and stored_status(order) == WorkflowStatus.PENDING:
        return {"label": "Accept in", "deadline": accept_deadline(order), "msLeft": accept_deadline(order) - int(now)}
    if status in (WorkflowStatus.ACCEPTED, WorkflowStatus.ADMIN_OVERDUE):
        deadline = plan_deadline(order)
        if deadline is None:
            return None
        return {"label": "Admin plan in", "deadline": deadline, "msLeft": deadline - int(now)}
    return None


def is_forward_transition(from_status: str, to_status: str) -> bool:
    rank = WorkflowStatus.RANK
    if from_status == WorkflowStatus.EXPIRED:
        return to_status == WorkflowStatus.EXPIRED
    if to_status == WorkflowStatus.EXPIRED:
        return from_status in (WorkflowStatus.PENDING, WorkflowStatus.EXPIRED)
    return rank.get(to_status, -1) >= rank.get(from_status, 0)


def _is_owner(order: dict, actor) -> bool:
    return bool(actor) and str(order.get("merchant_id") or "") == str(actor.user_id)


# ---------------------------------------------------------------------------
# Accept
# ---------------------------------------------------------------------------

def _acceptance_view(order: dict) -> dict:
    return {
        "workflowStatus": stored_status(order),
        "vendorAcceptedAt": order.get("vendor_accepted_at"),
        "adminPlanBy": order.get("admin_plan_by"),
        "invoice": order.get("invoice") or {"status": "none"},
    }


def decide_accept(
    order: dict,
    actor,
    now: int,
    *,
    plan_by: Callable[[int], int],
    invoice_url: str,
) -> Outcome:
    if not _is_owner(order, actor):
        return _fail(403, "Unauthorized - not your order")

    status = stored_status(order)
    if status in WorkflowStatus.ACCEPTED_OR_LATER:
        return Outcome(ok=True, status_code=200, body={"ok": True, "alreadyAccepted": True, **_acceptance_view(order)})

    deadline = accept_deadline(order)
    if status == WorkflowStatus.EXPIRED:
        return _fail(
            410,
            "Acceptance window has expired",
            workflowStatus=WorkflowStatus.EXPIRED,
            vendorAcceptBy=deadline,
        )
    if status != WorkflowStatus.PENDING:
        return _fail(
            409,
            f"Order cannot be accepted from status {status}",
            currentStatus=status,
            requiredStatus=WorkflowStatus.PENDING,
        )

    if int(now) > deadline:
        out = _fail(
            410,
            "Acceptance window has expired",
            workflowStatus=WorkflowStatus.EXPIRED,
            vendorAcceptBy=deadline,
        )
        out.changes = {"workflow_status": WorkflowStatus.EXPIRED}
        out.timeline = [
            timeline_entry(now, TimelineType.VENDOR_EXPIRED, f"Acceptance attempted after deadline {_iso(deadline)}"),
        ]
        return out

    admin_plan_by = int(plan_by(int(now)))
    invoice = {"status": "ready", "url": invoice_url, "generatedAt": int(now)}
    changes = {
        "workflow_status": WorkflowStatus.ACCEPTED,
        "vendor_accepted_at": int(now),
        "admin_plan_by": admin_plan_by,
        "invoice": invoice,
    }
    body = {
        "ok": True,
        "alreadyAccepted": False,
        "workflowStatus": WorkflowStatus.ACCEPTED,
        "vendorAcceptedAt": int(now),
        "adminPlanBy": admin_plan_by,
        "invoice": invoice,
    }
    timeline = [
        timeline_entry(now, TimelineType.VENDOR_ACCEPTED, f"Admin must plan pickup by {_iso(admin_plan_by)}"),
        timeline_entry(now, TimelineType.INVOICE_READY, "Billing slip available"),
    ]
    return Outcome(ok=True, status_code=200, body=body, changes=changes, timeline=timeline)


# ---------------------------------------------------------------------------
# Assign pickup
# ---------------------------------------------------------------------------

PHONE_RE = re.compile(r"^[0-9+\-\s()]{6,20}$")

PICKUP_FIELD_CAPS = {
    "pickupWindow": 200,
    "pickupAddress": 500,
    "notes": 800,
}
PARTNER_FIELD_CAPS = {
    "name": 200,
    "etaText": 200,
    "trackingUrl": 800,
}


class InvalidPickupInput(ValueError):
    def __init__(self, field_name: str, message: str):
        super().__init__(message)
        self.field = field_name
        self.message = message


@dataclass
class PickupInput:
    pickup_plan: dict | None
    delivery_partner: dict | None


def _clip(value, cap: int) -> str | None:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    if not text:
        return None
    return text[:cap]


def parse_pickup_input(payload: dict) -> PickupInput:
    """Trim and cap free-text fields; validate the partner phone.

    Over-long text is truncated, not rejected. A plan or partner object is
    only kept when at least one of its fields has a value.
    """
    plan = {key: _clip(payload.get(key), cap) for key, cap in PICKUP_FIELD_CAPS.items()}

    raw_partner = payload.get("deliveryPartner")
    if raw_partner is not None and not isinstance(raw_partner, dict):
        raise InvalidPickupInput("deliveryPartner", "deliveryPartner must be an object")
    raw_partner = raw_partner or {}

    partner = {key: _clip(raw_partner.get(key), cap) for key, cap in PARTNER_FIELD_CAPS.items()}
    phone_raw = raw_partner.get("phone")
    phone = str(phone_raw).strip() if phone_raw is not None and not isinstance(phone_raw, (dict, list)) else ""
    if phone and not PHONE_RE.match(phone):
        raise InvalidPickupInput("deliveryPartner.phone", "deliveryPartner.phone is not a valid phone number")
    partner = {
        "name": partner["name"],
        "phone": phone or None,
        "etaText": partner["etaText"],
        "trackingUrl": partner["trackingUrl"],
    }

    return PickupInput(
        pickup_plan=plan if any(v is not None for v in plan.values()) else None,
        delivery_partner=partner if any(v is not None for v in partner.values()) else None,
    )


def _assignment_view(order: dict) -> dict:
    return {
        "workflowStatus": stored_status(order),
        "adminPlanBy": order.get("admin_plan_by"),
        "adminPlannedAt": order.get("admin_planned_at"),
        "pickupPlan": order.get("pickup_plan"),
        "deliveryPartner": order.get("delivery_partner"),
    }


def decide_assign_pickup(order: dict, actor, now: int, pickup: PickupInput) -> Outcome:
    if not actor or not actor.is_admin:
        return _fail(403, "Admin access required")

    status = stored_status(order)
    if status in WorkflowStatus.ASSIGNED_OR_LATER:
        return Outcome(ok=True, status_code=200, body={"ok": True, "alreadyAssigned": True, **_assignment_view(order)})

    if status != WorkflowStatus.ACCEPTED:
        return _fail(
            409,
            f"Order is not ready for pickup assignment (status {derive_workflow_status(order, now)})",
            currentStatus=derive_workflow_status(order, now),
            requiredStatus="vendor_accepted or admin_overdue",
        )
    if order.get("vendor_accepted_at") is None:
        return _fail(
            409,
            "Order has no vendor acceptance on record",
            currentStatus=status,
            requiredStatus="vendor_accepted or admin_overdue",
        )

    admin_plan_by = plan_deadline(order)
    overdue = int(now) > int(admin_plan_by)

    timeline = []
    if overdue:
        late_min = (int(now) - int(admin_plan_by)) // 60000
        timeline.append(
            timeline_entry(now, TimelineType.ADMIN_OVERDUE, f"Pickup planned {late_min} min after deadline {_iso(admin_plan_by)}")
        )
    window = (pickup.pickup_plan or {}).get("pickupWindow")
    partner_name = (pickup.delivery_partner or {}).get("name")
    note_parts = [p for p in (f"window: {window}" if window else "", f"partner: {partner_name}" if partner_name else "") if p]
    timeline.append(timeline_entry(now, TimelineType.PICKUP_ASSIGNED, "; ".join(note_parts)))

    changes = {
        "workflow_status": WorkflowStatus.PICKUP_ASSIGNED,
        "admin_planned_at": int(now),
        "admin_plan_by": int(admin_plan_by),
        "pickup_plan": pickup.pickup_plan,
        "delivery_partner": pickup.delivery_partner,
        "pickup_assigned_by": str(actor.user_id),
    }
    body = {
        "ok": True,
        "alreadyAssigned": False,
        "workflowStatus": WorkflowStatus.PICKUP_ASSIGNED,
        "overdue": overdue,
        "adminPlanBy": int(admin_plan_by),
        "adminPlannedAt": int(now),
        "pickupPlan": pickup.pickup_plan,
        "deliveryPartner": pickup.delivery_partner,
    }
    return Outcome(ok=True, status_code=200, body=body, changes=changes, timeline=timeline)


# ---------------------------------------------------------------------------
# Mark dispatched
# ---------------------------------------------------------------------------

def decide_mark_dispatched(order: dict, actor, now: int) -> Outcome:
    if not _is_owner(order, actor):
        return _fail(403, "Unauthorized - not your order")

    status = stored_status(order)
    if status == WorkflowStatus.DISPATCHED:
        return Outcome(
            ok=True,
            status_code=200,
            body={
                "ok": True,
                "alreadyDispatched": True,
                "workflowStatus": WorkflowStatus.DISPATCHED,
                "dispatchedAt": order.get("dispatched_at"),
            },
        )
    if status != WorkflowStatus.PICKUP_ASSIGNED:
        current = derive_workflow_status(order, now)
        return _fail(
            409,
            f"Order must have pickup assigned before dispatch (status {current})",
            currentStatus=current,
            requiredStatus=WorkflowStatus.PICKUP_ASSIGNED,
        )

    return Outcome(
        ok=True,
        status_code=200,
        body={
            "ok": True,
            "alreadyDispatched": False,
            "workflowStatus": WorkflowStatus.DISPATCHED,
            "dispatchedAt": int(now),
        },
        changes={"workflow_status": WorkflowStatus.DISPATCHED, "dispatched_at": int(now)},
        timeline=[timeline_entry(now, TimelineType.DISPATCHED, "Vendor handed over to delivery partner")],
    )


# ---------------------------------------------------------------------------
# Invoice
# ---------------------------------------------------------------------------

def decide_invoice(order: dict, actor, now: int, *, invoice_url: str) -> Outcome:
    if not actor or not (actor.is_admin or _is_owner(order, actor)):
        return _fail(403, "Unauthorized - not your order")

    status = stored_status(order)
    if status not in WorkflowStatus.INVOICE_ELIGIBLE:
        current = derive_workflow_status(order, now)
        return _fail(
            409,
            "Invoice not available yet",
            currentStatus=current,
            requiredStatus="vendor_accepted, pickup_assigned or dispatched",
            message="Invoice can only be generated after vendor accepts the order",
        )

    invoice = order.get("invoice") or {}
    if invoice.get("status") == "ready" and invoice.get("url"):
        return Outcome(ok=True, status_code=200, body={"ok": True, "invoice": dict(invoice)})

    ready = {"status": "ready", "url": invoice_url, "generatedAt": int(now)}
    return Outcome(
        ok=True,
        status_code=200,
        body={"ok": True, "invoice": ready},
        changes={"invoice": ready},
        timeline=[timeline_entry(now, TimelineType.INVOICE_READY, "Billing slip generated on request")],
    )
