from sellerdesk.extensions import db


class Order(db.Model):
    """One row per (marketplace order, vendor) pair.

    Timestamps are epoch milliseconds. Document-shaped fields (pickup plan,
    delivery partner, invoice, timeline, line items) are JSON columns and must
    be reassigned, not mutated in place, for SQLAlchemy to persist them.
    """

    __tablename__ = "orders"

    # `{shopify_order_id}_{merchant_id}`
    id = db.Column(db.String(160), primary_key=True)
    shopify_order_id = db.Column(db.String(64), nullable=False, index=True)
    order_number = db.Column(db.String(64), nullable=True)
    merchant_id = db.Column(db.String(128), nullable=False, index=True)

    created_at = db.Column(db.BigInteger, nullable=False, index=True)
    updated_at = db.Column(db.BigInteger, nullable=True)

    currency = db.Column(db.String(8), nullable=True, default="INR")
    financial_status = db.Column(db.String(32), nullable=True)
    status = db.Column(db.String(32), nullable=True)
    line_items = db.Column(db.JSON, nullable=True)
    subtotal = db.Column(db.Float, nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)

    # NULL on legacy rows; read as vendor_pending.
    workflow_status = db.Column(db.String(32), nullable=True, index=True)
    vendor_accept_by = db.Column(db.BigInteger, nullable=True)
    vendor_accepted_at = db.Column(db.BigInteger, nullable=True)
    admin_plan_by = db.Column(db.BigInteger, nullable=True)
    admin_planned_at = db.Column(db.BigInteger, nullable=True)
    pickup_plan = db.Column(db.JSON, nullable=True)
    delivery_partner = db.Column(db.JSON, nullable=True)
    pickup_assigned_by = db.Column(db.String(128), nullable=True)
    dispatched_at = db.Column(db.BigInteger, nullable=True)
    invoice = db.Column(db.JSON, nullable=True)
    workflow_timeline = db.Column(db.JSON, nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @staticmethod
    def compose_id(shopify_order_id: str, merchant_id: str) -> str:
        return f"{shopify_order_id}_{merchant_id}"

    def snapshot(self) -> dict:
        """Plain-dict copy of the workflow-relevant state, safe to hand to pure code."""
        return {
            "id": self.id,
            "shopify_order_id": self.shopify_order_id,
            "order_number": self.order_number,
            "merchant_id": self.merchant_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "currency": self.currency,
            "financial_status": self.financial_status,
            "status": self.status,
            "line_items": list(self.line_items or []),
            "subtotal": self.subtotal,
            "customer_email": self.customer_email,
            "workflow_status": self.workflow_status,
            "vendor_accept_by": self.vendor_accept_by,
            "vendor_accepted_at": self.vendor_accepted_at,
            "admin_plan_by": self.admin_plan_by,
            "admin_planned_at": self.admin_planned_at,
            "pickup_plan": dict(self.pickup_plan) if self.pickup_plan else None,
            "delivery_partner": dict(self.delivery_partner) if self.delivery_partner else None,
            "pickup_assigned_by": self.pickup_assigned_by,
            "dispatched_at": self.dispatched_at,
            "invoice": dict(self.invoice) if self.invoice else None,
            "workflow_timeline": [dict(e) for e in (self.workflow_timeline or [])],
        }

    def to_dict(self, *, include_timeline: bool = True) -> dict:
        out = {
            "id": self.id,
            "shopifyOrderId": self.shopify_order_id or "",
            "orderNumber": self.order_number or "",
            "merchantId": self.merchant_id or "",
            "createdAt": int(self.created_at) if self.created_at is not None else None,
            "updatedAt": int(self.updated_at) if self.updated_at is not None else None,
            "currency": self.currency or "INR",
            "financialStatus": (self.financial_status or "pending").lower(),
            "status": (self.status or "open").lower(),
            "lineItems": list(self.line_items or []),
            "subtotal": float(self.subtotal or 0.0),
            "customerEmail": self.customer_email,
            "vendorAcceptBy": self.vendor_accept_by,
            "vendorAcceptedAt": self.vendor_accepted_at,
            "adminPlanBy": self.admin_plan_by,
            "adminPlannedAt": self.admin_planned_at,
            "pickupPlan": self.pickup_plan,
            "deliveryPartner": self.delivery_partner,
            "pickupAssignedBy": self.pickup_assigned_by,
            "dispatchedAt": self.dispatched_at,
            "invoice": self.invoice or {"status": "none"},
        }
        if include_timeline:
            out["workflowTimeline"] = list(self.workflow_timeline or [])
        return out
