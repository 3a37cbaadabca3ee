from __future__ import annotations

import logging
import os
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from sellerdesk.extensions import db
from sellerdesk.models import Order
from sellerdesk.services.order_workflow import Outcome, is_forward_transition, stored_status
from sellerdesk.utils import clock

logger = logging.getLogger(__name__)


class OrderNotFound(LookupError):
    def __init__(self, order_id: str):
        super().__init__(f"order not found: {order_id}")
        self.order_id = order_id


class OrderConflict(RuntimeError):
    """Every attempt lost an optimistic-concurrency race."""

    def __init__(self, order_id: str, attempts: int):
        super().__init__(f"order {order_id} still contended after {attempts} attempts")
        self.order_id = order_id
        self.attempts = attempts


class BackwardTransition(RuntimeError):
    def __init__(self, order_id: str, from_status: str, to_status: str):
        super().__init__(f"order {order_id} cannot move from {from_status} to {to_status}")
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status


def max_txn_attempts() -> int:
    raw = (os.getenv("ORDER_TXN_MAX_ATTEMPTS") or "").strip()
    try:
        value = int(raw) if raw else 5
    except ValueError:
        value = 5
    return max(1, min(value, 20))


def load_order_for_update(order_id: str) -> Order | None:
    stmt = (
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def apply_outcome(order: Order, outcome: Outcome, now: int) -> None:
    if "workflow_status" in outcome.changes:
        current = stored_status({"workflow_status": order.workflow_status})
        target = outcome.changes["workflow_status"]
        if not is_forward_transition(current, target):
            raise BackwardTransition(order.id, current, target)
    for key, value in outcome.changes.items():
        setattr(order, key, value)
    if outcome.timeline:
        # New list so the JSON column is flagged dirty.
        order.workflow_timeline = list(order.workflow_timeline or []) + [dict(e) for e in outcome.timeline]
    order.updated_at = int(now)


def run_order_transaction(
    order_id: str,
    decide: Callable[[dict, int], Outcome],
    *,
    max_attempts: int | None = None,
) -> tuple[Outcome, dict]:
    """Load, decide, write and commit one order, retrying on stale writes.

    `decide(snapshot, now)` is re-run against fresh state on every attempt,
    with `now` read inside the attempt. Returns the outcome and the order
    snapshot as committed.
    """
    attempts = int(max_attempts or max_txn_attempts())
    for attempt in range(1, attempts + 1):
        try:
            order = load_order_for_update(order_id)
            if order is None:
                raise OrderNotFound(order_id)
            now = clock.now_ms()
            outcome = decide(order.snapshot(), now)
            if outcome.mutates:
                apply_outcome(order, outcome, now)
                db.session.commit()
            else:
                db.session.rollback()
            return outcome, order.snapshot()
        except StaleDataError:
            db.session.rollback()
            logger.warning("order_txn_conflict order_id=%s attempt=%s/%s", order_id, attempt, attempts)
        except Exception:
            db.session.rollback()
            raise
    raise OrderConflict(order_id, attempts)
