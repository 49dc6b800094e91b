# storefront/orders/lifecycle.py
"""
Order status state machine.

    pending -> processing -> shipped -> delivered
        \\___________\\___________\\____> cancelled | refunded

Forward moves may skip steps (pending -> shipped). Nothing moves backwards,
and delivered / cancelled / refunded are terminal. Asking for the status an
order already has is a no-op: no event, no timestamp change.

Every applied transition appends a ``status_changed`` event {from, to}.
Callers enqueue notifications only after their transaction commits.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from storefront.contracts.errors import NotFoundError, ValidationError
from storefront.contracts.paging import pagination
from storefront.db.models import ORDER_STATUSES, PAYMENT_STATUSES, Order, utcnow
from storefront.orders import events

logger = logging.getLogger(__name__)

_FORWARD = ("pending", "processing", "shipped", "delivered")
_SIDE_EXITS = ("cancelled", "refunded")
TERMINAL = frozenset({"delivered", "cancelled", "refunded"})


def can_transition(current: str, target: str) -> bool:
    if target not in ORDER_STATUSES:
        return False
    if current == target:
        return True
    if current in TERMINAL:
        return False
    if target in _SIDE_EXITS:
        return True
    if current in _FORWARD and target in _FORWARD:
        return _FORWARD.index(target) > _FORWARD.index(current)
    return False


def _apply(db: Session, order: Order, target: str, now: datetime) -> bool:
    current = order.status
    if current == target:
        return False
    order.status = target
    order.updated_at = now
    if target == "shipped" and order.shipped_at is None:
        order.shipped_at = now
    if target == "delivered" and order.delivered_at is None:
        order.delivered_at = now
    events.record_event(db, order.id, events.STATUS_CHANGED, {"from": current, "to": target})
    return True


def transition(db: Session, order: Order, target: str, now: Optional[datetime] = None) -> bool:
    """Move one order to ``target``. Returns True if the status actually changed."""
    if target not in ORDER_STATUSES:
        raise ValidationError(f"Unknown status {target!r}", code="invalid_status")
    if not can_transition(order.status, target):
        raise ValidationError(
            f"Cannot move order from {order.status} to {target}",
            code="invalid_transition",
            details={"orderId": order.id, "from": order.status, "to": target},
        )
    return _apply(db, order, target, now or utcnow())


@dataclass
class BulkResult:
    updated_count: int = 0
    changed: List[Order] = field(default_factory=list)
    newly_shipped: List[Order] = field(default_factory=list)


def bulk_transition(db: Session, order_ids: Sequence[int], target: str, now: Optional[datetime] = None) -> BulkResult:
    """
    Apply one target status to many orders, all or nothing.

    Every id must exist and every move must be legal before anything is
    written; otherwise NotFoundError / ValidationError and no order changes.
    ``updated_count`` counts targeted orders, including ones already at the
    target status.
    """
    ids = sorted({int(i) for i in order_ids})
    if not ids:
        raise ValidationError("At least one order ID required", code="no_targets")
    if target not in ORDER_STATUSES:
        raise ValidationError(f"Unknown status {target!r}", code="invalid_status")

    found = list(db.execute(select(Order).where(Order.id.in_(ids)).order_by(Order.id)).scalars())
    missing = sorted(set(ids) - {o.id for o in found})
    if missing:
        raise NotFoundError("Orders not found", code="orders_not_found", details={"orderIds": missing})

    illegal = [{"orderId": o.id, "from": o.status} for o in found if not can_transition(o.status, target)]
    if illegal:
        raise ValidationError(
            f"Some orders cannot move to {target}",
            code="invalid_transition",
            details={"to": target, "orders": illegal},
        )

    now = now or utcnow()
    result = BulkResult(updated_count=len(found))
    for order in found:
        if _apply(db, order, target, now):
            result.changed.append(order)
            if target == "shipped":
                result.newly_shipped.append(order)
    db.flush()
    return result


@dataclass
class UpdateResult:
    order: Order
    newly_shipped: bool = False


def update_order(db: Session, order_id: int, changes: Dict[str, Any], now: Optional[datetime] = None) -> UpdateResult:
    """
    Partial admin update. Recognised keys: status, payment_status,
    tracking_number, tracking_url, internal_notes.
    """
    order = get_order(db, order_id)
    now = now or utcnow()
    newly_shipped = False

    if changes.get("status") is not None:
        newly_shipped = transition(db, order, changes["status"], now) and changes["status"] == "shipped"

    if changes.get("payment_status") is not None:
        ps = changes["payment_status"]
        if ps not in PAYMENT_STATUSES:
            raise ValidationError(f"Unknown payment status {ps!r}", code="invalid_payment_status")
        order.payment_status = ps

    for key in ("tracking_number", "tracking_url"):
        if key in changes:
            setattr(order, key, changes[key])

    if "internal_notes" in changes and changes["internal_notes"] != order.internal_notes:
        order.internal_notes = changes["internal_notes"]
        if changes["internal_notes"]:
            events.record_event(db, order.id, events.NOTE_ADDED, {"note": changes["internal_notes"]})

    order.updated_at = now
    db.flush()
    db.expire(order, ["events"])
    return UpdateResult(order=order, newly_shipped=newly_shipped)


# --- queries ----------------------------------------------------------------


def get_order(db: Session, order_id: int) -> Order:
    order = db.execute(
        select(Order).where(Order.id == order_id).options(selectinload(Order.items), selectinload(Order.events))
    ).scalar_one_or_none()
    if order is None:
        raise NotFoundError("Order not found")
    return order


def get_order_by_number(db: Session, order_number: str) -> Optional[Order]:
    return db.execute(
        select(Order).where(Order.order_number == order_number).options(selectinload(Order.items))
    ).scalar_one_or_none()


def list_orders(db: Session, *, status: Optional[str] = None, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    page = max(1, page)
    limit = max(1, min(limit, 100))
    stmt = select(Order)
    count_stmt = select(func.count(Order.id))
    if status:
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Unknown status {status!r}", code="invalid_status")
        stmt = stmt.where(Order.status == status)
        count_stmt = count_stmt.where(Order.status == status)
    total = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        stmt.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * limit).limit(limit)
    ).scalars()
    return {
        "orders": [order_summary(o) for o in rows],
        "pagination": pagination(page, limit, total),
    }


def next_order_number(db: Session, prefix: str, now: Optional[datetime] = None) -> str:
    """``{prefix}-{YYYYMMDD}-{NNN}``; NNN is one more than the orders created so far that UTC day."""
    now = now or utcnow()
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    count = int(db.execute(select(func.count(Order.id)).where(Order.created_at >= day_start)).scalar_one())
    stem = f"{prefix}-{now:%Y%m%d}-"
    seq = count + 1
    # a deleted or out-of-order row can make count+1 collide; walk forward
    while db.execute(select(Order.id).where(Order.order_number == f"{stem}{seq:03d}")).first() is not None:
        seq += 1
    return f"{stem}{seq:03d}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def order_summary(o: Order) -> Dict[str, Any]:
    return {
        "id": o.id,
        "orderNumber": o.order_number,
        "email": o.email,
        "status": o.status,
        "paymentStatus": o.payment_status,
        "subtotal": o.subtotal,
        "shippingCost": o.shipping_cost,
        "discountAmount": o.discount_amount,
        "taxAmount": o.tax_amount,
        "total": o.total,
        "currency": o.currency,
        "createdAt": _iso(o.created_at),
        "shippedAt": _iso(o.shipped_at),
        "deliveredAt": _iso(o.delivered_at),
    }


def order_snapshot(o: Order) -> Dict[str, Any]:
    """Plain-dict copy of an order and its items; safe to hand to another thread."""
    out = order_summary(o)
    out.update(
        {
            "shippingMethod": o.shipping_method,
            "shippingAddress": o.shipping_address,
            "trackingNumber": o.tracking_number,
            "trackingUrl": o.tracking_url,
            "items": [
                {
                    "id": it.id,
                    "variantId": it.variant_id,
                    "productName": it.product_name,
                    "variantName": it.variant_name,
                    "sku": it.sku,
                    "quantity": it.quantity,
                    "price": it.price,
                }
                for it in o.items
            ],
        }
    )
    return out


def order_detail(o: Order) -> Dict[str, Any]:
    out = order_snapshot(o)
    address: Any = None
    if o.shipping_address:
        try:
            address = json.loads(o.shipping_address)
        except ValueError:
            address = o.shipping_address
    out["shippingAddress"] = address
    out["internalNotes"] = o.internal_notes
    out["updatedAt"] = _iso(o.updated_at)
    out["events"] = [events.event_to_dict(e) for e in o.events]
    return out
