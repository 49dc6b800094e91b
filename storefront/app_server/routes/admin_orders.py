# storefront/app_server/routes/admin_orders.py
from __future__ import annotations

import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field
from sqlalchemy.orm import Session

from storefront.contracts.models import CamelModel
from storefront.db.session import get_db, transaction
from storefront.orders import lifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/orders", tags=["admin:orders"])

OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled", "refunded"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]


# ---------- Schemas ----------


class BulkStatusIn(CamelModel):
    order_ids: List[int] = Field(min_length=1)
    status: OrderStatus


class OrderPatchIn(CamelModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    tracking_number: Optional[str] = Field(default=None, max_length=255)
    tracking_url: Optional[str] = Field(default=None, max_length=1024)
    internal_notes: Optional[str] = None


# ---------- Routes ----------


@router.get("")
def list_orders(
    status: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return {"ok": True, **lifecycle.list_orders(db, status=status, page=page, limit=limit)}


# declared before /{order_id} so "bulk" is not parsed as an id
@router.patch("/bulk")
def bulk_update(body: BulkStatusIn, request: Request, db: Session = Depends(get_db)):
    with transaction(db):
        result = lifecycle.bulk_transition(db, body.order_ids, body.status)
        to_notify = [lifecycle.order_snapshot(o) for o in result.newly_shipped]

    notifier = request.app.state.order_notifier
    for snap in to_notify:
        notifier.order_shipped(snap)

    logger.info(
        "bulk status %s: %d targeted, %d changed",
        body.status,
        result.updated_count,
        len(result.changed),
        extra={"context": "orders.bulk"},
    )
    return {"ok": True, "success": True, "updatedCount": result.updated_count, "changedCount": len(result.changed)}


@router.get("/{order_id}")
def get_order(order_id: int, db: Session = Depends(get_db)):
    return {"ok": True, "order": lifecycle.order_detail(lifecycle.get_order(db, order_id))}


@router.patch("/{order_id}")
def update_order(order_id: int, body: OrderPatchIn, request: Request, db: Session = Depends(get_db)):
    changes = body.model_dump(exclude_unset=True)
    with transaction(db):
        result = lifecycle.update_order(db, order_id, changes)
        detail = lifecycle.order_detail(result.order)
        snap = lifecycle.order_snapshot(result.order) if result.newly_shipped else None

    if snap is not None:
        request.app.state.order_notifier.order_shipped(snap)
    return {"ok": True, "order": detail}
