# storefront/inventory/reservations.py
"""
Time-boxed stock holds for in-progress checkouts.

A reservation is Active until it is Consumed (payment confirmed: the row is
deleted and the permanent decrement applied in the same transaction) or
Expired (processor expiry signal, or the sweep once ``expires_at`` has
passed). Both end states are row deletion, so repeating either is a no-op.

Available-to-sell for a variant is ``max(0, stock - active holds)``; new
holds are refused when they would exceed it.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from storefront.app_server.metrics import RESERVATIONS_SWEPT
from storefront.contracts.errors import ValidationError
from storefront.db.models import ProductVariant, StockReservation, utcnow
from storefront.inventory.adjuster import stock_expression

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Line:
    variant_id: int
    quantity: int


def merge_lines(lines: Iterable[Line]) -> List[Line]:
    totals: Dict[int, int] = defaultdict(int)
    for ln in lines:
        totals[ln.variant_id] += ln.quantity
    return [Line(v, q) for v, q in sorted(totals.items())]


def reserved_quantities(db: Session, variant_ids: Sequence[int], now: Optional[datetime] = None) -> Dict[int, int]:
    now = now or utcnow()
    if not variant_ids:
        return {}
    rows = db.execute(
        select(StockReservation.variant_id, func.sum(StockReservation.quantity))
        .where(StockReservation.variant_id.in_(list(variant_ids)), StockReservation.expires_at >= now)
        .group_by(StockReservation.variant_id)
    ).all()
    return {int(vid): int(qty or 0) for vid, qty in rows}


def available_stock(db: Session, variant_ids: Sequence[int], now: Optional[datetime] = None) -> Dict[int, int]:
    ids = list({int(v) for v in variant_ids})
    if not ids:
        return {}
    stock = dict(db.execute(select(ProductVariant.id, ProductVariant.stock).where(ProductVariant.id.in_(ids))).all())
    held = reserved_quantities(db, ids, now)
    return {vid: max(0, int(stock[vid] or 0) - held.get(vid, 0)) for vid in stock}


def create_reservations(
    db: Session,
    session_ref: str,
    lines: Sequence[Line],
    *,
    ttl_minutes: int,
    now: Optional[datetime] = None,
) -> List[StockReservation]:
    """Hold stock for every line of one checkout session. Raises if any line is short."""
    now = now or utcnow()
    merged = merge_lines(lines)
    available = available_stock(db, [ln.variant_id for ln in merged], now)

    short = [
        {"variantId": ln.variant_id, "requested": ln.quantity, "available": available.get(ln.variant_id, 0)}
        for ln in merged
        if ln.quantity > available.get(ln.variant_id, 0)
    ]
    if short:
        raise ValidationError("Not enough stock for some items", code="insufficient_stock", details={"items": short})

    expires_at = now + timedelta(minutes=ttl_minutes)
    rows = [
        StockReservation(
            variant_id=ln.variant_id,
            quantity=ln.quantity,
            checkout_session_ref=session_ref,
            expires_at=expires_at,
            created_at=now,
        )
        for ln in merged
    ]
    db.add_all(rows)
    db.flush()
    return rows


def release(db: Session, session_ref: str) -> int:
    """Expire every hold of one session without touching stock."""
    result = db.execute(
        delete(StockReservation)
        .where(StockReservation.checkout_session_ref == session_ref)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


def consume(db: Session, session_ref: str, lines: Sequence[Line]) -> int:
    """
    Turn a session's holds into permanent decrements.

    ``lines`` come from the checkout snapshot rather than the reservation
    rows, so a session whose holds were already swept still decrements.
    Decrements clamp at zero. Returns the number of holds deleted.
    """
    now = utcnow()
    for ln in merge_lines(lines):
        db.execute(
            update(ProductVariant)
            .where(ProductVariant.id == ln.variant_id)
            .values(stock=stock_expression("decrement", ln.quantity), updated_at=now)
            .execution_options(synchronize_session=False)
        )
    return release(db, session_ref)


def sweep_expired(db: Session, now: Optional[datetime] = None) -> int:
    """
    Delete every hold whose ``expires_at`` is before ``now``.

    A single DELETE keyed on the timestamp: concurrent sweeps race
    harmlessly (a row already gone is simply not counted), and holds created
    after ``now`` are never candidates.
    """
    now = now or utcnow()
    result = db.execute(
        delete(StockReservation)
        .where(StockReservation.expires_at < now)
        .execution_options(synchronize_session=False)
    )
    deleted = int(result.rowcount or 0)
    if deleted:
        RESERVATIONS_SWEPT.inc(deleted)
        logger.info("cleaned up %d expired stock reservations", deleted, extra={"context": "reservations.sweep"})
    return deleted
