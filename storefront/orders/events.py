# storefront/orders/events.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.db.models import OrderEvent, utcnow

logger = logging.getLogger(__name__)

CREATED = "created"
PAID = "paid"
STOCK_UPDATED = "stock_updated"
EMAIL_SENT = "email_sent"
NOTE_ADDED = "note_added"
STATUS_CHANGED = "status_changed"

EVENT_KINDS = frozenset({CREATED, PAID, STOCK_UPDATED, EMAIL_SENT, NOTE_ADDED, STATUS_CHANGED})


def record_event(db: Session, order_id: int, kind: str, data: Optional[Dict[str, Any]] = None) -> OrderEvent:
    """Append one event. Events are insert-only; nothing here updates or deletes them."""
    if kind not in EVENT_KINDS:
        raise ValueError(f"unknown order event kind: {kind}")
    ev = OrderEvent(
        order_id=order_id,
        event=kind,
        data=json.dumps(data, default=str) if data is not None else None,
        created_at=utcnow(),
    )
    db.add(ev)
    return ev


def list_events(db: Session, order_id: int) -> List[OrderEvent]:
    return list(
        db.execute(select(OrderEvent).where(OrderEvent.order_id == order_id).order_by(OrderEvent.id)).scalars()
    )


def event_to_dict(ev: OrderEvent) -> Dict[str, Any]:
    data: Any = None
    if ev.data:
        try:
            data = json.loads(ev.data)
        except ValueError:
            data = ev.data
    return {
        "id": ev.id,
        "event": ev.event,
        "data": data,
        "createdAt": ev.created_at.isoformat() if ev.created_at else None,
    }
