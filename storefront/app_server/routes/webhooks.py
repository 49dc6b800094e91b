# storefront/app_server/routes/webhooks.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from storefront.checkout import session as checkout
from storefront.contracts.errors import StorefrontError
from storefront.db.models import Order
from storefront.db.session import transaction
from storefront.orders.lifecycle import order_snapshot
from storefront.orders.tokens import generate_order_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

ORDER_INSERT_ATTEMPTS = 3


def _complete(db: Session, obj: Dict[str, Any], settings) -> Optional[Order]:
    """
    Run complete_checkout, telling a redelivery apart from a lost insert race.

    An IntegrityError is a duplicate only when an order for the checkout ref
    now exists. Otherwise another session took our order number: try again,
    and if that keeps happening raise so the processor retries the event.
    """
    ref = checkout.checkout_ref(obj)
    for attempt in range(1, ORDER_INSERT_ATTEMPTS + 1):
        try:
            with transaction(db):
                return checkout.complete_checkout(db, obj, settings)
        except IntegrityError as e:
            if ref and checkout.order_for_ref(db, ref) is not None:
                logger.info("duplicate completion for %s", obj.get("id"), extra={"context": "webhooks.stripe"})
                return None
            logger.warning(
                "order insert conflict for %s (attempt %d): %s",
                ref,
                attempt,
                e.orig,
                extra={"context": "webhooks.stripe"},
            )
    raise StorefrontError(
        "Could not record the order for this checkout",
        code="order_not_recorded",
        details={"checkoutRef": ref},
    )


def _handle_event(app: FastAPI, event: Dict[str, Any]) -> None:
    etype = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    settings = app.state.settings

    db = app.state.session_factory()
    try:
        if etype == "checkout.session.completed":
            order = _complete(db, obj, settings)
            if order is not None:
                token = generate_order_token(settings.order_token_secret, order.id, order.email)
                app.state.order_notifier.order_confirmed(order_snapshot(order), token)
        elif etype == "checkout.session.expired":
            with transaction(db):
                checkout.expire_checkout(db, obj)
        elif etype == "payment_intent.payment_failed":
            logger.info("payment failed: %s", obj.get("id"), extra={"context": "webhooks.stripe"})
        else:
            logger.info("unhandled event type: %s", etype, extra={"context": "webhooks.stripe"})
    finally:
        db.close()


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request):
    payload = await request.body()
    event = request.app.state.payment_gateway.construct_event(payload, request.headers.get("stripe-signature"))
    await run_in_threadpool(_handle_event, request.app, event)
    return {"ok": True, "received": True}
