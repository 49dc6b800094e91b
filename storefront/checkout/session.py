# storefront/checkout/session.py
"""
Checkout: open a payment session with stock held, then turn the processor's
completion (or expiry) notice into an order (or released stock).

Opening runs in two committed steps around the processor call so no
database transaction stays open across the network round trip:

  1. price the lines, evaluate the discount, quote shipping, hold stock,
     persist the CheckoutSession (status ``open``)      -> commit
  2. create the processor session; on failure release the holds and mark
     the CheckoutSession ``failed``                      -> commit

Completion is idempotent on the CheckoutSession ref: a second delivery of
the same event finds the session already ``completed`` and does nothing.
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from storefront.app_server.metrics import ORDERS_CREATED
from storefront.config import Settings
from storefront.contracts.errors import StorefrontError, ValidationError
from storefront.db.models import CheckoutSession, Order, OrderItem, Product, ProductVariant, as_utc_naive, utcnow
from storefront.db.session import transaction
from storefront.discounts import evaluator
from storefront.inventory import reservations
from storefront.inventory.reservations import Line
from storefront.orders import events, lifecycle
from storefront.payments.gateway import PaymentGateway, from_minor, to_minor
from storefront.settings import store as settings_store
from storefront.shipping import resolver

logger = logging.getLogger(__name__)

STRIPE_MIN_EXPIRY_MINUTES = 30


@dataclass(frozen=True)
class PricedCart:
    lines: List[Dict[str, Any]]
    subtotal: float
    weight_grams: int


def price_lines(db: Session, lines: Sequence[Line]) -> PricedCart:
    merged = reservations.merge_lines(lines)
    if not merged:
        raise ValidationError("Cart is empty", code="empty_cart")
    for ln in merged:
        if ln.quantity < 1:
            raise ValidationError("Quantity must be at least 1", code="invalid_quantity", details={"variantId": ln.variant_id})

    variants = {
        v.id: v
        for v in db.execute(
            select(ProductVariant)
            .where(ProductVariant.id.in_([ln.variant_id for ln in merged]))
            .options(selectinload(ProductVariant.product).selectinload(Product.images))
        ).scalars()
    }

    snapshots: List[Dict[str, Any]] = []
    subtotal = 0.0
    weight = 0
    for ln in merged:
        v = variants.get(ln.variant_id)
        if v is None or v.product is None or v.product.status != "active":
            name = v.product.name if v is not None and v.product is not None else "Unknown"
            raise ValidationError(
                f'Product "{name}" is no longer available',
                code="product_unavailable",
                details={"variantId": ln.variant_id},
            )
        subtotal += v.price * ln.quantity
        weight += (v.weight_grams if v.weight_grams is not None else 100) * ln.quantity
        snapshots.append(
            {
                "variantId": v.id,
                "quantity": ln.quantity,
                "productName": v.product.name,
                "variantName": v.name,
                "sku": v.sku,
                "price": v.price,
                "weightGrams": v.weight_grams,
                "image": v.product.images[0].url if v.product.images else None,
            }
        )
    return PricedCart(lines=snapshots, subtotal=evaluator.round_money(subtotal), weight_grams=weight)


def _line_items(cart: PricedCart, currency: str) -> List[Dict[str, Any]]:
    items = []
    for s in cart.lines:
        product_data: Dict[str, Any] = {"name": s["productName"]}
        if s["variantName"] and s["variantName"] != s["productName"]:
            product_data["description"] = s["variantName"]
        if s["image"]:
            product_data["images"] = [s["image"]]
        items.append(
            {
                "price_data": {"currency": currency, "product_data": product_data, "unit_amount": to_minor(s["price"])},
                "quantity": s["quantity"],
            }
        )
    return items


def _delivery_estimate(days: Optional[str]) -> Dict[str, Any]:
    lo, hi = 3, 7
    if days:
        bits = [b.strip() for b in days.split("-")]
        try:
            lo = int(bits[0])
            hi = int(bits[-1])
        except ValueError:
            pass
    return {"minimum": {"unit": "business_day", "value": lo}, "maximum": {"unit": "business_day", "value": hi}}


def _shipping_option(name: str, price: float, currency: str, days: Optional[str], metadata: Dict[str, str]) -> Dict[str, Any]:
    return {
        "shipping_rate_data": {
            "type": "fixed_amount",
            "fixed_amount": {"amount": to_minor(price), "currency": currency},
            "display_name": name,
            "delivery_estimate": _delivery_estimate(days),
            "metadata": metadata,
        }
    }


def open_checkout(
    db: Session,
    gateway: PaymentGateway,
    settings: Settings,
    *,
    lines: Sequence[Line],
    country: str,
    email: Optional[str] = None,
    discount_code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = as_utc_naive(now) or utcnow()
    country = (country or "").strip().upper()
    currency = settings.currency
    ref = uuid.uuid4().hex

    with transaction(db):
        cart = price_lines(db, lines)

        discount: Optional[evaluator.DiscountResult] = None
        if discount_code:
            discount = evaluator.evaluate(db, discount_code, cart.subtotal, now)

        free = settings_store.get_free_shipping(db)
        if free.applies_to(cart.subtotal):
            shipping_cost = 0.0
            shipping_method = f"Free shipping (over £{free.threshold:g})"
            options = [_shipping_option(shipping_method, 0.0, currency, None, {"free": "true"})]
        else:
            quote = resolver.resolve(db, country, cart.weight_grams)
            shipping_cost = quote.price
            shipping_method = quote.name
            options = [
                _shipping_option(
                    q.name,
                    q.price,
                    currency,
                    q.estimated_days,
                    {"zone_id": str(q.zone_id), "rate_id": str(q.rate_id), "zone_name": q.zone_name},
                )
                for q in resolver.quote_options(db, country, cart.weight_grams)
            ]

        reservations.create_reservations(
            db,
            ref,
            [Line(s["variantId"], s["quantity"]) for s in cart.lines],
            ttl_minutes=settings.checkout_reservation_minutes,
            now=now,
        )
        cs = CheckoutSession(
            ref=ref,
            lines=json.dumps(cart.lines),
            email=email,
            country=country,
            discount_code_id=discount.discount_id if discount else None,
            subtotal=cart.subtotal,
            discount_amount=discount.amount if discount else 0.0,
            shipping_cost=shipping_cost,
            shipping_method=shipping_method,
            status="open",
            created_at=now,
            updated_at=now,
        )
        db.add(cs)

    try:
        coupon_id = gateway.ensure_coupon(discount.code, discount.type, discount.value) if discount else None
        expiry = now + timedelta(minutes=max(settings.checkout_reservation_minutes, STRIPE_MIN_EXPIRY_MINUTES))
        processor = gateway.create_checkout_session(
            line_items=_line_items(cart, currency),
            shipping_options=options,
            allowed_countries=[country],
            success_url=f"{settings.public_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.public_url}/cart",
            metadata={"checkoutRef": ref},
            customer_email=email,
            coupon_id=coupon_id,
            expires_at=int(expiry.replace(tzinfo=timezone.utc).timestamp()),
        )
    except StorefrontError:
        with transaction(db):
            reservations.release(db, ref)
            cs.status = "failed"
            cs.updated_at = utcnow()
        raise

    with transaction(db):
        cs.processor_session_id = processor["id"]
        cs.updated_at = utcnow()

    total = evaluator.round_money(cart.subtotal - cs.discount_amount + shipping_cost)
    return {
        "sessionId": processor["id"],
        "url": processor.get("url"),
        "checkoutRef": ref,
        "subtotal": cart.subtotal,
        "discountAmount": cs.discount_amount,
        "shippingCost": shipping_cost,
        "shippingMethod": shipping_method,
        "total": total,
        "reservedUntil": (now + timedelta(minutes=settings.checkout_reservation_minutes)).isoformat(),
    }


# --- processor notifications ------------------------------------------------


def checkout_ref(obj: Dict[str, Any]) -> Optional[str]:
    return ((obj.get("metadata") or {}).get("checkoutRef") or "").strip() or None


def _find_session(db: Session, ref: str) -> Optional[CheckoutSession]:
    return db.execute(select(CheckoutSession).where(CheckoutSession.ref == ref)).scalar_one_or_none()


def order_for_ref(db: Session, ref: str) -> Optional[Order]:
    return db.execute(select(Order).where(Order.checkout_session_ref == ref)).scalar_one_or_none()


def _shipping_address(obj: Dict[str, Any]) -> str:
    collected = ((obj.get("collected_information") or {}).get("shipping_details")) or {}
    customer = obj.get("customer_details") or {}
    addr = collected.get("address") or customer.get("address") or {}
    name = collected.get("name") or customer.get("name")
    return json.dumps(
        {
            "name": name,
            "line1": addr.get("line1"),
            "line2": addr.get("line2"),
            "city": addr.get("city"),
            "state": addr.get("state"),
            "postalCode": addr.get("postal_code"),
            "country": addr.get("country"),
        }
    )


def complete_checkout(db: Session, obj: Dict[str, Any], settings: Settings) -> Optional[Order]:
    """
    Consume a paid session: create the order, its items and events, apply
    the permanent decrements, count the discount use and drop the holds.

    Runs inside the caller's transaction. Returns None when there is
    nothing to do (unknown ref, or the session was already consumed).
    """
    ref = checkout_ref(obj)
    if not ref:
        logger.error("no checkoutRef in session metadata: %s", obj.get("id"), extra={"context": "checkout.complete"})
        return None
    cs = _find_session(db, ref)
    if cs is None:
        logger.error("checkout session not found: %s", ref, extra={"context": "checkout.complete"})
        return None
    existing = db.execute(select(Order.id).where(Order.checkout_session_ref == ref)).first()
    if cs.status == "completed" or existing is not None:
        logger.info("order already exists for session %s", ref, extra={"context": "checkout.complete"})
        return None

    snapshot: List[Dict[str, Any]] = json.loads(cs.lines or "[]")
    now = utcnow()

    subtotal = from_minor(obj["amount_subtotal"]) if obj.get("amount_subtotal") is not None else cs.subtotal
    shipping_cost = (
        from_minor((obj.get("shipping_cost") or {}).get("amount_total"))
        if obj.get("shipping_cost")
        else cs.shipping_cost
    )
    discount_amount = (
        from_minor((obj.get("total_details") or {}).get("amount_discount"))
        if obj.get("total_details")
        else cs.discount_amount
    )
    total = (
        from_minor(obj["amount_total"])
        if obj.get("amount_total") is not None
        else evaluator.round_money(subtotal - discount_amount + shipping_cost)
    )
    email = ((obj.get("customer_details") or {}).get("email")) or cs.email or ""

    order = Order(
        order_number=lifecycle.next_order_number(db, settings.order_number_prefix, now),
        email=email,
        status="pending",
        payment_status="paid",
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        discount_amount=discount_amount,
        tax_amount=0.0,
        total=total,
        currency=settings.currency.upper(),
        discount_code_id=cs.discount_code_id,
        shipping_method=cs.shipping_method or "Standard Shipping",
        shipping_address=_shipping_address(obj),
        checkout_session_ref=ref,
        payment_intent_ref=obj.get("payment_intent"),
        created_at=now,
        updated_at=now,
    )
    for s in snapshot:
        order.items.append(
            OrderItem(
                variant_id=s["variantId"],
                product_name=s["productName"],
                variant_name=s.get("variantName"),
                sku=s.get("sku"),
                quantity=s["quantity"],
                price=s["price"],
                weight_grams=s.get("weightGrams"),
            )
        )
    db.add(order)
    db.flush()

    consumed = reservations.consume(db, ref, [Line(s["variantId"], s["quantity"]) for s in snapshot])
    if cs.discount_code_id is not None:
        evaluator.record_use(db, cs.discount_code_id)

    events.record_event(db, order.id, events.CREATED, {"orderNumber": order.order_number, "checkoutRef": ref})
    events.record_event(db, order.id, events.PAID, {"amount": total, "paymentIntent": order.payment_intent_ref})
    events.record_event(
        db,
        order.id,
        events.STOCK_UPDATED,
        {"items": [{"variantId": s["variantId"], "quantity": -s["quantity"]} for s in snapshot], "holdsReleased": consumed},
    )

    cs.status = "completed"
    cs.updated_at = now
    db.flush()
    ORDERS_CREATED.inc()
    logger.info("order created: %s", order.order_number, extra={"context": "checkout.complete"})
    return order


def expire_checkout(db: Session, obj: Dict[str, Any]) -> int:
    """Release the holds of an abandoned session. Returns holds deleted."""
    ref = checkout_ref(obj)
    if not ref:
        logger.info("checkout session expired without checkoutRef: %s", obj.get("id"), extra={"context": "checkout.expire"})
        return 0
    cs = _find_session(db, ref)
    if cs is not None and cs.status != "open":
        return 0
    released = reservations.release(db, ref)
    if cs is not None:
        cs.status = "expired"
        cs.updated_at = utcnow()
    logger.info("checkout session expired: %s (%d holds released)", ref, released, extra={"context": "checkout.expire"})
    return released
