# tests/helpers.py
from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any, Dict, List, Optional

from jose import jwt

from storefront.contracts.errors import UpstreamError
from storefront.db.models import Category, DiscountCode, Order, OrderItem, Product, ProductVariant, utcnow
from storefront.payments.gateway import PaymentGateway

JWT_SECRET = "test-jwt-secret"
WEBHOOK_SECRET = "whsec_test_secret"
ORDER_TOKEN_SECRET = "test-order-token-secret"


class FakeGateway(PaymentGateway):
    """Real webhook verification, canned checkout sessions."""

    def __init__(self, fail: bool = False) -> None:
        super().__init__("", WEBHOOK_SECRET, "gbp")
        self.fail = fail
        self.sessions: List[Dict[str, Any]] = []
        self.coupons: List[tuple] = []

    def ensure_coupon(self, code: str, discount_type: str, value: float) -> str:
        self.coupons.append((code, discount_type, value))
        return f"sf_{code.lower()}"

    def create_checkout_session(self, **kwargs: Any) -> Dict[str, Any]:
        if self.fail:
            raise UpstreamError("Failed to create checkout session", code="payment_provider_failed")
        self.sessions.append(kwargs)
        sid = f"cs_test_{len(self.sessions)}"
        return {"id": sid, "url": f"https://checkout.test/{sid}"}


class RecordingEmail:
    configured = True

    def __init__(self) -> None:
        self.sent: List[Dict[str, str]] = []

    def send(self, to: str, subject: str, html_body: str) -> bool:
        self.sent.append({"to": to, "subject": subject, "html": html_body})
        return True


def admin_headers(sub: str = "admin-1", secret: str = JWT_SECRET) -> Dict[str, str]:
    token = jwt.encode({"sub": sub}, secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode("utf-8") + payload
    sig = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def stripe_event(event_type: str, obj: Dict[str, Any]) -> bytes:
    body = {"id": "evt_test", "object": "event", "type": event_type, "data": {"object": obj}}
    return json.dumps(body).encode("utf-8")


# ---------- builders (each commits) ----------


def make_category(db, slug: str = "teas", name: str = "Teas", parent_id: Optional[int] = None, position: int = 0):
    cat = Category(name=name, slug=slug, parent_id=parent_id, position=position, status="active")
    db.add(cat)
    db.commit()
    return cat


def make_product(
    db,
    slug: str = "earl-grey",
    name: str = "Earl Grey",
    *,
    price: float = 10.0,
    stock: int = 5,
    weight_grams: int = 200,
    status: str = "active",
    featured: bool = False,
    category_id: Optional[int] = None,
    variants: Optional[List[Dict[str, Any]]] = None,
    description: Optional[str] = None,
) -> Product:
    now = utcnow()
    p = Product(
        slug=slug,
        name=name,
        description=description,
        base_price=price,
        status=status,
        featured=featured,
        category_id=category_id,
        created_at=now,
        updated_at=now,
    )
    specs = variants or [{"name": "100g"}]
    for i, v in enumerate(specs):
        p.variants.append(
            ProductVariant(
                name=v["name"],
                sku=v.get("sku"),
                price=v.get("price", price),
                stock=v.get("stock", stock),
                weight_grams=v.get("weight_grams", weight_grams),
                position=i,
            )
        )
    db.add(p)
    db.commit()
    return p


def make_discount(db, code: str = "SAVE10", type: str = "percentage", value: float = 10.0, **kw: Any) -> DiscountCode:
    kw.setdefault("uses_count", 0)
    kw.setdefault("active", True)
    dc = DiscountCode(code=code, type=type, value=value, **kw)
    db.add(dc)
    db.commit()
    return dc


def make_order(
    db,
    number: str = "SF-20260101-001",
    *,
    status: str = "pending",
    email: str = "buyer@example.com",
    total: float = 20.0,
) -> Order:
    now = utcnow()
    o = Order(
        order_number=number,
        email=email,
        status=status,
        payment_status="paid",
        subtotal=total,
        shipping_cost=0.0,
        discount_amount=0.0,
        tax_amount=0.0,
        total=total,
        currency="GBP",
        shipping_method="Evri",
        shipping_address=json.dumps({"name": "Ada Lovelace", "city": "London", "country": "GB"}),
        created_at=now,
        updated_at=now,
    )
    o.items.append(OrderItem(product_name="Earl Grey", variant_name="100g", quantity=2, price=total / 2))
    db.add(o)
    db.commit()
    return o
