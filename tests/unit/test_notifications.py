from __future__ import annotations

import httpx
import pytest

from helpers import RecordingEmail, make_order
from storefront.contracts.errors import UpstreamError
from storefront.notifications.dispatch import NotificationDispatcher, OrderNotifier
from storefront.notifications.email import (
    RESEND_URL,
    EmailClient,
    render_order_confirmation,
    render_shipping_confirmation,
)
from storefront.orders import events
from storefront.orders.lifecycle import get_order, order_snapshot


def test_unconfigured_client_skips() -> None:
    assert EmailClient("", "shop@example.com").send("a@b.co", "Hi", "<p>x</p>") is False


def test_client_posts_to_resend() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"id": "em_1"})

    client = EmailClient("re_key", "shop@example.com", transport=httpx.MockTransport(handler))
    assert client.send("a@b.co", "Hi", "<p>x</p>") is True
    assert seen == {"url": RESEND_URL, "auth": "Bearer re_key"}


def test_client_raises_on_rejection() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(422, text="bad address"))
    client = EmailClient("re_key", "shop@example.com", transport=transport)
    with pytest.raises(UpstreamError) as e:
        client.send("nope", "Hi", "<p>x</p>")
    assert e.value.details["status"] == 422


def test_templates_escape_and_include_totals() -> None:
    order = {
        "orderNumber": "SF-1",
        "subtotal": 20.0,
        "discountAmount": 2.0,
        "shippingCost": 3.8,
        "total": 21.8,
        "shippingAddress": '{"name": "Ada Lovelace"}',
        "trackingNumber": "RM1",
        "items": [{"productName": "<Tea>", "variantName": "100g", "quantity": 2, "price": 10.0}],
    }
    subject, body = render_order_confirmation(order, "http://shop.test/order/SF-1?token=t")
    assert subject == "Order Confirmed - SF-1"
    assert "&lt;Tea&gt;" in body and "£21.80" in body and "-£2.00" in body

    subject, body = render_shipping_confirmation(order)
    assert subject.startswith("Your Order Has Shipped!")
    assert "Hi Ada," in body and "RM1" in body


def test_dispatcher_swallows_failures() -> None:
    ran = []

    def boom() -> bool:
        ran.append(1)
        raise RuntimeError("smtp down")

    NotificationDispatcher(workers=0).enqueue("test", boom)
    assert ran == [1]


def test_dispatcher_runs_on_pool() -> None:
    d = NotificationDispatcher(workers=1)
    ran = []
    d.enqueue("test", ran.append, 7)
    d.shutdown(wait=True)
    assert ran == [7]
    # after shutdown jobs are dropped, not raised
    d.enqueue("test", ran.append, 8)
    assert ran == [7]


def test_order_notifier_records_email_sent(db, session_factory) -> None:
    o = make_order(db)
    email = RecordingEmail()
    notifier = OrderNotifier(NotificationDispatcher(workers=0), email, session_factory, public_url="http://shop.test/")
    notifier.order_confirmed(order_snapshot(get_order(db, o.id)), "tok")

    assert email.sent[0]["to"] == "buyer@example.com"
    assert "http://shop.test/order/SF-20260101-001?token=tok" in email.sent[0]["html"]
    db.expire_all()
    assert [e.event for e in events.list_events(db, o.id)] == ["email_sent"]


def test_order_notifier_skips_event_when_not_sent(db, session_factory) -> None:
    o = make_order(db)
    notifier = OrderNotifier(NotificationDispatcher(workers=0), EmailClient("", "x@y.z"), session_factory)
    notifier.order_shipped(order_snapshot(get_order(db, o.id)))
    assert events.list_events(db, o.id) == []
