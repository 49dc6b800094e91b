# storefront/notifications/email.py
from __future__ import annotations

import html
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from storefront.contracts.errors import UpstreamError

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"


class EmailClient:
    """Thin Resend API client. Without an API key every send is logged and skipped."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def send(self, to: str, subject: str, html_body: str) -> bool:
        if not self.configured:
            logger.info("email not configured, skipping %r", subject, extra={"context": "email.send"})
            return False

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.post(
                    RESEND_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"from": self.sender, "to": [to], "subject": subject, "html": html_body},
                )
        except httpx.HTTPError as e:
            raise UpstreamError(f"email provider unreachable: {e}", code="email_failed") from e

        if resp.status_code >= 400:
            raise UpstreamError(
                f"email provider rejected message ({resp.status_code})",
                code="email_failed",
                details={"status": resp.status_code, "body": resp.text[:500]},
            )
        return True


def _address(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("could not parse shipping address", extra={"context": "email.render"})
        return {}
    return data if isinstance(data, dict) else {}


def _money(v: float) -> str:
    return f"£{v:.2f}"


def _items_table(items: List[Dict[str, Any]], with_price: bool) -> str:
    rows = []
    for it in items:
        name = html.escape(it.get("productName") or "")
        variant = it.get("variantName")
        if variant:
            name += f" <small>({html.escape(variant)})</small>"
        cells = f"<td>{name}</td><td>{int(it.get('quantity') or 0)}</td>"
        if with_price:
            cells += f"<td>{_money(float(it.get('price') or 0) * int(it.get('quantity') or 0))}</td>"
        rows.append(f"<tr>{cells}</tr>")
    return "<table>" + "".join(rows) + "</table>"


def render_order_confirmation(order: Dict[str, Any], tracking_link: Optional[str] = None) -> tuple[str, str]:
    subject = f"Order Confirmed - {order['orderNumber']}"
    parts = [
        f"<h1>Thank you for your order</h1><p>Order <strong>{html.escape(order['orderNumber'])}</strong></p>",
        _items_table(order.get("items") or [], with_price=True),
        f"<p>Subtotal: {_money(order['subtotal'])}</p>",
    ]
    if order.get("discountAmount"):
        parts.append(f"<p>Discount: -{_money(order['discountAmount'])}</p>")
    parts.append(f"<p>Shipping: {_money(order.get('shippingCost') or 0)}</p>")
    parts.append(f"<p><strong>Total: {_money(order['total'])}</strong></p>")
    if tracking_link:
        parts.append(f'<p><a href="{html.escape(tracking_link)}">View your order</a></p>')
    return subject, "".join(parts)


def render_shipping_confirmation(order: Dict[str, Any]) -> tuple[str, str]:
    subject = f"Your Order Has Shipped! - {order['orderNumber']}"
    addr = _address(order.get("shippingAddress"))
    first_name = (addr.get("name") or "").split(" ")[0]
    greeting = f"Hi {html.escape(first_name)}," if first_name else "Hi,"
    parts = [
        f"<p>{greeting}</p><p>Order <strong>{html.escape(order['orderNumber'])}</strong> is on its way.</p>",
        f"<p>Shipping method: {html.escape(order.get('shippingMethod') or 'Standard Shipping')}</p>",
    ]
    tracking = order.get("trackingNumber")
    if tracking:
        url = order.get("trackingUrl")
        label = html.escape(tracking)
        parts.append(f'<p>Tracking: <a href="{html.escape(url)}">{label}</a></p>' if url else f"<p>Tracking: {label}</p>")
    parts.append(_items_table(order.get("items") or [], with_price=False))
    return subject, "".join(parts)
