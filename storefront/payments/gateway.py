# storefront/payments/gateway.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from storefront.contracts.errors import ConfigurationError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)


def to_minor(amount: float) -> int:
    """Pounds -> pence, half up."""
    return int(amount * 100 + 0.5)


def from_minor(amount: Optional[int]) -> float:
    return (amount or 0) / 100


class PaymentGateway:
    """The handful of Stripe calls checkout needs, with errors mapped to StorefrontError."""

    def __init__(self, secret_key: str, webhook_secret: str, currency: str = "gbp") -> None:
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    def _key(self) -> str:
        if not self.secret_key:
            raise ConfigurationError("STRIPE_SECRET_KEY missing", code="payments_not_configured")
        return self.secret_key

    def ensure_coupon(self, code: str, discount_type: str, value: float) -> str:
        coupon_id = f"sf_{code.lower()}"
        key = self._key()
        try:
            stripe.Coupon.retrieve(coupon_id, api_key=key)
            return coupon_id
        except stripe.error.InvalidRequestError:
            pass
        except stripe.error.StripeError as e:
            raise UpstreamError(f"coupon lookup failed: {e}", code="payment_provider_failed") from e

        params: Dict[str, Any] = {"id": coupon_id, "name": code, "currency": self.currency}
        if discount_type == "percentage":
            params["percent_off"] = value
        else:
            params["amount_off"] = to_minor(value)
        try:
            stripe.Coupon.create(api_key=key, **params)
        except stripe.error.StripeError as e:
            raise UpstreamError(f"coupon create failed: {e}", code="payment_provider_failed") from e
        return coupon_id

    def create_checkout_session(
        self,
        *,
        line_items: List[Dict[str, Any]],
        shipping_options: List[Dict[str, Any]],
        allowed_countries: List[str],
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
        coupon_id: Optional[str] = None,
        expires_at: Optional[int] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "shipping_address_collection": {"allowed_countries": allowed_countries},
            "shipping_options": shipping_options,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        }
        if customer_email:
            params["customer_email"] = customer_email
        if coupon_id:
            params["discounts"] = [{"coupon": coupon_id}]
        if expires_at:
            params["expires_at"] = expires_at

        try:
            sess = stripe.checkout.Session.create(api_key=self._key(), **params)
        except stripe.error.StripeError as e:
            logger.error("checkout session create failed: %s", e, extra={"context": "payments.checkout"})
            raise UpstreamError("Failed to create checkout session", code="payment_provider_failed") from e
        return {"id": sess.id, "url": getattr(sess, "url", None)}

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if not signature:
            raise ValidationError("Missing stripe-signature header", code="missing_signature")
        if not self.webhook_secret:
            raise ConfigurationError("Webhook secret not configured", code="webhook_not_configured")
        try:
            stripe.Webhook.construct_event(payload=payload, sig_header=signature, secret=self.webhook_secret)
        except (ValueError, stripe.error.SignatureVerificationError) as e:
            logger.warning("webhook signature verification failed: %s", e, extra={"context": "payments.webhook"})
            raise ValidationError("Webhook signature verification failed", code="invalid_signature") from e
        # verified; hand back plain dicts rather than StripeObject
        return json.loads(payload)
