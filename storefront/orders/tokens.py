# storefront/orders/tokens.py
"""
Guest order-tracking tokens.

    token = base64url("{order_id}:{email}:{issued_ms}:{sig}")
    sig   = hex(HMAC-SHA256(secret, "{order_id}:{email}:{issued_ms}"))[:32]

Tokens are bound to one order and one e-mail address and expire after
``ttl_days``.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import time
from typing import Optional

SIG_LEN = 32


def _sign(secret: str, payload: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()[:SIG_LEN]


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_order_token(secret: str, order_id: int, email: str, issued_ms: Optional[int] = None) -> str:
    issued = _now_ms() if issued_ms is None else issued_ms
    payload = f"{order_id}:{email.strip().lower()}:{issued}"
    raw = f"{payload}:{_sign(secret, payload)}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def verify_order_token(
    secret: str,
    token: str,
    order_id: int,
    email: str,
    ttl_days: int = 30,
    now_ms: Optional[int] = None,
) -> bool:
    if not token:
        return False
    try:
        padded = token + "=" * (-len(token) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return False

    # email may itself contain ':' only in pathological cases; split from both ends.
    head, _, sig = raw.rpartition(":")
    tok_order, _, rest = head.partition(":")
    tok_email, _, tok_issued = rest.rpartition(":")
    if not (tok_order and tok_email and tok_issued and sig):
        return False

    try:
        issued = int(tok_issued)
    except ValueError:
        return False

    if tok_order != str(order_id) or tok_email != email.strip().lower():
        return False

    if not hmac.compare_digest(sig, _sign(secret, head)):
        return False

    now = _now_ms() if now_ms is None else now_ms
    return now - issued <= ttl_days * 24 * 60 * 60 * 1000
