# storefront/discounts/evaluator.py
"""
Discount code eligibility and amount calculation.

``evaluate`` is read-only: it never touches ``uses_count``. The counter is
bumped by ``record_use`` when an order is confirmed, so validating the same
code any number of times consumes nothing.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.contracts.errors import ConflictError, NotFoundError, ValidationError
from storefront.db.models import DISCOUNT_TYPES, DiscountCode, as_utc_naive, utcnow

CODE_RE = re.compile(r"^[A-Z0-9_-]+$", re.IGNORECASE)

# Ineligibility reasons, in the order they are checked.
NOT_FOUND = "not_found"
EXPIRED = "expired"
NOT_YET_ACTIVE = "not_yet_active"
BELOW_MINIMUM = "below_minimum"
USAGE_EXHAUSTED = "usage_exhausted"

_MESSAGES = {
    NOT_FOUND: "Invalid discount code",
    EXPIRED: "This discount code has expired",
    NOT_YET_ACTIVE: "This discount code is not yet active",
    BELOW_MINIMUM: "Minimum order value not met",
    USAGE_EXHAUSTED: "This discount code has reached its usage limit",
}


def round_money(amount: float) -> float:
    """Two decimal places, halves rounded up (2.675 -> 2.68 for exact inputs)."""
    return math.floor(amount * 100 + 0.5) / 100


class DiscountIneligible(ValidationError):
    default_code = "discount_invalid"

    def __init__(self, reason: str, details: Any = None) -> None:
        super().__init__(_MESSAGES.get(reason, "Invalid discount code"), code=reason, details=details)
        self.reason = reason


@dataclass(frozen=True)
class DiscountResult:
    discount_id: int
    code: str
    type: str
    value: float
    amount: float

    @property
    def description(self) -> str:
        if self.type == "percentage":
            return f"{self.value:g}% off"
        return f"£{self.value:.2f} off"

    def as_dict(self) -> dict[str, Any]:
        return {
            "valid": True,
            "code": self.code,
            "type": self.type,
            "value": self.value,
            "amount": self.amount,
            "description": self.description,
        }


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def evaluate(db: Session, code: str, subtotal: float, now: Optional[datetime] = None) -> DiscountResult:
    now = as_utc_naive(now) or utcnow()
    normalized = normalize_code(code)
    if not normalized:
        raise DiscountIneligible(NOT_FOUND)

    dc = db.execute(
        select(DiscountCode).where(DiscountCode.code == normalized, DiscountCode.active.is_(True))
    ).scalar_one_or_none()
    if dc is None:
        raise DiscountIneligible(NOT_FOUND)

    if dc.expires_at is not None and dc.expires_at < now:
        raise DiscountIneligible(EXPIRED)
    if dc.starts_at is not None and dc.starts_at > now:
        raise DiscountIneligible(NOT_YET_ACTIVE)
    if dc.min_order_value is not None and subtotal < dc.min_order_value:
        raise DiscountIneligible(BELOW_MINIMUM, details={"minOrderValue": dc.min_order_value})
    if dc.max_uses is not None and (dc.uses_count or 0) >= dc.max_uses:
        raise DiscountIneligible(USAGE_EXHAUSTED)

    if dc.type == "percentage":
        amount = subtotal * (dc.value / 100)
    else:
        amount = min(dc.value, subtotal)

    return DiscountResult(
        discount_id=dc.id,
        code=dc.code,
        type=dc.type,
        value=dc.value,
        amount=round_money(max(0.0, amount)),
    )


def record_use(db: Session, discount_id: int) -> None:
    db.execute(
        update(DiscountCode)
        .where(DiscountCode.id == discount_id)
        .values(uses_count=DiscountCode.uses_count + 1)
        .execution_options(synchronize_session=False)
    )


# --- admin CRUD -------------------------------------------------------------


def _validate_fields(
    *,
    code: str,
    type: str,
    value: float,
    starts_at: Optional[datetime],
    expires_at: Optional[datetime],
    min_order_value: Optional[float],
    max_uses: Optional[int],
) -> None:
    errors: dict[str, str] = {}
    if not code or not CODE_RE.match(code):
        errors["code"] = "Code may only contain letters, numbers, hyphens and underscores"
    if type not in DISCOUNT_TYPES:
        errors["type"] = "Type must be 'percentage' or 'fixed'"
    if value is None or value <= 0:
        errors["value"] = "Value must be greater than 0"
    elif type == "percentage" and value > 100:
        errors["value"] = "Percentage cannot exceed 100"
    if min_order_value is not None and min_order_value < 0:
        errors["minOrderValue"] = "Minimum order value cannot be negative"
    if max_uses is not None and max_uses < 1:
        errors["maxUses"] = "Max uses must be at least 1"
    if starts_at is not None and expires_at is not None and expires_at <= starts_at:
        errors["expiresAt"] = "Expiry date must be after start date"
    if errors:
        raise ValidationError("Invalid discount code", details=errors)


def list_discounts(db: Session) -> List[DiscountCode]:
    return list(db.execute(select(DiscountCode).order_by(DiscountCode.created_at.desc(), DiscountCode.id.desc())).scalars())


def get_discount(db: Session, discount_id: int) -> DiscountCode:
    dc = db.get(DiscountCode, discount_id)
    if dc is None:
        raise NotFoundError("Discount code not found")
    return dc


def create_discount(
    db: Session,
    *,
    code: str,
    type: str,
    value: float,
    min_order_value: Optional[float] = None,
    max_uses: Optional[int] = None,
    starts_at: Optional[datetime] = None,
    expires_at: Optional[datetime] = None,
    active: bool = True,
) -> DiscountCode:
    code = normalize_code(code)
    starts_at, expires_at = as_utc_naive(starts_at), as_utc_naive(expires_at)
    _validate_fields(
        code=code,
        type=type,
        value=value,
        starts_at=starts_at,
        expires_at=expires_at,
        min_order_value=min_order_value,
        max_uses=max_uses,
    )
    if db.execute(select(DiscountCode.id).where(DiscountCode.code == code)).first() is not None:
        raise ConflictError("A discount code with this name already exists", code="duplicate_code")

    dc = DiscountCode(
        code=code,
        type=type,
        value=value,
        min_order_value=min_order_value,
        max_uses=max_uses,
        uses_count=0,
        starts_at=starts_at,
        expires_at=expires_at,
        active=active,
    )
    db.add(dc)
    try:
        db.flush()
    except IntegrityError as e:
        raise ConflictError("A discount code with this name already exists", code="duplicate_code") from e
    return dc


def update_discount(db: Session, discount_id: int, changes: dict[str, Any]) -> DiscountCode:
    """Apply a partial update; ``uses_count`` is not editable."""
    dc = get_discount(db, discount_id)

    code = normalize_code(changes["code"]) if "code" in changes else dc.code
    merged = {
        "code": code,
        "type": changes.get("type", dc.type),
        "value": changes.get("value", dc.value),
        "min_order_value": changes.get("min_order_value", dc.min_order_value),
        "max_uses": changes.get("max_uses", dc.max_uses),
        "starts_at": as_utc_naive(changes["starts_at"]) if "starts_at" in changes else dc.starts_at,
        "expires_at": as_utc_naive(changes["expires_at"]) if "expires_at" in changes else dc.expires_at,
    }
    _validate_fields(**merged)

    if code != dc.code:
        clash = db.execute(select(DiscountCode.id).where(DiscountCode.code == code, DiscountCode.id != dc.id)).first()
        if clash is not None:
            raise ConflictError("A discount code with this name already exists", code="duplicate_code")

    for k, v in merged.items():
        setattr(dc, k, v)
    if "active" in changes:
        dc.active = bool(changes["active"])
    db.flush()
    return dc


def delete_discount(db: Session, discount_id: int) -> None:
    dc = get_discount(db, discount_id)
    db.delete(dc)
    try:
        db.flush()
    except IntegrityError as e:
        raise ConflictError("Discount code is used by existing orders; deactivate it instead", code="discount_in_use") from e


def discount_to_dict(dc: DiscountCode) -> dict[str, Any]:
    return {
        "id": dc.id,
        "code": dc.code,
        "type": dc.type,
        "value": dc.value,
        "minOrderValue": dc.min_order_value,
        "maxUses": dc.max_uses,
        "usesCount": dc.uses_count,
        "startsAt": dc.starts_at.isoformat() if dc.starts_at else None,
        "expiresAt": dc.expires_at.isoformat() if dc.expires_at else None,
        "active": dc.active,
        "createdAt": dc.created_at.isoformat() if dc.created_at else None,
    }
