# storefront/app_server/routes/checkout.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import Field
from sqlalchemy.orm import Session

from storefront.checkout import session as checkout
from storefront.contracts.models import CamelModel
from storefront.db.session import get_db
from storefront.inventory.reservations import Line

router = APIRouter(tags=["checkout"])


class CheckoutItemIn(CamelModel):
    variant_id: int = Field(ge=1)
    quantity: int = Field(ge=1, le=999)


class CheckoutIn(CamelModel):
    items: List[CheckoutItemIn] = Field(min_length=1)
    country: str = Field(min_length=2, max_length=2, pattern=r"^[A-Za-z]{2}$")
    email: Optional[str] = Field(default=None, max_length=255)
    discount_code: Optional[str] = Field(default=None, max_length=50)


@router.post("/checkout/session")
def create_checkout_session(body: CheckoutIn, request: Request, db: Session = Depends(get_db)):
    result = checkout.open_checkout(
        db,
        request.app.state.payment_gateway,
        request.app.state.settings,
        lines=[Line(i.variant_id, i.quantity) for i in body.items],
        country=body.country,
        email=body.email,
        discount_code=body.discount_code or None,
    )
    return {"ok": True, **result}
