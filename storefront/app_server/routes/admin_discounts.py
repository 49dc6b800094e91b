# storefront/app_server/routes/admin_discounts.py
from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.orm import Session

from storefront.contracts.models import CamelModel
from storefront.db.session import get_db, transaction
from storefront.discounts import evaluator

router = APIRouter(prefix="/admin/discounts", tags=["admin:discounts"])


class DiscountIn(CamelModel):
    code: str = Field(min_length=1, max_length=50)
    type: Literal["percentage", "fixed"]
    value: float
    min_order_value: Optional[float] = None
    max_uses: Optional[int] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    active: bool = True


class DiscountPatchIn(CamelModel):
    code: Optional[str] = Field(default=None, min_length=1, max_length=50)
    type: Optional[Literal["percentage", "fixed"]] = None
    value: Optional[float] = None
    min_order_value: Optional[float] = None
    max_uses: Optional[int] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    active: Optional[bool] = None


@router.get("")
def list_discounts(db: Session = Depends(get_db)):
    return {"ok": True, "discounts": [evaluator.discount_to_dict(d) for d in evaluator.list_discounts(db)]}


@router.post("", status_code=201)
def create_discount(body: DiscountIn, db: Session = Depends(get_db)):
    with transaction(db):
        dc = evaluator.create_discount(db, **body.model_dump())
    return {"ok": True, "discount": evaluator.discount_to_dict(dc)}


@router.get("/{discount_id}")
def get_discount(discount_id: int, db: Session = Depends(get_db)):
    return {"ok": True, "discount": evaluator.discount_to_dict(evaluator.get_discount(db, discount_id))}


@router.patch("/{discount_id}")
def update_discount(discount_id: int, body: DiscountPatchIn, db: Session = Depends(get_db)):
    changes = body.model_dump(exclude_unset=True)
    # null clears the optional limits; required fields keep their value
    for key in ("code", "type", "value", "active"):
        if key in changes and changes[key] is None:
            del changes[key]
    with transaction(db):
        dc = evaluator.update_discount(db, discount_id, changes)
    return {"ok": True, "discount": evaluator.discount_to_dict(dc)}


@router.delete("/{discount_id}")
def delete_discount(discount_id: int, db: Session = Depends(get_db)):
    with transaction(db):
        evaluator.delete_discount(db, discount_id)
    return {"ok": True, "deleted": discount_id}
