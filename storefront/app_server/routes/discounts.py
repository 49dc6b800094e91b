# storefront/app_server/routes/discounts.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.orm import Session

from storefront.app_server.metrics import DISCOUNT_VALIDATIONS
from storefront.contracts.models import CamelModel
from storefront.db.session import get_db
from storefront.discounts import evaluator

router = APIRouter(tags=["discounts"])


class ValidateIn(CamelModel):
    code: str = Field(min_length=1, max_length=50)
    subtotal: float = Field(ge=0)


@router.post("/discount/validate")
def validate_discount(body: ValidateIn, db: Session = Depends(get_db)):
    try:
        result = evaluator.evaluate(db, body.code, body.subtotal)
    except evaluator.DiscountIneligible as e:
        DISCOUNT_VALIDATIONS.labels(outcome=e.reason).inc()
        raise
    DISCOUNT_VALIDATIONS.labels(outcome="valid").inc()
    return {"ok": True, **result.as_dict()}
