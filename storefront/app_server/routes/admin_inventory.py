# storefront/app_server/routes/admin_inventory.py
from __future__ import annotations

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field, model_validator
from sqlalchemy.orm import Session

from storefront.contracts.errors import ValidationError
from storefront.contracts.models import CamelModel
from storefront.db.session import get_db, transaction
from storefront.inventory import adjuster

router = APIRouter(prefix="/admin/inventory", tags=["admin:inventory"])


class StockSetIn(CamelModel):
    variant_id: int = Field(ge=1)
    stock: int = Field(ge=0)


class BulkAdjustIn(CamelModel):
    variant_ids: Optional[List[int]] = None
    product_ids: Optional[List[int]] = None
    operation: Literal["increment", "decrement", "set"]
    value: int = Field(ge=0)

    @model_validator(mode="after")
    def _one_target_list(self) -> "BulkAdjustIn":
        if self.variant_ids is not None and self.product_ids is not None:
            raise ValueError("send variantIds or productIds, not both")
        return self


@router.get("")
def list_inventory(
    request: Request,
    status: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=30, ge=1, le=200),
    db: Session = Depends(get_db),
):
    threshold = request.app.state.settings.low_stock_threshold
    return {"ok": True, **adjuster.list_inventory(db, status=status, page=page, limit=limit, threshold=threshold)}


@router.patch("")
def set_stock(body: StockSetIn, db: Session = Depends(get_db)):
    with transaction(db):
        variant = adjuster.set_stock(db, body.variant_id, body.stock)
    return {"ok": True, "variant": adjuster.variant_to_dict(variant)}


@router.patch("/bulk")
def bulk_adjust(body: BulkAdjustIn, db: Session = Depends(get_db)):
    with transaction(db):
        if body.product_ids is not None:
            if not body.product_ids:
                raise ValidationError("No products selected", code="no_targets")
            variant_ids = adjuster.variant_ids_for_products(db, body.product_ids)
        else:
            variant_ids = body.variant_ids or []
        updated = adjuster.adjust(db, variant_ids, body.operation, body.value)
    return {
        "ok": True,
        "success": True,
        "updatedCount": updated,
        "operation": body.operation,
        "value": body.value,
    }
