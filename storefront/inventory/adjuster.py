# storefront/inventory/adjuster.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional, Sequence

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.orm import Session, selectinload

from storefront.contracts.errors import NotFoundError, ValidationError
from storefront.db.models import Product, ProductVariant, utcnow

logger = logging.getLogger(__name__)

Operation = Literal["increment", "decrement", "set"]
OPERATIONS = ("increment", "decrement", "set")


def stock_expression(operation: str, value: int):
    # Evaluated by the database against the current row, never read-modify-write.
    if operation == "set":
        return value
    if operation == "increment":
        return func.coalesce(ProductVariant.stock, 0) + value
    remaining = func.coalesce(ProductVariant.stock, 0) - value
    return case((remaining < 0, 0), else_=remaining)


def _check_value(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError("Value must be a non-negative integer", code="invalid_value", details={"value": value})
    return value


def variant_ids_for_products(db: Session, product_ids: Sequence[int]) -> List[int]:
    if not product_ids:
        return []
    return list(db.execute(select(ProductVariant.id).where(ProductVariant.product_id.in_(list(product_ids)))).scalars())


def adjust(db: Session, variant_ids: Sequence[int], operation: str, value: int) -> int:
    """
    Apply one operation to every targeted variant in a single UPDATE.

    Returns the number of rows matched. Decrements clamp at zero. The caller
    wraps this in ``transaction`` so the whole batch commits or none of it.
    """
    ids = sorted({int(v) for v in variant_ids})
    if not ids:
        raise ValidationError("No variants selected", code="no_targets")
    if operation not in OPERATIONS:
        raise ValidationError("Invalid operation", code="invalid_operation", details={"operation": operation})
    value = _check_value(value)

    result = db.execute(
        update(ProductVariant)
        .where(ProductVariant.id.in_(ids))
        .values(stock=stock_expression(operation, value), updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    updated = int(result.rowcount or 0)
    logger.info(
        "bulk stock adjustment: %s %s on %d variants",
        operation,
        value,
        updated,
        extra={"context": "inventory.bulk"},
    )
    return updated


def set_stock(db: Session, variant_id: int, stock: int) -> ProductVariant:
    stock = _check_value(stock)
    variant = db.get(ProductVariant, variant_id)
    if variant is None:
        raise NotFoundError("Variant not found")
    variant.stock = stock
    variant.updated_at = utcnow()
    db.flush()
    return variant


def _status_filter(status: Optional[str], threshold: int):
    stock = func.coalesce(ProductVariant.stock, 0)
    if status == "out":
        return stock == 0
    if status == "low":
        return and_(stock > 0, stock <= threshold)
    if status == "in":
        return stock > threshold
    return None


def inventory_stats(db: Session, threshold: int) -> Dict[str, int]:
    stock = func.coalesce(ProductVariant.stock, 0)
    total = db.execute(select(func.count(ProductVariant.id))).scalar_one()
    out = db.execute(select(func.count(ProductVariant.id)).where(stock == 0)).scalar_one()
    low = db.execute(select(func.count(ProductVariant.id)).where(and_(stock > 0, stock <= threshold))).scalar_one()
    return {"total": int(total), "outOfStock": int(out), "lowStock": int(low)}


def list_inventory(
    db: Session,
    *,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 30,
    threshold: int = 2,
) -> Dict[str, Any]:
    if status not in (None, "", "out", "low", "in"):
        raise ValidationError("status must be one of out, low, in", code="invalid_status")
    page = max(1, page)
    limit = max(1, min(limit, 200))

    stmt = select(ProductVariant).options(
        selectinload(ProductVariant.product).selectinload(Product.images)
    )
    cond = _status_filter(status or None, threshold)
    if cond is not None:
        stmt = stmt.where(cond)
    stmt = stmt.order_by(ProductVariant.stock.asc(), ProductVariant.created_at.desc(), ProductVariant.id.desc())
    variants = db.execute(stmt.offset((page - 1) * limit).limit(limit)).scalars().all()

    return {
        "variants": [variant_to_dict(v, threshold) for v in variants],
        "stats": inventory_stats(db, threshold),
        "page": page,
        "limit": limit,
    }


def stock_status(stock: int, threshold: int) -> str:
    if stock <= 0:
        return "out"
    if stock <= threshold:
        return "low"
    return "in"


def variant_to_dict(v: ProductVariant, threshold: Optional[int] = None) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "id": v.id,
        "productId": v.product_id,
        "name": v.name,
        "sku": v.sku,
        "price": v.price,
        "stock": v.stock,
        "weightGrams": v.weight_grams,
    }
    if threshold is not None:
        out["stockStatus"] = stock_status(v.stock or 0, threshold)
        product = v.product
        if product is not None:
            out["product"] = {
                "id": product.id,
                "name": product.name,
                "slug": product.slug,
                "image": product.images[0].url if product.images else None,
            }
    return out
