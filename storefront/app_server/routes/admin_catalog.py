# storefront/app_server/routes/admin_catalog.py
from __future__ import annotations

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.orm import Session

from storefront.catalog import store as catalog
from storefront.contracts.models import CamelModel
from storefront.db.models import Product
from storefront.db.session import get_db, transaction

router = APIRouter(tags=["admin:catalog"])

ProductStatus = Literal["active", "draft", "archived"]


class VariantIn(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    sku: Optional[str] = Field(default=None, max_length=128)
    price: Optional[float] = Field(default=None, ge=0)
    stock: int = Field(default=0, ge=0)
    weight_grams: int = Field(default=100, ge=0)
    position: Optional[int] = None


class ImageIn(CamelModel):
    url: str = Field(min_length=1)
    alt: Optional[str] = None
    position: Optional[int] = None


class ProductIn(CamelModel):
    slug: str = Field(min_length=1, max_length=255)
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    base_price: float = Field(ge=0)
    status: ProductStatus = "draft"
    featured: bool = False
    category_id: Optional[int] = None
    variants: List[VariantIn] = Field(default_factory=list)
    images: List[ImageIn] = Field(default_factory=list)


class ProductPatchIn(CamelModel):
    slug: Optional[str] = Field(default=None, min_length=1, max_length=255)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    base_price: Optional[float] = Field(default=None, ge=0)
    status: Optional[ProductStatus] = None
    featured: Optional[bool] = None
    category_id: Optional[int] = None


class FeaturedIn(CamelModel):
    product_ids: List[int] = Field(min_length=1)
    featured: bool


class CollectionIn(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    slug: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    image: Optional[str] = None
    parent_id: Optional[int] = None
    position: int = 0
    status: str = "active"
    product_ids: List[int] = Field(default_factory=list)


def _dump_product(db: Session, product_id: int) -> dict:
    # reload so variants, images and category come back in position order
    db.expire_all()
    return catalog.product_to_dict(db.get(Product, product_id))


@router.post("/admin/products", status_code=201)
def create_product(body: ProductIn, db: Session = Depends(get_db)):
    data = body.model_dump()
    data["variants"] = [{k: v for k, v in var.items() if v is not None} for var in data["variants"]]
    data["images"] = [{k: v for k, v in img.items() if v is not None} for img in data["images"]]
    with transaction(db):
        product = catalog.create_product(db, data)
    return {"ok": True, "product": _dump_product(db, product.id)}


@router.patch("/admin/products/featured")
def set_featured(body: FeaturedIn, db: Session = Depends(get_db)):
    with transaction(db):
        updated = catalog.set_featured(db, body.product_ids, body.featured)
    return {"ok": True, "success": True, "updatedCount": updated, "featured": body.featured}


@router.patch("/admin/products/{product_id}")
def update_product(product_id: int, body: ProductPatchIn, db: Session = Depends(get_db)):
    changes = body.model_dump(exclude_unset=True)
    for key in ("slug", "name", "base_price", "status", "featured"):
        if key in changes and changes[key] is None:
            del changes[key]
    with transaction(db):
        product = catalog.update_product(db, product_id, changes)
    return {"ok": True, "product": _dump_product(db, product.id)}


@router.delete("/admin/products/{product_id}")
def delete_product(product_id: int, db: Session = Depends(get_db)):
    with transaction(db):
        catalog.delete_product(db, product_id)
    return {"ok": True, "deleted": product_id}


@router.post("/admin/collections", status_code=201)
def create_collection(body: CollectionIn, db: Session = Depends(get_db)):
    data = body.model_dump(exclude={"product_ids"})
    with transaction(db):
        cat = catalog.create_collection(db, data, body.product_ids)
    return {"ok": True, "collection": catalog.category_to_dict(cat), "productCount": len(set(body.product_ids))}
