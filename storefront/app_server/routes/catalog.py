# storefront/app_server/routes/catalog.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.catalog import store
from storefront.db.session import get_db

router = APIRouter(tags=["catalog"])


@router.get("/products")
def list_products(
    collection: Optional[str] = None,
    sort: str = "newest",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=12, ge=1, le=100),
    db: Session = Depends(get_db),
):
    result = store.list_products(db, collection=collection, sort=sort, page=page, limit=limit)
    return {"ok": True, **result}


@router.get("/products/{slug}")
def get_product(slug: str, db: Session = Depends(get_db)):
    return {"ok": True, "product": store.product_to_dict(store.get_product(db, slug))}


@router.get("/search")
def search(q: str = "", limit: int = Query(default=20, ge=1, le=100), db: Session = Depends(get_db)):
    results = store.search(db, q, limit)
    return {
        "ok": True,
        "results": [store.product_to_dict(p, image_limit=1) for p in results],
        "query": q.strip(),
        "count": len(results),
    }


@router.get("/collections")
def list_collections(db: Session = Depends(get_db)):
    return {"ok": True, "collections": store.list_collections(db)}
