# storefront/catalog/store.py
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session, selectinload

from storefront.contracts.errors import ConflictError, NotFoundError, ValidationError
from storefront.contracts.paging import pagination
from storefront.db.models import PRODUCT_STATUSES, Category, Product, ProductImage, ProductVariant, utcnow

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

SORTS = {
    "newest": (Product.created_at.desc(), Product.id.desc()),
    "price-asc": (Product.base_price.asc(), Product.id.asc()),
    "price-desc": (Product.base_price.desc(), Product.id.desc()),
    "featured": (Product.featured.desc(), Product.created_at.desc(), Product.id.desc()),
}


def _check_slug(slug: str) -> str:
    slug = (slug or "").strip().lower()
    if not SLUG_RE.match(slug):
        raise ValidationError(
            "Slug may only contain lowercase letters, numbers and single hyphens",
            details={"slug": slug},
        )
    return slug


def _with_relations(stmt):
    return stmt.options(
        selectinload(Product.variants),
        selectinload(Product.images),
        selectinload(Product.category),
    )


def category_by_slug(db: Session, slug: str) -> Optional[Category]:
    return db.execute(select(Category).where(Category.slug == slug)).scalar_one_or_none()


def list_products(
    db: Session,
    *,
    collection: Optional[str] = None,
    sort: str = "newest",
    page: int = 1,
    limit: int = 12,
) -> Dict[str, Any]:
    if sort not in SORTS:
        raise ValidationError(f"Unknown sort {sort!r}", code="invalid_sort", details={"allowed": sorted(SORTS)})
    page = max(1, page)
    limit = max(1, min(limit, 100))

    cond = [Product.status == "active"]
    if collection:
        cat = category_by_slug(db, collection)
        if cat is None:
            raise NotFoundError("Collection not found")
        cond.append(Product.category_id == cat.id)

    total = int(db.execute(select(func.count(Product.id)).where(*cond)).scalar_one())
    rows = db.execute(
        _with_relations(select(Product).where(*cond))
        .order_by(*SORTS[sort])
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars()
    return {
        "products": [product_to_dict(p, image_limit=1) for p in rows],
        "pagination": pagination(page, limit, total),
    }


def get_product(db: Session, slug: str, *, include_inactive: bool = False) -> Product:
    stmt = _with_relations(select(Product).where(Product.slug == slug))
    if not include_inactive:
        stmt = stmt.where(Product.status == "active")
    product = db.execute(stmt).scalar_one_or_none()
    if product is None:
        raise NotFoundError("Product not found")
    return product


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def search(db: Session, q: str, limit: int = 20) -> List[Product]:
    term = (q or "").strip()
    if not term:
        return []
    limit = max(1, min(limit, 100))
    pattern = _like_pattern(term.lower())
    variant_hit = (
        select(ProductVariant.product_id)
        .where(func.lower(ProductVariant.name).like(pattern, escape="\\"))
        .scalar_subquery()
    )
    stmt = (
        select(Product)
        .where(
            Product.status == "active",
            or_(
                func.lower(Product.name).like(pattern, escape="\\"),
                func.lower(func.coalesce(Product.description, "")).like(pattern, escape="\\"),
                Product.id.in_(variant_hit),
            ),
        )
        .order_by(Product.name.asc(), Product.id.asc())
        .limit(limit)
    )
    return list(db.execute(_with_relations(stmt)).scalars())


def list_collections(db: Session) -> List[Dict[str, Any]]:
    cats = list(db.execute(select(Category).order_by(Category.position.asc(), Category.id.asc())).scalars())
    children: Dict[int, List[Category]] = {}
    for c in cats:
        if c.parent_id is not None:
            children.setdefault(c.parent_id, []).append(c)
    out = []
    for c in cats:
        if c.parent_id is not None:
            continue
        d = category_to_dict(c)
        d["children"] = [category_to_dict(ch) for ch in children.get(c.id, [])]
        out.append(d)
    return out


# --- admin ------------------------------------------------------------------


def _slug_taken(db: Session, model, slug: str, exclude_id: Optional[int] = None) -> bool:
    stmt = select(model.id).where(model.slug == slug)
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    return db.execute(stmt).first() is not None


def create_product(db: Session, data: Dict[str, Any]) -> Product:
    slug = _check_slug(data["slug"])
    if _slug_taken(db, Product, slug):
        raise ConflictError("A product with this slug already exists", code="duplicate_slug")
    status = data.get("status") or "draft"
    if status not in PRODUCT_STATUSES:
        raise ValidationError(f"Unknown status {status!r}", code="invalid_status")
    if data.get("category_id") is not None and db.get(Category, data["category_id"]) is None:
        raise ValidationError("Category not found", code="invalid_category")

    now = utcnow()
    product = Product(
        slug=slug,
        name=data["name"],
        description=data.get("description"),
        base_price=data["base_price"],
        status=status,
        featured=bool(data.get("featured")),
        category_id=data.get("category_id"),
        created_at=now,
        updated_at=now,
    )
    for i, v in enumerate(data.get("variants") or []):
        product.variants.append(
            ProductVariant(
                name=v["name"],
                sku=v.get("sku"),
                price=v.get("price") if v.get("price") is not None else data["base_price"],
                stock=v.get("stock") or 0,
                weight_grams=v.get("weight_grams") or 100,
                position=v.get("position", i),
                created_at=now,
                updated_at=now,
            )
        )
    for i, img in enumerate(data.get("images") or []):
        product.images.append(ProductImage(url=img["url"], alt=img.get("alt"), position=img.get("position", i)))
    db.add(product)
    db.flush()
    return product


_EDITABLE = ("name", "description", "base_price", "status", "featured", "category_id")


def update_product(db: Session, product_id: int, changes: Dict[str, Any]) -> Product:
    product = db.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    if "slug" in changes and changes["slug"] is not None:
        slug = _check_slug(changes["slug"])
        if _slug_taken(db, Product, slug, exclude_id=product.id):
            raise ConflictError("A product with this slug already exists", code="duplicate_slug")
        product.slug = slug
    if changes.get("status") is not None and changes["status"] not in PRODUCT_STATUSES:
        raise ValidationError(f"Unknown status {changes['status']!r}", code="invalid_status")
    if changes.get("category_id") is not None and db.get(Category, changes["category_id"]) is None:
        raise ValidationError("Category not found", code="invalid_category")
    for key in _EDITABLE:
        if key in changes:
            setattr(product, key, changes[key])
    product.updated_at = utcnow()
    db.flush()
    return product


def delete_product(db: Session, product_id: int) -> None:
    product = db.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    db.delete(product)
    db.flush()


def set_featured(db: Session, product_ids: Sequence[int], featured: bool) -> int:
    ids = sorted({int(i) for i in product_ids})
    if not ids:
        raise ValidationError("No products selected", code="no_targets")
    result = db.execute(
        update(Product)
        .where(Product.id.in_(ids))
        .values(featured=featured, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


def create_collection(db: Session, data: Dict[str, Any], product_ids: Sequence[int] = ()) -> Category:
    """Create a category and move ``product_ids`` into it. Caller owns the transaction."""
    slug = _check_slug(data["slug"])
    if _slug_taken(db, Category, slug):
        raise ConflictError("A collection with this slug already exists", code="duplicate_slug")
    parent_id = data.get("parent_id")
    if parent_id is not None:
        parent = db.get(Category, parent_id)
        if parent is None:
            raise ValidationError("Parent collection not found", code="invalid_parent")
        if parent.parent_id is not None:
            raise ValidationError("Collections nest at most one level deep", code="invalid_parent")

    now = utcnow()
    cat = Category(
        name=data["name"],
        slug=slug,
        description=data.get("description"),
        image=data.get("image"),
        parent_id=parent_id,
        position=data.get("position") or 0,
        status=data.get("status") or "active",
        created_at=now,
        updated_at=now,
    )
    db.add(cat)
    db.flush()

    ids = sorted({int(i) for i in product_ids})
    if ids:
        found = set(db.execute(select(Product.id).where(Product.id.in_(ids))).scalars())
        missing = [i for i in ids if i not in found]
        if missing:
            raise NotFoundError("Products not found", code="products_not_found", details={"productIds": missing})
        db.execute(
            update(Product)
            .where(Product.id.in_(ids))
            .values(category_id=cat.id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
    return cat


# --- serialisation ----------------------------------------------------------


def category_to_dict(c: Category) -> Dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "slug": c.slug,
        "description": c.description,
        "image": c.image,
        "parentId": c.parent_id,
        "position": c.position,
        "status": c.status,
    }


def product_to_dict(p: Product, image_limit: Optional[int] = None) -> Dict[str, Any]:
    images = p.images if image_limit is None else p.images[:image_limit]
    return {
        "id": p.id,
        "slug": p.slug,
        "name": p.name,
        "description": p.description,
        "basePrice": p.base_price,
        "status": p.status,
        "featured": p.featured,
        "categoryId": p.category_id,
        "category": category_to_dict(p.category) if p.category is not None else None,
        "variants": [
            {
                "id": v.id,
                "name": v.name,
                "sku": v.sku,
                "price": v.price,
                "stock": v.stock,
                "weightGrams": v.weight_grams,
                "position": v.position,
            }
            for v in p.variants
        ],
        "images": [{"id": i.id, "url": i.url, "alt": i.alt, "position": i.position} for i in images],
        "createdAt": p.created_at.isoformat() if p.created_at else None,
    }
