from __future__ import annotations

import pytest

from helpers import make_category, make_product
from storefront.catalog import store
from storefront.contracts.errors import ConflictError, NotFoundError, ValidationError
from storefront.db.models import Product


def test_list_products_only_active_sorted_and_paged(db) -> None:
    make_product(db, "cheap", "Cheap", price=2)
    make_product(db, "dear", "Dear", price=20)
    make_product(db, "mid", "Mid", price=8)
    make_product(db, "hidden", "Hidden", price=1, status="draft")

    out = store.list_products(db, sort="price-asc", limit=2)
    assert [p["slug"] for p in out["products"]] == ["cheap", "mid"]
    assert out["pagination"] == {
        "page": 1,
        "limit": 2,
        "totalCount": 3,
        "totalPages": 2,
        "hasNextPage": True,
        "hasPrevPage": False,
    }

    page2 = store.list_products(db, sort="price-asc", limit=2, page=2)
    assert [p["slug"] for p in page2["products"]] == ["dear"]


def test_list_products_by_collection(db) -> None:
    teas = make_category(db)
    make_product(db, "in-teas", category_id=teas.id)
    make_product(db, "elsewhere")
    out = store.list_products(db, collection="teas")
    assert [p["slug"] for p in out["products"]] == ["in-teas"]

    with pytest.raises(NotFoundError):
        store.list_products(db, collection="nope")
    with pytest.raises(ValidationError):
        store.list_products(db, sort="random")


def test_get_product_hides_drafts(db) -> None:
    make_product(db, "draft-tea", status="draft")
    with pytest.raises(NotFoundError):
        store.get_product(db, "draft-tea")
    assert store.get_product(db, "draft-tea", include_inactive=True).slug == "draft-tea"


def test_search_matches_name_description_and_variant(db) -> None:
    make_product(db, "a", "Assam", description="malty black")
    make_product(db, "b", "Breakfast", variants=[{"name": "Loose leaf"}])
    make_product(db, "c", "Chamomile", status="archived")
    assert [p.slug for p in store.search(db, "ASSAM")] == ["a"]
    assert [p.slug for p in store.search(db, "malty")] == ["a"]
    assert [p.slug for p in store.search(db, "loose")] == ["b"]
    assert store.search(db, "chamomile") == []
    assert store.search(db, "   ") == []


def test_search_treats_wildcards_literally(db) -> None:
    make_product(db, "a", "Assam", description="malty black")
    make_product(db, "b", "Rooibos_Vanilla")
    assert store.search(db, "%") == []
    assert [p.slug for p in store.search(db, "_")] == ["b"]


def test_collections_nest_children(db) -> None:
    teas = make_category(db, "teas", "Teas", position=1)
    make_category(db, "green", "Green", parent_id=teas.id)
    make_category(db, "gifts", "Gifts", position=0)
    out = store.list_collections(db)
    assert [c["slug"] for c in out] == ["gifts", "teas"]
    assert [c["slug"] for c in out[1]["children"]] == ["green"]


def test_create_product_with_variants_and_images(db) -> None:
    p = store.create_product(
        db,
        {
            "slug": "Sencha",
            "name": "Sencha",
            "base_price": 6.5,
            "status": "active",
            "variants": [{"name": "50g", "stock": 4}, {"name": "100g", "price": 11.0}],
            "images": [{"url": "/s.jpg", "alt": "tin"}],
        },
    )
    db.commit()
    d = store.product_to_dict(p)
    assert d["slug"] == "sencha"
    assert [(v["name"], v["price"]) for v in d["variants"]] == [("50g", 6.5), ("100g", 11.0)]
    assert d["images"][0]["url"] == "/s.jpg"

    with pytest.raises(ConflictError):
        store.create_product(db, {"slug": "sencha", "name": "Again", "base_price": 1})


def test_create_product_rejects_bad_slug(db) -> None:
    with pytest.raises(ValidationError):
        store.create_product(db, {"slug": "no spaces", "name": "x", "base_price": 1})


def test_set_featured_and_delete(db) -> None:
    a = make_product(db, "a")
    b = make_product(db, "b")
    assert store.set_featured(db, [a.id, b.id, 404], True) == 2
    db.commit()
    db.expire_all()
    assert db.get(Product, a.id).featured is True

    store.delete_product(db, a.id)
    db.commit()
    assert db.get(Product, a.id) is None


def test_create_collection_moves_products(db) -> None:
    a = make_product(db, "a")
    cat = store.create_collection(db, {"name": "Gifts", "slug": "gifts"}, [a.id])
    db.commit()
    db.expire_all()
    assert db.get(Product, a.id).category_id == cat.id

    with pytest.raises(NotFoundError) as e:
        store.create_collection(db, {"name": "X", "slug": "x"}, [a.id, 999])
    assert e.value.code == "products_not_found"
    db.rollback()

    child = store.create_collection(db, {"name": "Small", "slug": "small", "parent_id": cat.id})
    db.commit()
    with pytest.raises(ValidationError):
        store.create_collection(db, {"name": "Tiny", "slug": "tiny", "parent_id": child.id})
