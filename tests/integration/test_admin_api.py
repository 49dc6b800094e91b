from __future__ import annotations

from datetime import datetime

from helpers import RecordingEmail, make_category, make_discount, make_order, make_product
from storefront.db.models import Order, OrderEvent, Product, ProductVariant


# ---------- inventory ----------


def test_inventory_list_and_set(client, admin, app_db) -> None:
    p = make_product(app_db, stock=1)
    vid = p.variants[0].id

    r = client.get("/admin/inventory", params={"status": "low"}, headers=admin)
    assert r.status_code == 200
    body = r.json()
    assert [v["id"] for v in body["variants"]] == [vid]
    assert body["stats"] == {"total": 1, "outOfStock": 0, "lowStock": 1}

    r = client.patch("/admin/inventory", json={"variantId": vid, "stock": 9}, headers=admin)
    assert r.status_code == 200
    assert r.json()["variant"]["stock"] == 9

    r = client.patch("/admin/inventory", json={"variantId": vid, "stock": -1}, headers=admin)
    assert r.status_code == 400


def test_inventory_bulk_by_product(client, admin, app_db) -> None:
    p = make_product(app_db, stock=2, variants=[{"name": "50g"}, {"name": "100g"}])
    r = client.patch(
        "/admin/inventory/bulk",
        json={"productIds": [p.id], "operation": "decrement", "value": 5},
        headers=admin,
    )
    assert r.status_code == 200
    assert r.json()["updatedCount"] == 2

    app_db.expire_all()
    # decrement floors at zero
    assert [v.stock for v in app_db.query(ProductVariant).order_by(ProductVariant.id)] == [0, 0]

    r = client.patch("/admin/inventory/bulk", json={"productIds": [], "operation": "set", "value": 1}, headers=admin)
    assert r.json()["error"]["code"] == "no_targets"

    r = client.patch(
        "/admin/inventory/bulk",
        json={"productIds": [p.id], "variantIds": [1], "operation": "set", "value": 1},
        headers=admin,
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "validation_failed"


# ---------- orders ----------


def test_bulk_ship_sends_one_email_per_changed_order(client, admin, app, app_db) -> None:
    a = make_order(app_db, "SF-20260101-001", email="a@example.com")
    b = make_order(app_db, "SF-20260101-002", status="shipped", email="b@example.com")
    b.shipped_at = datetime(2020, 1, 1)
    app_db.commit()

    r = client.patch("/admin/orders/bulk", json={"orderIds": [a.id, b.id], "status": "shipped"}, headers=admin)
    assert r.status_code == 200, r.text
    assert r.json()["updatedCount"] == 2
    assert r.json()["changedCount"] == 1

    sent = app.state.order_notifier.email.sent
    assert [m["to"] for m in sent] == ["a@example.com"]
    assert sent[0]["subject"].startswith("Your Order Has Shipped!")

    app_db.expire_all()
    kinds = [e.event for e in app_db.query(OrderEvent).filter_by(order_id=a.id).order_by(OrderEvent.id)]
    assert kinds == ["status_changed", "email_sent"]
    assert app_db.get(Order, a.id).shipped_at is not None
    assert app_db.get(Order, b.id).shipped_at == datetime(2020, 1, 1)


class _BouncingEmail(RecordingEmail):
    def send(self, to, subject, html_body):
        if to == "bounce@example.com":
            raise RuntimeError("mail provider unavailable")
        return super().send(to, subject, html_body)


def test_bulk_ship_email_failure_does_not_block_others(client, admin, app, app_db) -> None:
    app.state.order_notifier.email = _BouncingEmail()
    bad = make_order(app_db, "SF-20260101-001", email="bounce@example.com")
    good = make_order(app_db, "SF-20260101-002", email="good@example.com")

    r = client.patch("/admin/orders/bulk", json={"orderIds": [bad.id, good.id], "status": "shipped"}, headers=admin)
    assert r.status_code == 200, r.text
    assert r.json()["changedCount"] == 2
    assert [m["to"] for m in app.state.order_notifier.email.sent] == ["good@example.com"]

    app_db.expire_all()
    sent_for = {e.order_id for e in app_db.query(OrderEvent).filter_by(event="email_sent")}
    assert sent_for == {good.id}
    assert app_db.get(Order, bad.id).status == "shipped"


def test_bulk_update_is_all_or_nothing(client, admin, app_db) -> None:
    a = make_order(app_db, "SF-20260101-001")
    done = make_order(app_db, "SF-20260101-002", status="delivered")

    r = client.patch("/admin/orders/bulk", json={"orderIds": [a.id, done.id], "status": "processing"}, headers=admin)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_transition"

    r = client.patch("/admin/orders/bulk", json={"orderIds": [a.id, 999], "status": "processing"}, headers=admin)
    assert r.status_code == 404
    assert r.json()["error"]["details"] == {"orderIds": [999]}

    app_db.expire_all()
    assert app_db.get(Order, a.id).status == "pending"


def test_order_detail_and_patch(client, admin, app, app_db) -> None:
    o = make_order(app_db)

    r = client.get(f"/admin/orders/{o.id}", headers=admin)
    assert r.status_code == 200
    assert r.json()["order"]["orderNumber"] == o.order_number

    r = client.patch(
        f"/admin/orders/{o.id}",
        json={"status": "shipped", "trackingNumber": "RM123", "internalNotes": "left at door"},
        headers=admin,
    )
    assert r.status_code == 200, r.text
    order = r.json()["order"]
    assert order["status"] == "shipped"
    assert order["trackingNumber"] == "RM123"
    assert "RM123" in app.state.order_notifier.email.sent[0]["html"]

    r = client.patch(f"/admin/orders/{o.id}", json={"status": "pending"}, headers=admin)
    assert r.status_code == 400

    listing = client.get("/admin/orders", params={"status": "shipped"}, headers=admin).json()
    assert [x["id"] for x in listing["orders"]] == [o.id]
    assert client.get("/admin/orders/424242", headers=admin).status_code == 404


# ---------- discounts ----------


def test_discount_crud(client, admin) -> None:
    r = client.post("/admin/discounts", json={"code": "spring-24", "type": "fixed", "value": 5}, headers=admin)
    assert r.status_code == 201
    dc = r.json()["discount"]
    assert dc["code"] == "SPRING-24"
    assert dc["usesCount"] == 0

    r = client.post("/admin/discounts", json={"code": "SPRING-24", "type": "fixed", "value": 5}, headers=admin)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "duplicate_code"

    r = client.post("/admin/discounts", json={"code": "BIG", "type": "percentage", "value": 150}, headers=admin)
    assert r.status_code == 400
    assert "value" in r.json()["error"]["details"]

    r = client.patch(f"/admin/discounts/{dc['id']}", json={"maxUses": 10, "active": False}, headers=admin)
    assert r.json()["discount"]["maxUses"] == 10
    assert r.json()["discount"]["active"] is False

    assert [d["code"] for d in client.get("/admin/discounts", headers=admin).json()["discounts"]] == ["SPRING-24"]
    assert client.delete(f"/admin/discounts/{dc['id']}", headers=admin).json() == {"ok": True, "deleted": dc["id"]}
    assert client.get(f"/admin/discounts/{dc['id']}", headers=admin).status_code == 404


def test_discount_in_use_cannot_be_deleted(client, admin, app_db) -> None:
    dc = make_discount(app_db, "USED")
    o = make_order(app_db)
    o.discount_code_id = dc.id
    app_db.commit()

    r = client.delete(f"/admin/discounts/{dc.id}", headers=admin)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "discount_in_use"


# ---------- settings ----------


def test_legal_policies(client, admin) -> None:
    r = client.post("/admin/settings/legal", json={"terms": "T&C", "returns": "30 days"}, headers=admin)
    assert r.json()["saved"] == ["policy_terms", "policy_returns"]

    policies = client.get("/admin/settings/legal", headers=admin).json()["policies"]
    assert policies["terms"]["body"] == "T&C"
    assert policies["privacy"] is None
    assert client.get("/policies/returns").json()["policy"]["body"] == "30 days"

    r = client.post("/admin/settings/legal", json={}, headers=admin)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "no_policies"


def test_homepage_settings(client, admin) -> None:
    payload = {"announcement": "Free tasting Saturday", "slides": [{"imageUrl": "/hero.jpg", "title": "New season"}]}
    assert client.post("/admin/settings/homepage", json=payload, headers=admin).status_code == 200

    homepage = client.get("/admin/settings/homepage", headers=admin).json()["homepage"]
    assert homepage["slides"][0]["imageUrl"] == "/hero.jpg"
    assert client.get("/site").json()["announcement"] == "Free tasting Saturday"

    r = client.post("/admin/settings/homepage", json={"slides": [{"title": "no image"}]}, headers=admin)
    assert r.status_code == 400


def test_shipping_config_replace_and_seed(client, admin) -> None:
    r = client.post("/admin/settings/shipping/seed", headers=admin)
    assert r.json()["zones"][0] == "United Kingdom"
    r = client.post("/admin/settings/shipping/seed", headers=admin)
    assert r.json()["error"]["code"] == "zones_exist"

    config = {
        "zones": [
            {"name": "Home", "countries": ["gb"], "rates": [{"name": "Post", "price": 2.5}]},
        ],
        "freeShipping": {"enabled": False, "threshold": 80},
    }
    r = client.post("/admin/settings/shipping", json=config, headers=admin)
    assert r.status_code == 200, r.text
    body = r.json()
    assert [z["countries"] for z in body["zones"]] == [["GB"]]
    assert body["freeShipping"] == {"enabled": False, "threshold": 80.0}

    clash = {
        "zones": [
            {"name": "A", "countries": ["FR"], "rates": []},
            {"name": "B", "countries": ["FR"], "rates": []},
        ]
    }
    r = client.post("/admin/settings/shipping", json=clash, headers=admin)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_shipping_config"
    # previous config survives a rejected save
    assert [z["name"] for z in client.get("/admin/settings/shipping", headers=admin).json()["zones"]] == ["Home"]


# ---------- catalog ----------


def test_product_create_patch_feature_delete(client, admin, app_db) -> None:
    teas = make_category(app_db)
    payload = {
        "slug": "lapsang",
        "name": "Lapsang",
        "basePrice": 8.5,
        "status": "active",
        "categoryId": teas.id,
        "variants": [{"name": "50g", "stock": 4}, {"name": "100g", "price": 15, "stock": 2}],
        "images": [{"url": "/lapsang.jpg"}],
    }
    r = client.post("/admin/products", json=payload, headers=admin)
    assert r.status_code == 201, r.text
    product = r.json()["product"]
    assert [v["price"] for v in product["variants"]] == [8.5, 15.0]
    assert product["category"]["slug"] == "teas"

    assert client.post("/admin/products", json=payload, headers=admin).status_code == 409

    r = client.patch(f"/admin/products/{product['id']}", json={"name": "Lapsang Souchong"}, headers=admin)
    assert r.json()["product"]["name"] == "Lapsang Souchong"

    r = client.patch("/admin/products/featured", json={"productIds": [product["id"]], "featured": True}, headers=admin)
    assert r.json()["updatedCount"] == 1
    app_db.expire_all()
    assert app_db.get(Product, product["id"]).featured is True

    assert client.delete(f"/admin/products/{product['id']}", headers=admin).status_code == 200
    assert client.get("/products/lapsang").status_code == 404
    assert client.delete(f"/admin/products/{product['id']}", headers=admin).status_code == 404


def test_create_collection_moves_products(client, admin, app_db) -> None:
    p = make_product(app_db)
    r = client.post(
        "/admin/collections",
        json={"name": "Black Teas", "slug": "black-teas", "productIds": [p.id]},
        headers=admin,
    )
    assert r.status_code == 201
    assert r.json()["productCount"] == 1
    assert [x["slug"] for x in client.get("/products", params={"collection": "black-teas"}).json()["products"]] == [
        "earl-grey"
    ]

    r = client.post("/admin/collections", json={"name": "X", "slug": "x", "productIds": [999]}, headers=admin)
    assert r.status_code == 404
    # rolled back with the missing product
    assert client.get("/products", params={"collection": "x"}).status_code == 404


# ---------- redirects ----------


def test_redirect_admin(client, admin) -> None:
    r = client.post("/admin/redirects", json={"fromPath": "old-tea", "toPath": "/products/assam"}, headers=admin)
    assert r.status_code == 201
    red = r.json()["redirect"]
    assert (red["fromPath"], red["statusCode"]) == ("/old-tea", 301)

    dup = client.post("/admin/redirects", json={"fromPath": "/old-tea", "toPath": "/x"}, headers=admin)
    assert dup.status_code == 409
    bad = client.post("/admin/redirects", json={"fromPath": "/a", "toPath": "/b", "statusCode": 200}, headers=admin)
    assert bad.status_code == 400

    assert client.get("/old-tea", follow_redirects=False).headers["location"] == "/products/assam"
    assert client.get("/admin/redirects", headers=admin).json()["redirects"][0]["hits"] == 1

    assert client.delete(f"/admin/redirects/{red['id']}", headers=admin).status_code == 200
    assert client.get("/admin/redirects", headers=admin).json()["redirects"] == []
