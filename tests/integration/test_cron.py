from __future__ import annotations

from datetime import timedelta

from helpers import make_product
from storefront.db.models import StockReservation, utcnow
from storefront.inventory.reservations import Line, create_reservations


def _stale_hold(db) -> None:
    p = make_product(db)
    create_reservations(db, "stale", [Line(p.variants[0].id, 1)], ttl_minutes=1, now=utcnow() - timedelta(hours=2))
    db.commit()


def test_cleanup_is_open_without_secret(client, app_db) -> None:
    _stale_hold(app_db)
    r = client.post("/cron/cleanup-reservations")
    assert r.status_code == 200
    assert r.json()["deletedCount"] == 1
    assert app_db.query(StockReservation).count() == 0

    # a second sweep has nothing left
    assert client.get("/cron/cleanup-reservations").json()["deletedCount"] == 0


def test_cleanup_requires_bearer_when_secret_set(make_client) -> None:
    client = make_client(cron_secret="s3cret")
    r = client.get("/cron/cleanup-reservations")
    assert r.status_code == 401
    assert r.json()["ok"] is False

    assert client.get("/cron/cleanup-reservations", headers={"Authorization": "Bearer wrong"}).status_code == 401
    ok = client.get("/cron/cleanup-reservations", headers={"Authorization": "Bearer s3cret"})
    assert ok.status_code == 200
    assert ok.json()["success"] is True
