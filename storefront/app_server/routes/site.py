# storefront/app_server/routes/site.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from storefront.contracts.errors import AuthorizationError, NotFoundError
from storefront.db.session import get_db
from storefront.orders.lifecycle import get_order_by_number, order_snapshot
from storefront.orders.tokens import verify_order_token
from storefront.settings import store as settings_store

router = APIRouter(tags=["site"])


@router.get("/policies/{slug}")
def get_policy(slug: str, db: Session = Depends(get_db)):
    key = settings_store.POLICY_SLUGS.get(slug)
    if key is None:
        raise NotFoundError("Policy not found")
    doc = settings_store.get_policy(db, key)
    return {"ok": True, "slug": slug, "policy": doc.model_dump() if doc else None}


@router.get("/site")
def get_site(db: Session = Depends(get_db)):
    config = settings_store.load_site_config(db)
    return {
        "ok": True,
        "announcement": config.homepage.announcement,
        "homepage": config.homepage.model_dump(),
        "freeShipping": config.free_shipping.model_dump(),
    }


@router.get("/order/{order_number}")
def get_guest_order(
    order_number: str,
    request: Request,
    token: str = Query(default=""),
    db: Session = Depends(get_db),
):
    settings = request.app.state.settings
    order = get_order_by_number(db, order_number)
    # same answer for unknown order and bad token
    if order is None or not verify_order_token(
        settings.order_token_secret, token, order.id, order.email, ttl_days=settings.order_token_ttl_days
    ):
        raise AuthorizationError("Invalid or expired order link", status_code=401, code="invalid_order_token")
    snap = order_snapshot(order)
    snap.pop("id", None)
    return {"ok": True, "order": snap}
