# storefront/app_server/routes/admin_settings.py
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.orm import Session

from storefront.contracts.errors import ValidationError
from storefront.contracts.models import CamelModel
from storefront.db.session import get_db, transaction
from storefront.settings import store as settings_store
from storefront.settings.store import FreeShippingSettings, HomepageSettings
from storefront.shipping import resolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/settings", tags=["admin:settings"])


# ---------- Schemas ----------


class LegalIn(CamelModel):
    terms: Optional[str] = None
    privacy: Optional[str] = None
    returns: Optional[str] = None
    shipping: Optional[str] = None


class RateIn(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    min_weight_grams: int = 0
    max_weight_grams: Optional[int] = None
    price: float
    estimated_days: Optional[str] = None
    tracked: bool = False


class ZoneIn(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    countries: List[str] = Field(default_factory=list)
    rates: List[RateIn] = Field(default_factory=list)


class FreeShippingIn(CamelModel):
    enabled: bool = True
    threshold: float = Field(default=settings_store.DEFAULT_FREE_SHIPPING_THRESHOLD, ge=0)


class ShippingConfigIn(CamelModel):
    zones: List[ZoneIn] = Field(default_factory=list)
    free_shipping: FreeShippingIn = Field(default_factory=FreeShippingIn)


# ---------- Legal ----------


@router.get("/legal")
def get_legal(db: Session = Depends(get_db)):
    policies = settings_store.list_policies(db)
    return {
        "ok": True,
        "policies": {
            slug: (policies[key].model_dump() if key in policies else None)
            for slug, key in settings_store.POLICY_SLUGS.items()
        },
    }


@router.post("/legal")
def save_legal(body: LegalIn, db: Session = Depends(get_db)):
    sent = body.model_dump(exclude_none=True)
    if not sent:
        raise ValidationError("No policies supplied", code="no_policies")
    bodies = {settings_store.POLICY_SLUGS[slug]: text for slug, text in sent.items()}
    with transaction(db):
        saved = settings_store.save_policies(db, bodies)
    return {"ok": True, "success": True, "saved": saved}


# ---------- Homepage ----------


@router.get("/homepage")
def get_homepage(db: Session = Depends(get_db)):
    return {"ok": True, "homepage": settings_store.get_homepage(db).model_dump()}


@router.post("/homepage")
def save_homepage(body: HomepageSettings, db: Session = Depends(get_db)):
    with transaction(db):
        settings_store.save_homepage(db, body)
    return {"ok": True, "success": True, "homepage": body.model_dump()}


# ---------- Shipping ----------


def _shipping_payload(db: Session) -> dict:
    return {
        "ok": True,
        "zones": resolver.list_zones(db),
        "freeShipping": settings_store.get_free_shipping(db).model_dump(),
    }


@router.get("/shipping")
def get_shipping(db: Session = Depends(get_db)):
    return _shipping_payload(db)


@router.post("/shipping")
def save_shipping(body: ShippingConfigIn, db: Session = Depends(get_db)):
    zones = [z.model_dump() for z in body.zones]
    free = FreeShippingSettings(enabled=body.free_shipping.enabled, threshold=body.free_shipping.threshold)
    with transaction(db):
        resolver.replace_zones(db, zones, free)
    logger.info("shipping config replaced: %d zones", len(zones), extra={"context": "shipping.config"})
    return _shipping_payload(db)


@router.post("/shipping/seed")
def seed_shipping(db: Session = Depends(get_db)):
    with transaction(db):
        names = resolver.seed_defaults(db)
    return {"ok": True, "success": True, "zones": names}
