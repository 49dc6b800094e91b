# storefront/settings/store.py
"""
Site configuration kept in the flat ``site_settings`` key/value table.

Raw strings never leave this module: every known key is decoded into a
typed model here, and handlers work with ``SiteConfig`` / the individual
models instead of parsing values themselves.

Key namespaces:
  policy_<name>            JSON {"body", "updatedAt"}; legacy rows hold a bare string
  free_shipping_enabled    "true" / "false" (absent means enabled)
  free_shipping_threshold  numeric string (absent means 50)
  homepage                 JSON {"announcement", "slides": [...]}
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.db.models import SiteSetting, utcnow

logger = logging.getLogger(__name__)

PolicyKey = Literal["policy_terms", "policy_privacy", "policy_returns", "policy_shipping"]
POLICY_KEYS: tuple[str, ...] = ("policy_terms", "policy_privacy", "policy_returns", "policy_shipping")
POLICY_SLUGS: Dict[str, str] = {key.removeprefix("policy_"): key for key in POLICY_KEYS}

FREE_SHIPPING_ENABLED = "free_shipping_enabled"
FREE_SHIPPING_THRESHOLD = "free_shipping_threshold"
HOMEPAGE = "homepage"

DEFAULT_FREE_SHIPPING_THRESHOLD = 50.0


class PolicyDocument(BaseModel):
    body: str
    updatedAt: str = ""


class FreeShippingSettings(BaseModel):
    enabled: bool = True
    threshold: float = Field(default=DEFAULT_FREE_SHIPPING_THRESHOLD, ge=0)

    def applies_to(self, subtotal: float) -> bool:
        return self.enabled and subtotal >= self.threshold


class HeroSlide(BaseModel):
    imageUrl: str = Field(min_length=1)
    title: Optional[str] = None
    subtitle: Optional[str] = None
    buttonText: Optional[str] = None
    buttonLink: Optional[str] = None
    imageAlt: Optional[str] = None


class HomepageSettings(BaseModel):
    announcement: str = ""
    slides: List[HeroSlide] = Field(default_factory=list)


class SiteConfig(BaseModel):
    policies: Dict[str, PolicyDocument] = Field(default_factory=dict)
    free_shipping: FreeShippingSettings = Field(default_factory=FreeShippingSettings)
    homepage: HomepageSettings = Field(default_factory=HomepageSettings)


def _ts(value: datetime | None) -> str:
    return value.isoformat() if value else ""


def decode_policy(row: SiteSetting) -> PolicyDocument:
    try:
        data = json.loads(row.value)
    except (TypeError, ValueError):
        data = None
    if isinstance(data, dict) and isinstance(data.get("body"), str):
        return PolicyDocument(body=data["body"], updatedAt=str(data.get("updatedAt") or _ts(row.updated_at)))
    return PolicyDocument(body=row.value, updatedAt=_ts(row.updated_at))


def decode_free_shipping(raw: Dict[str, str]) -> FreeShippingSettings:
    enabled = (raw.get(FREE_SHIPPING_ENABLED) or "").strip().lower() != "false"
    threshold_raw = (raw.get(FREE_SHIPPING_THRESHOLD) or "").strip()
    try:
        threshold = float(threshold_raw) if threshold_raw else DEFAULT_FREE_SHIPPING_THRESHOLD
    except ValueError:
        logger.warning(
            "bad free shipping threshold %r, using default",
            threshold_raw,
            extra={"context": "settings.decode"},
        )
        threshold = DEFAULT_FREE_SHIPPING_THRESHOLD
    return FreeShippingSettings(enabled=enabled, threshold=max(0.0, threshold))


def decode_homepage(raw: Optional[str]) -> HomepageSettings:
    if not raw:
        return HomepageSettings()
    try:
        return HomepageSettings.model_validate_json(raw)
    except ValueError:
        logger.warning("homepage setting is not valid JSON, ignoring", extra={"context": "settings.decode"})
        return HomepageSettings()


def get_raw(db: Session, key: str) -> Optional[SiteSetting]:
    return db.execute(select(SiteSetting).where(SiteSetting.key == key)).scalar_one_or_none()


def upsert(db: Session, key: str, value: str) -> None:
    """Insert or update one key. Does not commit; callers own the transaction."""
    row = get_raw(db, key)
    if row is None:
        db.add(SiteSetting(key=key, value=value, updated_at=utcnow()))
    else:
        row.value = value
        row.updated_at = utcnow()
    db.flush()


def get_policy(db: Session, key: str) -> Optional[PolicyDocument]:
    row = get_raw(db, key)
    return decode_policy(row) if row is not None else None


def list_policies(db: Session) -> Dict[str, PolicyDocument]:
    rows = db.execute(select(SiteSetting).where(SiteSetting.key.like("policy_%"))).scalars().all()
    return {r.key: decode_policy(r) for r in rows}


def save_policies(db: Session, bodies: Dict[str, str]) -> List[str]:
    now = utcnow().isoformat()
    saved: List[str] = []
    for key in POLICY_KEYS:
        body = bodies.get(key)
        if body is None:
            continue
        upsert(db, key, PolicyDocument(body=body, updatedAt=now).model_dump_json())
        saved.append(key)
    return saved


def get_free_shipping(db: Session) -> FreeShippingSettings:
    rows = db.execute(
        select(SiteSetting).where(SiteSetting.key.in_([FREE_SHIPPING_ENABLED, FREE_SHIPPING_THRESHOLD]))
    ).scalars()
    return decode_free_shipping({r.key: r.value for r in rows})


def save_free_shipping(db: Session, settings: FreeShippingSettings) -> None:
    upsert(db, FREE_SHIPPING_ENABLED, "true" if settings.enabled else "false")
    upsert(db, FREE_SHIPPING_THRESHOLD, f"{settings.threshold:g}")


def get_homepage(db: Session) -> HomepageSettings:
    row = get_raw(db, HOMEPAGE)
    return decode_homepage(row.value if row else None)


def save_homepage(db: Session, homepage: HomepageSettings) -> None:
    upsert(db, HOMEPAGE, homepage.model_dump_json())


def load_site_config(db: Session) -> SiteConfig:
    rows = db.execute(select(SiteSetting)).scalars().all()
    by_key = {r.key: r for r in rows}
    return SiteConfig(
        policies={k: decode_policy(r) for k, r in by_key.items() if k in POLICY_KEYS},
        free_shipping=decode_free_shipping({k: r.value for k, r in by_key.items()}),
        homepage=decode_homepage(by_key[HOMEPAGE].value if HOMEPAGE in by_key else None),
    )
