# storefront/shipping/resolver.py
"""
Destination country + parcel weight -> zone -> rate.

Zones are validated whenever they are written (``validate_zones``); a
country may belong to at most one zone. If the table was written some other
way and a country does end up in two zones, ``resolve`` refuses to guess
and raises ``ConfigurationError``.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from storefront.contracts.errors import ConfigurationError, ValidationError
from storefront.db.models import ShippingRate, ShippingZone
from storefront.settings import store as settings_store
from storefront.settings.store import FreeShippingSettings
from storefront.shipping.defaults import DEFAULT_FREE_SHIPPING_ENABLED, DEFAULT_FREE_SHIPPING_THRESHOLD, DEFAULT_ZONES

logger = logging.getLogger(__name__)

ISO2_RE = re.compile(r"^[A-Z]{2}$")

NO_ZONE_FOR_COUNTRY = "no_zone_for_country"
NO_RATE_FOR_WEIGHT = "no_rate_for_weight"


class ShippingUnavailable(ValidationError):
    default_code = NO_ZONE_FOR_COUNTRY


@dataclass(frozen=True)
class RateQuote:
    zone_id: int
    zone_name: str
    rate_id: int
    name: str
    price: float
    estimated_days: Optional[str]
    tracked: bool

    def as_dict(self) -> Dict[str, Any]:
        return {
            "zoneId": self.zone_id,
            "zoneName": self.zone_name,
            "rateId": self.rate_id,
            "name": self.name,
            "price": self.price,
            "estimatedDays": self.estimated_days,
            "tracked": self.tracked,
        }


def parse_countries(raw: str | None) -> List[str]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("shipping zone countries is not JSON: %r", raw, extra={"context": "shipping.resolve"})
        return []
    if not isinstance(data, list):
        return []
    return [str(c).strip().upper() for c in data if str(c).strip()]


def band_covers(rate: ShippingRate, weight_grams: int) -> bool:
    lo = rate.min_weight_grams or 0
    hi = rate.max_weight_grams
    return lo <= weight_grams and (hi is None or weight_grams <= hi)


def _zones(db: Session) -> List[ShippingZone]:
    return list(
        db.execute(select(ShippingZone).options(selectinload(ShippingZone.rates)).order_by(ShippingZone.id)).scalars()
    )


def zone_for_country(db: Session, country: str) -> ShippingZone:
    cc = (country or "").strip().upper()
    matches = [z for z in _zones(db) if cc in parse_countries(z.countries)]
    if not matches:
        raise ShippingUnavailable(f"No shipping zone covers {cc or 'this country'}", code=NO_ZONE_FOR_COUNTRY)
    if len(matches) > 1:
        logger.error(
            "country %s is in %d shipping zones",
            cc,
            len(matches),
            extra={"context": "shipping.resolve", "zones": [z.id for z in matches]},
        )
        raise ConfigurationError(
            "Shipping is misconfigured for this destination",
            code="shipping_misconfigured",
            details={"country": cc, "zoneIds": [z.id for z in matches]},
        )
    return matches[0]


def _quote(zone: ShippingZone, rate: ShippingRate) -> RateQuote:
    return RateQuote(
        zone_id=zone.id,
        zone_name=zone.name,
        rate_id=rate.id,
        name=rate.name,
        price=rate.price,
        estimated_days=rate.estimated_days,
        tracked=bool(rate.tracked),
    )


def quote_options(db: Session, country: str, weight_grams: int) -> List[RateQuote]:
    """Every rate in the destination zone whose band covers the weight, cheapest first."""
    zone = zone_for_country(db, country)
    covering = [r for r in zone.rates if band_covers(r, weight_grams)]
    covering.sort(key=lambda r: (r.price, r.min_weight_grams or 0, r.id))
    return [_quote(zone, r) for r in covering]


def resolve(db: Session, country: str, weight_grams: int) -> RateQuote:
    """Cheapest rate whose band covers the weight; overlapping bands are allowed."""
    zone = zone_for_country(db, country)
    bands = sorted(zone.rates, key=lambda r: (r.price, r.min_weight_grams or 0, r.id))
    for rate in bands:
        if band_covers(rate, weight_grams):
            return _quote(zone, rate)
    raise ShippingUnavailable(
        f"No shipping rate for a {weight_grams}g parcel to {zone.name}",
        code=NO_RATE_FOR_WEIGHT,
        details={"zone": zone.name, "weightGrams": weight_grams},
    )


# --- configuration ----------------------------------------------------------


def validate_zones(zones: Sequence[Dict[str, Any]]) -> None:
    """Raise ValidationError for malformed zones or a country listed in more than one zone."""
    errors: Dict[str, str] = {}
    owner: Dict[str, str] = {}
    for i, zone in enumerate(zones):
        name = (zone.get("name") or "").strip()
        if not name:
            errors[f"zones.{i}.name"] = "Zone name is required"
        countries = zone.get("countries") or []
        if not countries:
            errors[f"zones.{i}.countries"] = "At least one country is required"
        for cc in countries:
            if not ISO2_RE.match(cc):
                errors[f"zones.{i}.countries"] = f"Invalid country code {cc!r}"
                continue
            if cc in owner:
                errors[f"zones.{i}.countries"] = f"{cc} is already in zone {owner[cc]!r}"
            else:
                owner[cc] = name
        for j, rate in enumerate(zone.get("rates") or []):
            lo = rate.get("min_weight_grams") or 0
            hi = rate.get("max_weight_grams")
            if lo < 0:
                errors[f"zones.{i}.rates.{j}.minWeightGrams"] = "Minimum weight cannot be negative"
            if hi is not None and hi < lo:
                errors[f"zones.{i}.rates.{j}.maxWeightGrams"] = "Maximum weight must not be below minimum"
            if (rate.get("price") or 0) < 0:
                errors[f"zones.{i}.rates.{j}.price"] = "Price cannot be negative"
    if errors:
        raise ValidationError("Invalid shipping configuration", code="invalid_shipping_config", details=errors)


def _normalize(zones: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    out = []
    for z in zones:
        out.append(
            {
                "name": (z.get("name") or "").strip(),
                "countries": [str(c).strip().upper() for c in (z.get("countries") or [])],
                "rates": list(z.get("rates") or []),
            }
        )
    return out


def _insert_zones(db: Session, zones: Sequence[Dict[str, Any]]) -> None:
    for z in zones:
        zone = ShippingZone(name=z["name"], countries=json.dumps(z["countries"]))
        for r in z["rates"]:
            zone.rates.append(
                ShippingRate(
                    name=r["name"],
                    min_weight_grams=r.get("min_weight_grams") or 0,
                    max_weight_grams=r.get("max_weight_grams"),
                    price=r["price"],
                    estimated_days=r.get("estimated_days"),
                    tracked=bool(r.get("tracked")),
                )
            )
        db.add(zone)
    db.flush()


def replace_zones(db: Session, zones: Sequence[Dict[str, Any]], free_shipping: FreeShippingSettings) -> None:
    """Swap the whole zone/rate table and the free-shipping settings. Caller owns the transaction."""
    normalized = _normalize(zones)
    validate_zones(normalized)
    for existing in _zones(db):
        db.delete(existing)
    db.flush()
    _insert_zones(db, normalized)
    settings_store.save_free_shipping(db, free_shipping)


def seed_defaults(db: Session) -> List[str]:
    if db.execute(select(ShippingZone.id).limit(1)).first() is not None:
        raise ValidationError(
            "Shipping zones already exist. Delete existing zones first to reseed.",
            code="zones_exist",
        )
    validate_zones(DEFAULT_ZONES)
    _insert_zones(db, DEFAULT_ZONES)
    settings_store.save_free_shipping(
        db, FreeShippingSettings(enabled=DEFAULT_FREE_SHIPPING_ENABLED, threshold=DEFAULT_FREE_SHIPPING_THRESHOLD)
    )
    return [z["name"] for z in DEFAULT_ZONES]


def zone_to_dict(zone: ShippingZone) -> Dict[str, Any]:
    return {
        "id": zone.id,
        "name": zone.name,
        "countries": parse_countries(zone.countries),
        "rates": [
            {
                "id": r.id,
                "name": r.name,
                "minWeightGrams": r.min_weight_grams,
                "maxWeightGrams": r.max_weight_grams,
                "price": r.price,
                "estimatedDays": r.estimated_days,
                "tracked": bool(r.tracked),
            }
            for r in zone.rates
        ],
    }


def list_zones(db: Session) -> List[Dict[str, Any]]:
    return [zone_to_dict(z) for z in _zones(db)]
