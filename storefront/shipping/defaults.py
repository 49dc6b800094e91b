# storefront/shipping/defaults.py
from __future__ import annotations

from typing import Any, Dict, List

EU_COUNTRIES: List[str] = [
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR",
    "DE", "GR", "HU", "IT", "LV", "LT", "LU", "MT", "NL", "PL",
    "PT", "RO", "SK", "SI", "ES", "SE",
]

INTERNATIONAL_COUNTRIES: List[str] = [
    "AE", "AU", "CA", "HK", "IL", "JP", "MY", "NZ", "NO", "SG", "KR", "CH", "US",
]


def _rate(name: str, lo: int, hi: int, price: float, days: str, tracked: bool = False) -> Dict[str, Any]:
    return {
        "name": name,
        "min_weight_grams": lo,
        "max_weight_grams": hi,
        "price": price,
        "estimated_days": days,
        "tracked": tracked,
    }


# Seeded by POST /admin/settings/shipping/seed on an empty zone table.
DEFAULT_ZONES: List[Dict[str, Any]] = [
    {
        "name": "United Kingdom",
        "countries": ["GB"],
        "rates": [
            _rate("Evri", 0, 2000, 3.80, "2-4"),
            _rate("Royal Mail 48", 0, 2000, 4.00, "2-4"),
            _rate("Royal Mail 48", 2001, 5000, 8.25, "2-4"),
        ],
    },
    {
        "name": "Ireland",
        "countries": ["IE"],
        "rates": [
            _rate("Large letter", 0, 499, 3.25, "3-5"),
            _rate("Royal Mail - no tracking", 0, 500, 8.25, "3-7"),
            _rate("Royal Mail with tracking", 0, 500, 11.25, "3-7", tracked=True),
            _rate("Royal Mail with tracking", 511, 1000, 15.00, "3-7", tracked=True),
        ],
    },
    {
        "name": "EU (European Union)",
        "countries": EU_COUNTRIES,
        "rates": [
            _rate("Standard International", 0, 500, 11.25, "2-11"),
            _rate("Standard International", 510, 1000, 15.00, "2-11"),
        ],
    },
    {
        "name": "International",
        "countries": INTERNATIONAL_COUNTRIES,
        "rates": [
            _rate("Standard International Tracked", 0, 500, 22.00, "7-21", tracked=True),
            _rate("Standard International Tracked", 510, 1000, 28.00, "7-21", tracked=True),
        ],
    },
]

DEFAULT_FREE_SHIPPING_ENABLED = True
DEFAULT_FREE_SHIPPING_THRESHOLD = 50.0
