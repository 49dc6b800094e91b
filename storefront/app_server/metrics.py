# storefront/app_server/metrics.py
from __future__ import annotations

from prometheus_client import Counter

RESERVATIONS_SWEPT = Counter(
    "storefront_reservations_swept_total",
    "Expired stock reservations deleted by the sweep",
)

DISCOUNT_VALIDATIONS = Counter(
    "storefront_discount_validations_total",
    "Discount code evaluations by outcome",
    ["outcome"],
)

NOTIFICATIONS = Counter(
    "storefront_notifications_total",
    "Best-effort notification sends by kind and outcome",
    ["kind", "outcome"],
)

ORDERS_CREATED = Counter(
    "storefront_orders_created_total",
    "Orders created from completed checkout sessions",
)

REDIRECTS_SERVED = Counter(
    "storefront_redirects_served_total",
    "Legacy URL redirects served",
)
