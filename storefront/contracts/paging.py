# storefront/contracts/paging.py
from __future__ import annotations

from typing import Any, Dict


def pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    pages = (total + limit - 1) // limit if total else 0
    return {
        "page": page,
        "limit": limit,
        "totalCount": total,
        "totalPages": pages,
        "hasNextPage": page < pages,
        "hasPrevPage": page > 1,
    }
