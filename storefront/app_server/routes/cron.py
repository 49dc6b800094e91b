# storefront/app_server/routes/cron.py
from __future__ import annotations

import hmac

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from storefront.app_server.auth import extract_bearer
from storefront.contracts.errors import AuthorizationError
from storefront.db.models import utcnow
from storefront.db.session import get_db, transaction
from storefront.inventory import reservations

router = APIRouter(tags=["cron"])


def _check_cron_secret(request: Request) -> None:
    # open when CRON_SECRET is unset
    secret = request.app.state.settings.cron_secret
    if not secret:
        return
    if not hmac.compare_digest(extract_bearer(request).encode("utf-8"), secret.encode("utf-8")):
        raise AuthorizationError("Unauthorized", status_code=401, code="unauthorized")


@router.api_route("/cron/cleanup-reservations", methods=["GET", "POST"])
def cleanup_reservations(request: Request, db: Session = Depends(get_db)):
    _check_cron_secret(request)
    now = utcnow()
    with transaction(db):
        deleted = reservations.sweep_expired(db, now)
    return {"ok": True, "success": True, "deletedCount": deleted, "timestamp": now.isoformat()}
