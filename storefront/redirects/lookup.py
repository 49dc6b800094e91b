# storefront/redirects/lookup.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from storefront.app_server.metrics import REDIRECTS_SERVED
from storefront.contracts.errors import ConflictError, NotFoundError, ValidationError
from storefront.db.models import Redirect, utcnow
from storefront.db.session import transaction

logger = logging.getLogger(__name__)

# Only legacy URL shapes are looked up; everything else skips the query.
REDIRECT_PREFIXES = ("/products/", "/collections/", "/old-", "/pages/")
ALLOWED_STATUS_CODES = (301, 302, 307, 308)


@dataclass(frozen=True)
class RedirectTarget:
    to_path: str
    status_code: int


def should_check(path: str) -> bool:
    return path.startswith(REDIRECT_PREFIXES)


def normalize_path(path: str) -> str:
    path = (path or "").strip()
    return path if path.startswith("/") else f"/{path}"


def lookup(db: Session, path: str) -> Optional[RedirectTarget]:
    row = db.execute(
        select(Redirect.to_path, Redirect.status_code)
        .where(Redirect.from_path == path, Redirect.active.is_(True))
        .limit(1)
    ).first()
    if row is None:
        return None
    return RedirectTarget(to_path=row.to_path, status_code=row.status_code or 301)


def record_hit(session_factory: sessionmaker, path: str) -> None:
    """Bump the hit counter in its own transaction. Failures are logged, never raised."""
    db = session_factory()
    try:
        with transaction(db):
            db.execute(
                update(Redirect)
                .where(Redirect.from_path == path)
                .values(hits=Redirect.hits + 1, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
    except SQLAlchemyError as e:
        logger.warning("redirect hit not recorded: %s", e, extra={"context": "redirects.hit", "path": path})
    finally:
        db.close()


def resolve_redirect(session_factory: sessionmaker, path: str) -> Optional[RedirectTarget]:
    if not should_check(path):
        return None
    db = session_factory()
    try:
        target = lookup(db, path)
    except SQLAlchemyError as e:
        logger.error("redirect lookup failed: %s", e, extra={"context": "redirects.lookup", "path": path})
        return None
    finally:
        db.close()
    if target is None:
        return None
    record_hit(session_factory, path)
    REDIRECTS_SERVED.inc()
    return target


# --- admin ------------------------------------------------------------------


def list_redirects(db: Session) -> List[Redirect]:
    return list(db.execute(select(Redirect).order_by(Redirect.hits.desc(), Redirect.created_at.desc())).scalars())


def create_redirect(
    db: Session,
    from_path: str,
    to_path: str,
    status_code: Optional[int] = None,
    notes: Optional[str] = None,
) -> Redirect:
    if not (from_path or "").strip() or not (to_path or "").strip():
        raise ValidationError("fromPath and toPath are required")
    status_code = status_code or 301
    if status_code not in ALLOWED_STATUS_CODES:
        raise ValidationError(
            "statusCode must be a redirect status",
            details={"statusCode": status_code, "allowed": list(ALLOWED_STATUS_CODES)},
        )
    src = normalize_path(from_path)
    if src == to_path.strip():
        raise ValidationError("A redirect cannot point at itself")
    if db.execute(select(Redirect.id).where(Redirect.from_path == src)).first() is not None:
        raise ConflictError("A redirect for this path already exists", code="duplicate_redirect")

    now = utcnow()
    r = Redirect(
        from_path=src,
        to_path=to_path.strip(),
        status_code=status_code,
        notes=notes,
        active=True,
        hits=0,
        created_at=now,
        updated_at=now,
    )
    db.add(r)
    db.flush()
    return r


def delete_redirect(db: Session, redirect_id: int) -> None:
    r = db.get(Redirect, redirect_id)
    if r is None:
        raise NotFoundError("Redirect not found")
    db.delete(r)
    db.flush()


def redirect_to_dict(r: Redirect) -> Dict[str, Any]:
    return {
        "id": r.id,
        "fromPath": r.from_path,
        "toPath": r.to_path,
        "statusCode": r.status_code,
        "hits": r.hits,
        "active": r.active,
        "notes": r.notes,
        "createdAt": r.created_at.isoformat() if r.created_at else None,
    }
