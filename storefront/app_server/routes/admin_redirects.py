# storefront/app_server/routes/admin_redirects.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.orm import Session

from storefront.contracts.models import CamelModel
from storefront.db.session import get_db, transaction
from storefront.redirects import lookup

router = APIRouter(prefix="/admin/redirects", tags=["admin:redirects"])


class RedirectIn(CamelModel):
    from_path: str = Field(min_length=1, max_length=1024)
    to_path: str = Field(min_length=1, max_length=1024)
    status_code: Optional[int] = None
    notes: Optional[str] = None


@router.get("")
def list_redirects(db: Session = Depends(get_db)):
    return {"ok": True, "redirects": [lookup.redirect_to_dict(r) for r in lookup.list_redirects(db)]}


@router.post("", status_code=201)
def create_redirect(body: RedirectIn, db: Session = Depends(get_db)):
    with transaction(db):
        r = lookup.create_redirect(db, body.from_path, body.to_path, body.status_code, body.notes)
    return {"ok": True, "redirect": lookup.redirect_to_dict(r)}


@router.delete("/{redirect_id}")
def delete_redirect(redirect_id: int, db: Session = Depends(get_db)):
    with transaction(db):
        lookup.delete_redirect(db, redirect_id)
    return {"ok": True, "deleted": redirect_id}
