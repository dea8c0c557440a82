from __future__ import annotations

import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..dependencies.access import parse_uuid
from ..dependencies.auth import AuthContext, require_admin, require_auth
from ..dependencies.db import get_db
from ..models import Org, User

router = APIRouter(prefix="/organizations", tags=["organizations"])

_SLUG_RE = re.compile(r"^[a-z0-9-]+$")


def _validate_slug(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not _SLUG_RE.match(value):
        raise ValueError("Slug may contain only lowercase letters, digits and hyphens")
    return value


class CreateOrgRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None

    @field_validator("slug")
    @classmethod
    def check_slug(cls, value: Optional[str]) -> Optional[str]:
        return _validate_slug(value)


class UpdateOrgRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    slug: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("slug")
    @classmethod
    def check_slug(cls, value: Optional[str]) -> Optional[str]:
        return _validate_slug(value)


def serialize_org(org: Org, user_count: int | None = None) -> dict:
    payload = {
        "id": str(org.id),
        "name": org.name,
        "slug": org.slug,
        "description": org.description,
        "is_active": org.is_active,
        "created_at": org.created_at.isoformat() if org.created_at else None,
    }
    if user_count is not None:
        payload["user_count"] = user_count
    return payload


def _get_org_or_404(db: Session, org_id: str) -> Org:
    org = db.get(Org, parse_uuid(org_id, "organization"))
    if org is None:
        raise HTTPException(status_code=404, detail="Organization not found")
    return org


def _ensure_unique(db: Session, name: Optional[str], slug: Optional[str], exclude_id=None) -> None:
    clauses = []
    if name:
        clauses.append(func.lower(Org.name) == name.strip().lower())
    if slug:
        clauses.append(Org.slug == slug)
    if not clauses:
        return
    query = db.query(Org.id).filter(or_(*clauses))
    if exclude_id is not None:
        query = query.filter(Org.id != exclude_id)
    if query.first():
        raise HTTPException(status_code=409, detail="Organization name or slug already exists")


@router.get("")
def list_organizations(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    query = db.query(Org)
    if not context.user.is_privileged:
        query = query.filter(Org.id == context.user.org_id)
    orgs = query.order_by(Org.name.asc()).all()

    counts = dict(
        db.query(User.org_id, func.count(User.id))
        .filter(User.org_id.in_([org.id for org in orgs]))
        .group_by(User.org_id)
        .all()
    ) if orgs else {}
    return {"items": [serialize_org(org, counts.get(org.id, 0)) for org in orgs]}


@router.get("/{org_id}")
def get_organization(
    org_id: str,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    org = _get_org_or_404(db, org_id)
    if not context.user.is_privileged and context.user.org_id != org.id:
        raise HTTPException(status_code=404, detail="Organization not found")
    user_count = db.query(func.count(User.id)).filter(User.org_id == org.id).scalar() or 0
    return serialize_org(org, user_count)


@router.post("", status_code=201)
def create_organization(
    payload: CreateOrgRequest,
    context: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    _ensure_unique(db, payload.name, payload.slug)
    org = Org(name=payload.name.strip(), slug=payload.slug, description=payload.description)
    db.add(org)
    db.commit()
    db.refresh(org)
    return serialize_org(org, 0)


@router.patch("/{org_id}")
def update_organization(
    org_id: str,
    payload: UpdateOrgRequest,
    context: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    org = _get_org_or_404(db, org_id)
    _ensure_unique(db, payload.name, payload.slug, exclude_id=org.id)

    if payload.name is not None:
        org.name = payload.name.strip()
    if payload.slug is not None:
        org.slug = payload.slug
    if payload.description is not None:
        org.description = payload.description
    if payload.is_active is not None:
        org.is_active = payload.is_active

    db.add(org)
    db.commit()
    db.refresh(org)
    return serialize_org(org)


@router.delete("/{org_id}")
def delete_organization(
    org_id: str,
    context: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    org = _get_org_or_404(db, org_id)
    # members fall back to no organization rather than losing their accounts
    db.query(User).filter(User.org_id == org.id).update({"org_id": None}, synchronize_session=False)
    db.delete(org)
    db.commit()
    return {"status": "deleted"}
