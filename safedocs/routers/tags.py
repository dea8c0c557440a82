from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..dependencies.access import parse_uuid
from ..dependencies.auth import AuthContext, require_auth, require_role
from ..dependencies.db import get_db
from ..models import Tag, UserRole, document_tags

router = APIRouter(prefix="/tags", tags=["tags"])

_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


class TagPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, pattern=_COLOR_PATTERN)


class UpdateTagPayload(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, pattern=_COLOR_PATTERN)


def serialize_tag(tag: Tag, document_count: int | None = None) -> dict:
    payload = {
        "id": str(tag.id),
        "name": tag.name,
        "color": tag.color,
        "created_at": tag.created_at.isoformat() if tag.created_at else None,
    }
    if document_count is not None:
        payload["document_count"] = document_count
    return payload


def _ensure_unique_name(db: Session, name: str, exclude_id=None) -> None:
    query = db.query(Tag.id).filter(func.lower(Tag.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Tag.id != exclude_id)
    if query.first():
        raise HTTPException(status_code=409, detail="Tag name already exists")


def _get_tag_or_404(db: Session, tag_id: str) -> Tag:
    tag = db.get(Tag, parse_uuid(tag_id, "tag"))
    if tag is None:
        raise HTTPException(status_code=404, detail="Tag not found")
    return tag


@router.get("")
def list_tags(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    counts = dict(
        db.query(document_tags.c.tag_id, func.count(document_tags.c.document_id))
        .group_by(document_tags.c.tag_id)
        .all()
    )
    tags = db.query(Tag).order_by(Tag.name.asc()).all()
    return {"items": [serialize_tag(tag, counts.get(tag.id, 0)) for tag in tags]}


@router.post("", status_code=201)
def create_tag(
    payload: TagPayload,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    name = payload.name.strip()
    _ensure_unique_name(db, name)
    tag = Tag(name=name, color=payload.color)
    db.add(tag)
    db.commit()
    db.refresh(tag)
    return serialize_tag(tag, 0)


@router.patch("/{tag_id}")
def update_tag(
    tag_id: str,
    payload: UpdateTagPayload,
    context: AuthContext = Depends(require_role(UserRole.ADMIN, UserRole.MANAGER)),
    db: Session = Depends(get_db),
):
    tag = _get_tag_or_404(db, tag_id)
    if payload.name is not None:
        name = payload.name.strip()
        _ensure_unique_name(db, name, exclude_id=tag.id)
        tag.name = name
    if payload.color is not None:
        tag.color = payload.color
    db.add(tag)
    db.commit()
    db.refresh(tag)
    return serialize_tag(tag)


@router.delete("/{tag_id}")
def delete_tag(
    tag_id: str,
    context: AuthContext = Depends(require_role(UserRole.ADMIN, UserRole.MANAGER)),
    db: Session = Depends(get_db),
):
    tag = _get_tag_or_404(db, tag_id)
    db.execute(document_tags.delete().where(document_tags.c.tag_id == tag.id))
    db.delete(tag)
    db.commit()
    return {"status": "deleted"}
