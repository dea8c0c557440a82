from __future__ import annotations

import io
import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, Field
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..dependencies.access import parse_uuid
from ..dependencies.auth import AuthContext, require_admin, require_role
from ..dependencies.db import get_db
from ..dependencies.files import guess_mime_type, read_upload, sanitize_filename, stream_stored_file
from ..models import MediaItem, MediaType, User, UserRole
from ..services import audit
from ..services.storage import StorageError, get_storage_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["media"])

require_media = require_role(UserRole.ADMIN, UserRole.MANAGER)


class UpdateMediaPayload(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=100)
    tags: Optional[List[str]] = None


def _media_type_for(mime_type: str) -> MediaType:
    prefix = mime_type.split("/", 1)[0]
    try:
        return MediaType(prefix)
    except ValueError as exc:
        raise HTTPException(status_code=415, detail="Only image, video or audio files are accepted") from exc


def _image_dimensions(data: bytes) -> tuple[Optional[int], Optional[int]]:
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.width, image.height
    except (UnidentifiedImageError, OSError):
        logger.info("media_dimensions_unavailable bytes=%s", len(data))
        return None, None


def _parse_tags(raw: Optional[str]) -> Optional[list[str]]:
    if not raw:
        return None
    raw = raw.strip()
    if raw.startswith("["):
        try:
            values = json.loads(raw)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid tags") from exc
        if not isinstance(values, list):
            raise HTTPException(status_code=400, detail="Invalid tags")
    else:
        values = raw.split(",")
    return [str(value).strip() for value in values if str(value).strip()]


def _serialize_media(item: MediaItem, uploader: Optional[User] = None) -> dict:
    payload = {
        "id": str(item.id),
        "title": item.title,
        "description": item.description,
        "file_name": item.file_name,
        "file_size": int(item.file_size or 0),
        "mime_type": item.mime_type,
        "media_type": item.media_type.value,
        "storage_type": item.storage_type.value,
        "category": item.category,
        "tags": list(item.tags or []),
        "width": item.width,
        "height": item.height,
        "org_id": str(item.org_id) if item.org_id else None,
        "uploaded_by": str(item.uploaded_by),
        "created_at": item.created_at.isoformat() if item.created_at else None,
        "updated_at": item.updated_at.isoformat() if item.updated_at else None,
        "download_path": f"/media/{item.id}/download",
        "stream_path": f"/media/{item.id}/stream",
    }
    if uploader is not None:
        payload["uploader"] = {"id": str(uploader.id), "username": uploader.username, "full_name": uploader.full_name}
    return payload


def _scoped(db: Session, user: User):
    query = db.query(MediaItem).filter(MediaItem.is_deleted.is_(False))
    if user.org_id:
        query = query.filter(MediaItem.org_id == user.org_id)
    return query


def _get_media_or_404(db: Session, user: User, media_id: str) -> MediaItem:
    item = _scoped(db, user).filter(MediaItem.id == parse_uuid(media_id, "media")).one_or_none()
    if item is None:
        raise HTTPException(status_code=404, detail="Media item not found")
    return item


@router.get("/stats")
def media_stats(
    context: AuthContext = Depends(require_media),
    db: Session = Depends(get_db),
):
    base = _scoped(db, context.user)
    by_type = dict(base.with_entities(MediaItem.media_type, func.count(MediaItem.id)).group_by(MediaItem.media_type).all())
    total_bytes = base.with_entities(func.coalesce(func.sum(MediaItem.file_size), 0)).scalar() or 0
    categories = base.with_entities(MediaItem.category, func.count(MediaItem.id)).group_by(MediaItem.category).all()
    return {
        "total": sum(by_type.values()),
        "images": by_type.get(MediaType.IMAGE, 0),
        "videos": by_type.get(MediaType.VIDEO, 0),
        "audio": by_type.get(MediaType.AUDIO, 0),
        "total_storage_bytes": int(total_bytes),
        "categories": [{"category": category, "count": count} for category, count in categories],
    }


@router.get("")
def list_media(
    q: Optional[str] = Query(default=None),
    media_type: Optional[MediaType] = Query(default=None),
    category: Optional[str] = Query(default=None),
    context: AuthContext = Depends(require_media),
    db: Session = Depends(get_db),
):
    query = _scoped(db, context.user)
    if q:
        pattern = f"%{q.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(MediaItem.title).like(pattern),
                func.lower(func.coalesce(MediaItem.description, "")).like(pattern),
                func.lower(MediaItem.file_name).like(pattern),
            )
        )
    if media_type:
        query = query.filter(MediaItem.media_type == media_type)
    if category:
        query = query.filter(MediaItem.category == category)

    rows = (
        query.join(User, User.id == MediaItem.uploaded_by)
        .with_entities(MediaItem, User)
        .order_by(MediaItem.created_at.desc())
        .all()
    )
    return {"items": [_serialize_media(item, uploader) for item, uploader in rows]}


@router.get("/{media_id}")
def get_media(
    media_id: str,
    context: AuthContext = Depends(require_media),
    db: Session = Depends(get_db),
):
    item = _get_media_or_404(db, context.user, media_id)
    return _serialize_media(item, db.get(User, item.uploaded_by))


@router.post("", status_code=201)
def upload_media(
    request: Request,
    file: UploadFile = File(...),
    title: Optional[str] = Form(default=None),
    description: Optional[str] = Form(default=None),
    category: Optional[str] = Form(default=None),
    tags: Optional[str] = Form(default=None),
    context: AuthContext = Depends(require_media),
    db: Session = Depends(get_db),
):
    mime_type = guess_mime_type(file)
    media_type = _media_type_for(mime_type)
    data = read_upload(file)
    filename = sanitize_filename(file.filename, default="media")
    width, height = _image_dimensions(data) if media_type == MediaType.IMAGE else (None, None)

    storage = get_storage_service()
    try:
        stored = storage.save(f"media/{context.user.org_id or context.user.id}", data, filename=filename, content_type=mime_type)
    except StorageError as exc:
        logger.exception("media_store_failed user_id=%s", context.user.id)
        raise HTTPException(status_code=502, detail="Failed to store file") from exc

    item = MediaItem(
        title=(title or filename).strip()[:500],
        description=description,
        file_name=filename,
        file_path=stored.key,
        file_size=stored.size,
        mime_type=mime_type,
        media_type=media_type,
        storage_type=stored.storage_type,
        category=category or None,
        tags=_parse_tags(tags),
        width=width,
        height=height,
        org_id=context.user.org_id,
        uploaded_by=context.user.id,
    )
    db.add(item)
    db.flush()
    audit.record_audit(
        db,
        audit.MEDIA_UPLOADED,
        user_id=context.user.id,
        details={"media_id": str(item.id), "media_type": media_type.value, "size": stored.size},
        request=request,
    )
    db.commit()
    db.refresh(item)
    logger.info("media_uploaded media_id=%s type=%s size=%s", item.id, media_type.value, stored.size)
    return _serialize_media(item, context.user)


@router.put("/{media_id}")
def update_media(
    media_id: str,
    payload: UpdateMediaPayload,
    context: AuthContext = Depends(require_media),
    db: Session = Depends(get_db),
):
    item = _get_media_or_404(db, context.user, media_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("title"):
        changes["title"] = changes["title"].strip()
    for field, value in changes.items():
        setattr(item, field, value)
    db.add(item)
    db.commit()
    db.refresh(item)
    return _serialize_media(item, db.get(User, item.uploaded_by))


@router.delete("/{media_id}")
def delete_media(
    media_id: str,
    request: Request,
    context: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    item = _get_media_or_404(db, context.user, media_id)
    item.is_deleted = True
    db.add(item)
    audit.record_audit(
        db,
        audit.MEDIA_DELETED,
        user_id=context.user.id,
        details={"media_id": str(item.id), "title": item.title},
        request=request,
    )
    db.commit()
    return {"status": "deleted"}


@router.get("/{media_id}/download")
def download_media(
    media_id: str,
    context: AuthContext = Depends(require_media),
    db: Session = Depends(get_db),
):
    item = _get_media_or_404(db, context.user, media_id)
    return stream_stored_file(item.storage_type, item.file_path, item.file_name, item.mime_type)


@router.get("/{media_id}/stream")
def stream_media(
    media_id: str,
    context: AuthContext = Depends(require_media),
    db: Session = Depends(get_db),
):
    item = _get_media_or_404(db, context.user, media_id)
    return stream_stored_file(item.storage_type, item.file_path, item.file_name, item.mime_type, inline=True)
