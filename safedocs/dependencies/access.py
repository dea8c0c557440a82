from __future__ import annotations

import uuid

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ..models import AccessLevel, Document, Folder, User
from ..services.permissions import PermissionDenied, PermissionService


def parse_uuid(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label} id") from exc


def get_document_or_404(db: Session, doc_id: str) -> Document:
    document = (
        db.query(Document)
        .filter(Document.id == parse_uuid(doc_id, "document"), Document.is_deleted.is_(False))
        .one_or_none()
    )
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


def get_folder_or_404(db: Session, folder_id: str) -> Folder:
    folder = db.get(Folder, parse_uuid(folder_id, "folder"))
    if folder is None:
        raise HTTPException(status_code=404, detail="Folder not found")
    return folder


def ensure_document_access(
    permissions: PermissionService,
    user: User,
    document: Document,
    required: AccessLevel,
    message: str | None = None,
) -> None:
    try:
        permissions.require_document(user, document, required, message)
    except PermissionDenied as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc


def ensure_folder_access(
    permissions: PermissionService,
    user: User,
    folder: Folder,
    required: AccessLevel,
    message: str | None = None,
) -> None:
    try:
        permissions.require_folder(user, folder, required, message)
    except PermissionDenied as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc


def paginate(page: int, limit: int, total: int) -> dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit if total else 0,
    }
