import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..dependencies.access import (
    ensure_document_access,
    ensure_folder_access,
    get_document_or_404,
    get_folder_or_404,
    paginate,
    parse_uuid,
)
from ..dependencies.auth import AuthContext, require_auth
from ..dependencies.db import get_db
from ..dependencies.files import (
    guess_mime_type,
    parse_datetime,
    read_upload,
    sanitize_filename,
    stream_stored_file,
)
from ..dependencies.rate_limit import UPLOAD_LIMIT_MESSAGE, limiter
from ..models import AccessLevel, Document, DocumentVersion, Tag, User
from ..services import audit
from ..services.metrics import record_document_uploaded, record_document_version
from ..services.parse_pdf import build_text_excerpt
from ..services.pdf_compose import ComposeError, compose_pdf
from ..services.permissions import PermissionService
from ..services.storage import StorageError, StoredFile, get_storage_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents")


class UpdateDocumentPayload(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    folder_id: Optional[str] = None
    remove_from_folder: bool = False
    tag_ids: Optional[List[str]] = None
    expires_at: Optional[str] = None
    clear_expiry: bool = False


def serialize_document(document: Document, access_level: Optional[AccessLevel] = None) -> Dict[str, Any]:
    return {
        "id": str(document.id),
        "title": document.title,
        "description": document.description,
        "file_name": document.file_name,
        "file_size": int(document.file_size or 0),
        "mime_type": document.mime_type,
        "storage_type": document.storage_type.value if hasattr(document.storage_type, "value") else document.storage_type,
        "folder_id": str(document.folder_id) if document.folder_id else None,
        "uploaded_by": str(document.uploaded_by),
        "org_id": str(document.org_id) if document.org_id else None,
        "current_version": document.current_version,
        "metadata": dict(document.metadata_json or {}),
        "tags": [{"id": str(tag.id), "name": tag.name, "color": tag.color} for tag in document.tags],
        "expires_at": document.expires_at.isoformat() if document.expires_at else None,
        "created_at": document.created_at.isoformat() if document.created_at else None,
        "updated_at": document.updated_at.isoformat() if document.updated_at else None,
        "access_level": access_level.value if access_level else None,
        "download_path": f"/documents/{document.id}/download",
    }


def _serialize_version(version: DocumentVersion) -> Dict[str, Any]:
    return {
        "id": str(version.id),
        "document_id": str(version.document_id),
        "version_number": version.version_number,
        "file_name": version.file_name,
        "file_size": int(version.file_size or 0),
        "mime_type": version.mime_type,
        "uploaded_by": str(version.uploaded_by) if version.uploaded_by else None,
        "change_note": version.change_note,
        "created_at": version.created_at.isoformat() if version.created_at else None,
    }


def _parse_tag_ids(raw: Optional[str | List[str]]) -> list[uuid.UUID]:
    if not raw:
        return []
    values = raw.split(",") if isinstance(raw, str) else raw
    return [parse_uuid(value.strip(), "tag") for value in values if value and value.strip()]


def _load_tags(db: Session, tag_ids: list[uuid.UUID]) -> list[Tag]:
    if not tag_ids:
        return []
    tags = db.query(Tag).filter(Tag.id.in_(tag_ids)).all()
    if len(tags) != len(set(tag_ids)):
        raise HTTPException(status_code=400, detail="Unknown tag id")
    return tags


def _store(user: User, data: bytes, filename: str, mime_type: str) -> StoredFile:
    storage = get_storage_service()
    try:
        return storage.save(user.org_id or user.id, data, filename=filename, content_type=mime_type)
    except StorageError as exc:
        logger.exception("document_store_failed user_id=%s", user.id)
        raise HTTPException(status_code=502, detail="Failed to store file") from exc


def create_document(
    db: Session,
    user: User,
    data: bytes,
    filename: str,
    mime_type: str,
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
    folder_id: Optional[uuid.UUID] = None,
    tags: Optional[list[Tag]] = None,
    metadata: Optional[dict[str, Any]] = None,
    expires_at=None,
    request: Optional[Request] = None,
) -> Document:
    """Store the bytes, then record the document with its first version."""
    stored = _store(user, data, filename, mime_type)

    document = Document(
        title=(title or filename).strip()[:500],
        description=description,
        file_name=filename,
        file_path=stored.key,
        file_size=stored.size,
        mime_type=mime_type,
        storage_type=stored.storage_type,
        folder_id=folder_id,
        uploaded_by=user.id,
        org_id=user.org_id,
        current_version=1,
        text_excerpt=build_text_excerpt(data, mime_type),
        metadata_json=metadata or None,
        expires_at=expires_at,
    )
    if tags:
        document.tags = tags
    db.add(document)
    db.flush()

    db.add(
        DocumentVersion(
            document_id=document.id,
            version_number=1,
            file_name=filename,
            file_path=stored.key,
            file_size=stored.size,
            mime_type=mime_type,
            storage_type=stored.storage_type,
            uploaded_by=user.id,
            change_note="Initial upload",
        )
    )
    audit.record_audit(
        db,
        audit.DOCUMENT_UPLOADED,
        user_id=user.id,
        document_id=document.id,
        details={"file_name": filename, "file_size": stored.size, "storage_type": stored.storage_type.value},
        request=request,
    )
    db.commit()
    db.refresh(document)

    record_document_uploaded(user.org_id, stored.storage_type.value)
    logger.info(
        "document_uploaded document_id=%s user_id=%s bytes=%s storage=%s",
        document.id,
        user.id,
        stored.size,
        stored.storage_type.value,
    )
    return document


def _target_folder_id(db: Session, permissions: PermissionService, user: User, folder_id: Optional[str]) -> Optional[uuid.UUID]:
    if not folder_id:
        return None
    folder = get_folder_or_404(db, folder_id)
    ensure_folder_access(permissions, user, folder, AccessLevel.EDITOR, "You cannot add documents to this folder")
    return folder.id


@router.post("/upload", status_code=201)
@limiter.limit(settings.rate_limit_upload, error_message=UPLOAD_LIMIT_MESSAGE)
def upload_document(
    request: Request,
    file: UploadFile = File(...),
    title: Optional[str] = Form(default=None),
    description: Optional[str] = Form(default=None),
    folder_id: Optional[str] = Form(default=None),
    tag_ids: Optional[str] = Form(default=None),
    expires_at: Optional[str] = Form(default=None),
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    permissions = PermissionService(db)
    target_folder = _target_folder_id(db, permissions, context.user, folder_id)
    tags = _load_tags(db, _parse_tag_ids(tag_ids))
    expiry = parse_datetime(expires_at)

    filename = sanitize_filename(file.filename)
    mime_type = guess_mime_type(file)
    data = read_upload(file)

    document = create_document(
        db,
        context.user,
        data,
        filename,
        mime_type,
        title=title,
        description=description,
        folder_id=target_folder,
        tags=tags,
        expires_at=expiry,
        request=request,
    )
    return serialize_document(document, AccessLevel.OWNER)


@router.post("/compose", status_code=201)
@limiter.limit(settings.rate_limit_upload, error_message=UPLOAD_LIMIT_MESSAGE)
def compose_document(
    request: Request,
    files: List[UploadFile] = File(...),
    title: str = Form(...),
    description: Optional[str] = Form(default=None),
    folder_id: Optional[str] = Form(default=None),
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """Merge scanned or photographed pages into one PDF document."""
    permissions = PermissionService(db)
    target_folder = _target_folder_id(db, permissions, context.user, folder_id)

    pages = [read_upload(upload) for upload in files]
    try:
        pdf_bytes = compose_pdf(pages)
    except ComposeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    filename = sanitize_filename(f"{title.strip()}.pdf")
    document = create_document(
        db,
        context.user,
        pdf_bytes,
        filename,
        "application/pdf",
        title=title,
        description=description,
        folder_id=target_folder,
        metadata={"composed_pages": len(pages)},
        request=request,
    )
    return serialize_document(document, AccessLevel.OWNER)


@router.get("")
def list_documents(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    search: Optional[str] = Query(default=None),
    folder_id: Optional[str] = Query(default=None),
    tag_id: Optional[str] = Query(default=None),
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    user = context.user
    query = db.query(Document).filter(Document.is_deleted.is_(False))

    if not user.is_privileged and user.org_id:
        query = query.filter(or_(Document.org_id == user.org_id, Document.uploaded_by == user.id))
    if folder_id == "root":
        query = query.filter(Document.folder_id.is_(None))
    elif folder_id:
        query = query.filter(Document.folder_id == parse_uuid(folder_id, "folder"))
    if tag_id:
        query = query.filter(Document.tags.any(Tag.id == parse_uuid(tag_id, "tag")))
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(Document.title).like(pattern),
                func.lower(func.coalesce(Document.description, "")).like(pattern),
                func.lower(Document.file_name).like(pattern),
                func.lower(func.coalesce(Document.text_excerpt, "")).like(pattern),
            )
        )

    query = query.order_by(Document.created_at.desc())
    offset = (page - 1) * limit
    permissions = PermissionService(db)

    if user.is_privileged:
        total = query.count()
        rows = query.offset(offset).limit(limit).all()
        items = [serialize_document(doc, AccessLevel.OWNER) for doc in rows]
    else:
        visible = []
        for doc in query.all():
            level = permissions.document_access_level(user, doc)
            if level is not None:
                visible.append((doc, level))
        total = len(visible)
        items = [serialize_document(doc, level) for doc, level in visible[offset : offset + limit]]

    return {"items": items, "pagination": paginate(page, limit, total)}


@router.get("/{doc_id}")
def get_document(
    doc_id: str,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    document = get_document_or_404(db, doc_id)
    permissions = PermissionService(db)
    level = permissions.document_access_level(context.user, document)
    if level is None:
        raise HTTPException(status_code=403, detail="You do not have access to this document")

    audit.record_audit(db, audit.DOCUMENT_VIEWED, user_id=context.user.id, document_id=document.id, request=request)
    db.commit()
    return serialize_document(document, level)


@router.get("/{doc_id}/download")
def download_document(
    doc_id: str,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    document = get_document_or_404(db, doc_id)
    ensure_document_access(PermissionService(db), context.user, document, AccessLevel.VIEWER)

    response = stream_stored_file(document.storage_type, document.file_path, document.file_name, document.mime_type)
    audit.record_audit(db, audit.DOCUMENT_DOWNLOADED, user_id=context.user.id, document_id=document.id, request=request)
    db.commit()
    return response


@router.patch("/{doc_id}")
def update_document(
    doc_id: str,
    payload: UpdateDocumentPayload,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    document = get_document_or_404(db, doc_id)
    permissions = PermissionService(db)
    ensure_document_access(permissions, context.user, document, AccessLevel.EDITOR, "You cannot edit this document")

    changes: list[str] = []
    if payload.title is not None:
        document.title = payload.title.strip()
        changes.append("title")
    if payload.description is not None:
        document.description = payload.description
        changes.append("description")
    if payload.remove_from_folder:
        document.folder_id = None
        changes.append("folder_id")
    elif payload.folder_id is not None:
        document.folder_id = _target_folder_id(db, permissions, context.user, payload.folder_id)
        changes.append("folder_id")
    if payload.tag_ids is not None:
        document.tags = _load_tags(db, _parse_tag_ids(payload.tag_ids))
        changes.append("tags")
    if payload.clear_expiry:
        document.expires_at = None
        changes.append("expires_at")
    elif payload.expires_at is not None:
        document.expires_at = parse_datetime(payload.expires_at)
        changes.append("expires_at")

    if changes:
        audit.record_audit(
            db,
            audit.DOCUMENT_UPDATED,
            user_id=context.user.id,
            document_id=document.id,
            details={"fields": changes},
            request=request,
        )
        db.add(document)
        db.commit()
        db.refresh(document)

    return serialize_document(document, permissions.document_access_level(context.user, document))


@router.delete("/{doc_id}")
def delete_document(
    doc_id: str,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    document = get_document_or_404(db, doc_id)
    ensure_document_access(
        PermissionService(db), context.user, document, AccessLevel.OWNER, "Only the owner can delete this document"
    )

    document.is_deleted = True
    audit.record_audit(
        db,
        audit.DOCUMENT_DELETED,
        user_id=context.user.id,
        document_id=document.id,
        details={"title": document.title},
        request=request,
    )
    db.add(document)
    db.commit()
    return {"status": "deleted", "id": str(document.id)}


@router.post("/{doc_id}/versions", status_code=201)
def upload_version(
    doc_id: str,
    request: Request,
    file: UploadFile = File(...),
    change_note: Optional[str] = Form(default=None),
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    document = get_document_or_404(db, doc_id)
    ensure_document_access(PermissionService(db), context.user, document, AccessLevel.EDITOR, "You cannot edit this document")

    filename = sanitize_filename(file.filename)
    mime_type = guess_mime_type(file)
    data = read_upload(file)
    stored = _store(context.user, data, filename, mime_type)

    latest = (
        db.query(func.max(DocumentVersion.version_number))
        .filter(DocumentVersion.document_id == document.id)
        .scalar()
    )
    next_number = max(latest or 0, document.current_version or 0) + 1
    version = DocumentVersion(
        document_id=document.id,
        version_number=next_number,
        file_name=filename,
        file_path=stored.key,
        file_size=stored.size,
        mime_type=mime_type,
        storage_type=stored.storage_type,
        uploaded_by=context.user.id,
        change_note=change_note,
    )
    db.add(version)

    document.file_name = filename
    document.file_path = stored.key
    document.file_size = stored.size
    document.mime_type = mime_type
    document.storage_type = stored.storage_type
    document.current_version = next_number
    document.text_excerpt = build_text_excerpt(data, mime_type)
    db.add(document)

    audit.record_audit(
        db,
        audit.DOCUMENT_VERSION_UPLOADED,
        user_id=context.user.id,
        document_id=document.id,
        details={"version_number": next_number, "file_name": filename},
        request=request,
    )
    db.commit()
    db.refresh(version)
    record_document_version(document.org_id)
    return _serialize_version(version)


@router.get("/{doc_id}/versions")
def list_versions(
    doc_id: str,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    document = get_document_or_404(db, doc_id)
    ensure_document_access(PermissionService(db), context.user, document, AccessLevel.VIEWER)

    versions = (
        db.query(DocumentVersion)
        .filter(DocumentVersion.document_id == document.id)
        .order_by(DocumentVersion.version_number.desc())
        .all()
    )
    return {"items": [_serialize_version(version) for version in versions]}


@router.get("/{doc_id}/versions/{version_number}/download")
def download_version(
    doc_id: str,
    version_number: int,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    document = get_document_or_404(db, doc_id)
    ensure_document_access(PermissionService(db), context.user, document, AccessLevel.VIEWER)

    version = (
        db.query(DocumentVersion)
        .filter(DocumentVersion.document_id == document.id, DocumentVersion.version_number == version_number)
        .one_or_none()
    )
    if version is None:
        raise HTTPException(status_code=404, detail="Version not found")

    response = stream_stored_file(version.storage_type, version.file_path, version.file_name, version.mime_type)
    audit.record_audit(
        db,
        audit.DOCUMENT_DOWNLOADED,
        user_id=context.user.id,
        document_id=document.id,
        details={"version_number": version_number},
        request=request,
    )
    db.commit()
    return response
