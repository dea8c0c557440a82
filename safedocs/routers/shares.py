import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from ..config import settings
from ..dependencies.access import ensure_document_access, get_document_or_404, parse_uuid
from ..dependencies.auth import AuthContext, require_auth
from ..dependencies.db import get_db
from ..dependencies.files import parse_datetime, stream_stored_file
from ..dependencies.rate_limit import SHARE_LIMIT_MESSAGE, limiter
from ..models import (
    AccessLevel,
    DocumentPermission,
    Group,
    NotificationType,
    PermissionType,
    ShareLink,
    User,
    UserRole,
)
from ..models.base import as_utc, utcnow
from ..services import audit
from ..services.email import send_quietly, share_link_message, share_notification
from ..services.notifications import notify
from ..services.permissions import PermissionService
from ..services.sharing import ShareLinkError, ShareLinkService, share_url
from .documents import serialize_document

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shares")


class GrantAccessPayload(BaseModel):
    permission_type: PermissionType
    target_id: str = Field(..., min_length=1)
    access_level: AccessLevel
    expires_at: Optional[str] = None


class CreateShareLinkPayload(BaseModel):
    access_level: AccessLevel = AccessLevel.VIEWER
    password: Optional[str] = Field(default=None, max_length=128)
    expires_at: Optional[str] = None
    max_uses: Optional[int] = Field(default=None, ge=1)
    allow_download: bool = True
    email_to: Optional[EmailStr] = None


class ShareLinkAccessPayload(BaseModel):
    password: Optional[str] = None


def serialize_permission(permission: DocumentPermission, target_name: Optional[str] = None) -> dict:
    return {
        "id": str(permission.id),
        "document_id": str(permission.document_id),
        "permission_type": permission.permission_type.value,
        "target_id": permission.target_id,
        "target_name": target_name,
        "access_level": permission.access_level.value,
        "granted_by": str(permission.granted_by),
        "granted_at": permission.granted_at.isoformat() if permission.granted_at else None,
        "expires_at": permission.expires_at.isoformat() if permission.expires_at else None,
    }


def serialize_share_link(link: ShareLink) -> dict:
    # password_hash never leaves the server
    expires_at = as_utc(link.expires_at)
    return {
        "id": str(link.id),
        "document_id": str(link.document_id),
        "token": link.token,
        "url": share_url(link.token),
        "access_level": link.access_level.value,
        "has_password": bool(link.password_hash),
        "max_uses": link.max_uses,
        "current_uses": link.current_uses or 0,
        "allow_download": link.allow_download,
        "is_active": link.is_active,
        "is_expired": bool(expires_at and expires_at <= utcnow()),
        "expires_at": expires_at.isoformat() if expires_at else None,
        "created_by": str(link.created_by),
        "created_at": link.created_at.isoformat() if link.created_at else None,
    }


def _target_name(db: Session, permission_type: PermissionType, target_id: str) -> Optional[str]:
    if permission_type == PermissionType.ROLE:
        return target_id
    if permission_type == PermissionType.USER:
        user = db.get(User, parse_uuid(target_id, "user"))
        return user.display_name if user else None
    group = db.get(Group, parse_uuid(target_id, "group"))
    return group.name if group else None


def _validate_target(db: Session, permission_type: PermissionType, target_id: str) -> str:
    if permission_type == PermissionType.ROLE:
        try:
            return UserRole(target_id).value
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Unknown role") from exc
    if _target_name(db, permission_type, target_id) is None:
        raise HTTPException(status_code=404, detail=f"{permission_type.value.capitalize()} not found")
    return str(parse_uuid(target_id, permission_type.value))


def _share_link_http_error(exc: ShareLinkError) -> JSONResponse:
    content: dict[str, object] = {"detail": exc.detail}
    if exc.requires_password:
        content["requires_password"] = True
    return JSONResponse(status_code=exc.status_code, content=content)


# --- Direct grants -------------------------------------------------------
@router.post("/documents/{doc_id}", status_code=201)
def share_document(
    doc_id: str,
    payload: GrantAccessPayload,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    document = get_document_or_404(db, doc_id)
    permissions = PermissionService(db)
    ensure_document_access(
        permissions, context.user, document, AccessLevel.EDITOR, "You do not have permission to share this document"
    )
    if payload.access_level == AccessLevel.OWNER:
        ensure_document_access(
            permissions, context.user, document, AccessLevel.OWNER, "Only owners can grant owner access"
        )

    target_id = _validate_target(db, payload.permission_type, payload.target_id)
    permission = permissions.grant_document_access(
        document.id,
        payload.permission_type,
        target_id,
        payload.access_level,
        context.user.id,
        parse_datetime(payload.expires_at),
    )
    audit.record_audit(
        db,
        audit.DOCUMENT_SHARED,
        user_id=context.user.id,
        document_id=document.id,
        details={
            "permission_type": payload.permission_type.value,
            "target_id": target_id,
            "access_level": payload.access_level.value,
        },
        request=request,
    )

    recipient = db.get(User, parse_uuid(target_id, "user")) if payload.permission_type == PermissionType.USER else None
    if recipient is not None:
        notify(
            db,
            recipient.id,
            NotificationType.DOCUMENT_SHARED,
            f"{context.user.display_name} shared a document",
            f'You now have {payload.access_level.value} access to "{document.title}"',
            related_id=document.id,
            related_type="document",
            actor_id=context.user.id,
        )
    db.commit()

    if recipient is not None and recipient.id != context.user.id:
        send_quietly(
            share_notification(
                recipient.email,
                recipient.display_name,
                context.user.display_name,
                document.title,
                payload.access_level.value,
                str(document.id),
            )
        )

    return serialize_permission(permission, _target_name(db, payload.permission_type, target_id))


@router.get("/documents/{doc_id}")
def list_document_shares(
    doc_id: str,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    document = get_document_or_404(db, doc_id)
    permissions = PermissionService(db)
    ensure_document_access(permissions, context.user, document, AccessLevel.EDITOR)

    items = [
        serialize_permission(permission, _target_name(db, permission.permission_type, permission.target_id))
        for permission in permissions.document_permissions(document.id)
    ]
    return {"items": items}


@router.delete("/{permission_id}")
def revoke_document_share(
    permission_id: str,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    permission = db.get(DocumentPermission, parse_uuid(permission_id, "permission"))
    if permission is None:
        raise HTTPException(status_code=404, detail="Permission not found")

    document = get_document_or_404(db, str(permission.document_id))
    permissions = PermissionService(db)
    ensure_document_access(
        permissions, context.user, document, AccessLevel.EDITOR, "You do not have permission to revoke this share"
    )

    permissions.revoke_document_access(permission, context.user.id)
    audit.record_audit(
        db,
        audit.DOCUMENT_SHARE_REVOKED,
        user_id=context.user.id,
        document_id=document.id,
        details={"permission_id": str(permission.id)},
        request=request,
    )
    db.commit()
    return {"status": "revoked"}


# --- Share links ---------------------------------------------------------
@router.post("/documents/{doc_id}/links", status_code=201)
@limiter.limit(settings.rate_limit_share_create, error_message=SHARE_LIMIT_MESSAGE)
def create_share_link(
    doc_id: str,
    payload: CreateShareLinkPayload,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    document = get_document_or_404(db, doc_id)
    ensure_document_access(
        PermissionService(db),
        context.user,
        document,
        AccessLevel.EDITOR,
        "You do not have permission to create share links for this document",
    )

    try:
        link = ShareLinkService(db).create(
            document,
            context.user,
            access_level=payload.access_level,
            password=payload.password,
            expires_at=parse_datetime(payload.expires_at),
            max_uses=payload.max_uses,
            allow_download=payload.allow_download,
        )
    except ShareLinkError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    audit.record_audit(
        db,
        audit.SHARE_LINK_CREATED,
        user_id=context.user.id,
        document_id=document.id,
        details={"share_link_id": str(link.id), "has_password": bool(payload.password)},
        request=request,
    )
    db.commit()
    db.refresh(link)

    if payload.email_to:
        send_quietly(
            share_link_message(
                str(payload.email_to),
                context.user.display_name,
                document.title,
                share_url(link.token),
                as_utc(link.expires_at),
                link.allow_download,
            )
        )

    return serialize_share_link(link)


@router.get("/documents/{doc_id}/links")
def list_share_links(
    doc_id: str,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    document = get_document_or_404(db, doc_id)
    ensure_document_access(PermissionService(db), context.user, document, AccessLevel.VIEWER)
    return {"items": [serialize_share_link(link) for link in ShareLinkService(db).list_for_document(document.id)]}


@router.delete("/link/{token}")
def deactivate_share_link(
    token: str,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    link = db.query(ShareLink).filter(ShareLink.token == token).one_or_none()
    if link is None:
        raise HTTPException(status_code=404, detail="Share link not found")

    document = get_document_or_404(db, str(link.document_id))
    ensure_document_access(
        PermissionService(db),
        context.user,
        document,
        AccessLevel.EDITOR,
        "You do not have permission to deactivate this share link",
    )

    ShareLinkService(db).deactivate(link)
    audit.record_audit(
        db,
        audit.SHARE_LINK_DEACTIVATED,
        user_id=context.user.id,
        document_id=document.id,
        details={"share_link_id": str(link.id)},
        request=request,
    )
    db.commit()
    return {"status": "deactivated"}


# --- Public endpoints ----------------------------------------------------
@router.post("/link/{token}/access")
@limiter.limit(settings.rate_limit_share_access, error_message=SHARE_LIMIT_MESSAGE)
def access_share_link(
    token: str,
    request: Request,
    payload: Optional[ShareLinkAccessPayload] = Body(default=None),
    db: Session = Depends(get_db),
):
    service = ShareLinkService(db)
    try:
        result = service.access(token, payload.password if payload else None)
    except ShareLinkError as exc:
        db.rollback()
        return _share_link_http_error(exc)

    audit.record_audit(
        db,
        audit.SHARE_LINK_ACCESSED,
        document_id=result.document.id,
        details={"share_link_id": str(result.link.id), "current_uses": result.link.current_uses},
        request=request,
    )
    db.commit()

    document = serialize_document(result.document, result.link.access_level)
    document.pop("download_path", None)
    body: dict[str, object] = {
        "document": document,
        "access_level": result.link.access_level.value,
        "allow_download": result.link.allow_download,
    }
    if result.download_signature:
        body["download_url"] = f"/shares/link/{token}/download?signature={result.download_signature}"
    return body


@router.get("/link/{token}/download")
def download_via_share_link(
    token: str,
    request: Request,
    signature: str = Query(...),
    db: Session = Depends(get_db),
):
    try:
        link, document = ShareLinkService(db).verify_download(token, signature)
    except ShareLinkError as exc:
        return _share_link_http_error(exc)

    response = stream_stored_file(document.storage_type, document.file_path, document.file_name, document.mime_type)
    audit.record_audit(
        db,
        audit.DOCUMENT_DOWNLOADED,
        document_id=document.id,
        details={"share_link_id": str(link.id)},
        request=request,
    )
    db.commit()
    return response
