from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from ..models import AuditLog

logger = logging.getLogger(__name__)

DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
DOCUMENT_VIEWED = "DOCUMENT_VIEWED"
DOCUMENT_DOWNLOADED = "DOCUMENT_DOWNLOADED"
DOCUMENT_UPDATED = "DOCUMENT_UPDATED"
DOCUMENT_DELETED = "DOCUMENT_DELETED"
DOCUMENT_VERSION_UPLOADED = "DOCUMENT_VERSION_UPLOADED"
DOCUMENT_SHARED = "DOCUMENT_SHARED"
DOCUMENT_SHARE_REVOKED = "DOCUMENT_SHARE_REVOKED"
FOLDER_CREATED = "FOLDER_CREATED"
FOLDER_UPDATED = "FOLDER_UPDATED"
FOLDER_DELETED = "FOLDER_DELETED"
FOLDER_SHARED = "FOLDER_SHARED"
FOLDER_SHARE_REVOKED = "FOLDER_SHARE_REVOKED"
SHARE_LINK_CREATED = "SHARE_LINK_CREATED"
SHARE_LINK_ACCESSED = "SHARE_LINK_ACCESSED"
SHARE_LINK_DEACTIVATED = "SHARE_LINK_DEACTIVATED"
ACCESS_REQUEST_SUBMITTED = "ACCESS_REQUEST_SUBMITTED"
ACCESS_REQUEST_APPROVED = "ACCESS_REQUEST_APPROVED"
ACCESS_REQUEST_DENIED = "ACCESS_REQUEST_DENIED"
GROUP_CREATED = "GROUP_CREATED"
GROUP_UPDATED = "GROUP_UPDATED"
GROUP_DELETED = "GROUP_DELETED"
GROUP_MEMBER_ADDED = "GROUP_MEMBER_ADDED"
GROUP_MEMBER_REMOVED = "GROUP_MEMBER_REMOVED"
USER_LOGIN = "USER_LOGIN"
USER_CREATED = "USER_CREATED"
USER_UPDATED = "USER_UPDATED"
USER_DELETED = "USER_DELETED"
MEDIA_UPLOADED = "MEDIA_UPLOADED"
MEDIA_DELETED = "MEDIA_DELETED"


def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()[:45]
    return request.client.host if request.client else None


def record_audit(
    db: Session,
    action: str,
    *,
    user_id: Optional[uuid.UUID] = None,
    document_id: Optional[uuid.UUID] = None,
    details: Optional[dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> AuditLog:
    """Stage an audit row on the caller's session; it commits with the surrounding change."""
    entry = AuditLog(
        user_id=user_id,
        document_id=document_id,
        action=action,
        details=details or None,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent") if request is not None else None,
    )
    db.add(entry)
    logger.info("audit action=%s user_id=%s document_id=%s", action, user_id, document_id)
    return entry
