from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..dependencies.access import get_document_or_404, parse_uuid
from ..dependencies.auth import AuthContext, require_auth
from ..dependencies.db import get_db
from ..models import AccessLevel, AccessRequest, Document, User
from ..services import audit
from ..services.access_requests import AccessRequestError, AccessRequestService
from ..services.permissions import PermissionDenied

router = APIRouter(prefix="/access-requests", tags=["access-requests"])


class SubmitAccessRequestPayload(BaseModel):
    document_id: str
    requested_access: AccessLevel = AccessLevel.VIEWER
    message: Optional[str] = Field(default=None, max_length=2000)


class ReviewPayload(BaseModel):
    response_message: Optional[str] = Field(default=None, max_length=2000)
    access_level: Optional[AccessLevel] = None


def _serialize_request(access_request: AccessRequest, document: Document, requester: Optional[User] = None) -> dict:
    return {
        "id": str(access_request.id),
        "document_id": str(document.id),
        "document_title": document.title,
        "requester_id": str(access_request.requester_id),
        "requester_name": requester.display_name if requester else None,
        "requested_access": AccessLevel(access_request.requested_access).value,
        "message": access_request.message,
        "status": access_request.status.value,
        "reviewed_by": str(access_request.reviewed_by) if access_request.reviewed_by else None,
        "reviewed_at": access_request.reviewed_at.isoformat() if access_request.reviewed_at else None,
        "response_message": access_request.response_message,
        "created_at": access_request.created_at.isoformat() if access_request.created_at else None,
    }


def _translate(exc: Exception) -> HTTPException:
    if isinstance(exc, PermissionDenied):
        return HTTPException(status_code=403, detail=str(exc))
    return HTTPException(status_code=exc.status_code, detail=exc.detail)


@router.post("", status_code=201)
def submit_access_request(
    payload: SubmitAccessRequestPayload,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    document = get_document_or_404(db, payload.document_id)
    service = AccessRequestService(db)
    try:
        access_request = service.submit(
            context.user, document, payload.requested_access, payload.message
        )
    except AccessRequestError as exc:
        db.rollback()
        raise _translate(exc) from exc

    audit.record_audit(
        db,
        audit.ACCESS_REQUEST_SUBMITTED,
        user_id=context.user.id,
        document_id=document.id,
        details={"request_id": str(access_request.id), "requested_access": payload.requested_access.value},
        request=request,
    )
    db.commit()
    service.send_pending_mail()
    db.refresh(access_request)
    return _serialize_request(access_request, document, context.user)


@router.get("/pending")
def list_pending_requests(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    rows = AccessRequestService(db).pending_for_reviewer(context.user)
    requester_ids = {access_request.requester_id for access_request, _ in rows}
    requesters = {user.id: user for user in db.query(User).filter(User.id.in_(requester_ids)).all()} if requester_ids else {}
    return {
        "items": [
            _serialize_request(access_request, document, requesters.get(access_request.requester_id))
            for access_request, document in rows
        ]
    }


@router.get("/mine")
def list_my_requests(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    rows = AccessRequestService(db).mine(context.user)
    return {"items": [_serialize_request(access_request, document, context.user) for access_request, document in rows]}


def _review(
    request_id: str,
    payload: Optional[ReviewPayload],
    request: Request,
    context: AuthContext,
    db: Session,
    approve: bool,
) -> dict:
    service = AccessRequestService(db)
    request_uuid = parse_uuid(request_id, "access request")
    response_message = payload.response_message if payload else None
    try:
        if approve:
            access_request = service.approve(
                request_uuid,
                context.user,
                response_message,
                payload.access_level if payload else None,
            )
        else:
            access_request = service.deny(request_uuid, context.user, response_message)
    except (AccessRequestError, PermissionDenied) as exc:
        db.rollback()
        raise _translate(exc) from exc

    audit.record_audit(
        db,
        audit.ACCESS_REQUEST_APPROVED if approve else audit.ACCESS_REQUEST_DENIED,
        user_id=context.user.id,
        document_id=access_request.document_id,
        details={"request_id": str(access_request.id), "requester_id": str(access_request.requester_id)},
        request=request,
    )
    db.commit()
    service.send_pending_mail()
    db.refresh(access_request)
    document = db.get(Document, access_request.document_id)
    return _serialize_request(access_request, document, db.get(User, access_request.requester_id))


@router.patch("/{request_id}/approve")
def approve_access_request(
    request_id: str,
    request: Request,
    payload: Optional[ReviewPayload] = None,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    return _review(request_id, payload, request, context, db, approve=True)


@router.patch("/{request_id}/deny")
def deny_access_request(
    request_id: str,
    request: Request,
    payload: Optional[ReviewPayload] = None,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    return _review(request_id, payload, request, context, db, approve=False)
