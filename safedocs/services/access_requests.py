from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import (
    AccessLevel,
    AccessRequest,
    AccessRequestStatus,
    Document,
    NotificationType,
    PermissionType,
    User,
)
from ..models.base import utcnow
from .email import EmailMessage, access_request_message, access_request_response_message, send_quietly
from .metrics import record_access_request_decision
from .notifications import notify, notify_many
from .permissions import PermissionDenied, PermissionService

logger = logging.getLogger(__name__)

REQUESTABLE_LEVELS = (AccessLevel.VIEWER, AccessLevel.COMMENTER, AccessLevel.EDITOR)


class AccessRequestError(Exception):
    def __init__(self, detail: str, status_code: int = 400) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class AccessRequestService:
    def __init__(self, db: Session, permissions: Optional[PermissionService] = None) -> None:
        self.db = db
        self.permissions = permissions or PermissionService(db)
        self.outbox: list[EmailMessage] = []

    def submit(
        self,
        requester: User,
        document: Document,
        requested_access: AccessLevel,
        message: Optional[str] = None,
    ) -> AccessRequest:
        if requested_access not in REQUESTABLE_LEVELS:
            raise AccessRequestError("Requested access must be viewer, commenter or editor")

        if self.permissions.check_document(requester, document, AccessLevel.VIEWER):
            raise AccessRequestError("You already have access to this document")

        if self.pending_request(document, requester) is not None:
            raise AccessRequestError("You already have a pending request for this document")

        access_request = AccessRequest(
            document_id=document.id,
            requester_id=requester.id,
            requested_access=requested_access,
            message=message,
            status=AccessRequestStatus.PENDING,
        )
        self.db.add(access_request)
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise AccessRequestError("You already have a pending request for this document") from exc

        owner = self.db.get(User, document.uploaded_by)
        notify_many(
            self.db,
            [document.uploaded_by],
            NotificationType.ACCESS_REQUEST_SUBMITTED,
            f"{requester.display_name} requested access",
            f'{requester.display_name} requested {requested_access.value} access to "{document.title}"',
            related_id=access_request.id,
            related_type="access_request",
            actor_id=requester.id,
        )
        if owner is not None and owner.id != requester.id:
            self.outbox.append(
                access_request_message(
                    owner.email,
                    owner.display_name,
                    requester.display_name,
                    document.title,
                    requested_access.value,
                    message,
                )
            )

        logger.info(
            "access_request_submitted request_id=%s document_id=%s requester_id=%s level=%s",
            access_request.id,
            document.id,
            requester.id,
            requested_access.value,
        )
        return access_request

    def pending_request(self, document: Document, requester: User) -> Optional[AccessRequest]:
        return (
            self.db.query(AccessRequest)
            .filter(
                AccessRequest.document_id == document.id,
                AccessRequest.requester_id == requester.id,
                AccessRequest.status == AccessRequestStatus.PENDING,
            )
            .first()
        )

    def pending_for_reviewer(self, reviewer: User) -> list[tuple[AccessRequest, Document]]:
        rows = (
            self.db.query(AccessRequest, Document)
            .join(Document, Document.id == AccessRequest.document_id)
            .filter(AccessRequest.status == AccessRequestStatus.PENDING, Document.is_deleted.is_(False))
            .order_by(AccessRequest.created_at.desc())
            .all()
        )
        return [
            (access_request, document)
            for access_request, document in rows
            if self.permissions.check_document(reviewer, document, AccessLevel.EDITOR)
        ]

    def mine(self, requester: User) -> list[tuple[AccessRequest, Document]]:
        return (
            self.db.query(AccessRequest, Document)
            .join(Document, Document.id == AccessRequest.document_id)
            .filter(AccessRequest.requester_id == requester.id)
            .order_by(AccessRequest.created_at.desc())
            .all()
        )

    def _load_for_review(self, request_id: uuid.UUID, reviewer: User) -> tuple[AccessRequest, Document]:
        row = (
            self.db.query(AccessRequest, Document)
            .join(Document, Document.id == AccessRequest.document_id)
            .filter(AccessRequest.id == request_id)
            .one_or_none()
        )
        if row is None:
            raise AccessRequestError("Access request not found", status_code=404)
        access_request, document = row

        if not self.permissions.check_document(reviewer, document, AccessLevel.EDITOR):
            raise PermissionDenied("You do not have permission to review this request")
        if access_request.status != AccessRequestStatus.PENDING:
            raise AccessRequestError("Access request has already been processed")
        return access_request, document

    def approve(
        self,
        request_id: uuid.UUID,
        reviewer: User,
        response_message: Optional[str] = None,
        access_level: Optional[AccessLevel] = None,
    ) -> AccessRequest:
        access_request, document = self._load_for_review(request_id, reviewer)
        granted_level = access_level or AccessLevel(access_request.requested_access)
        if granted_level not in REQUESTABLE_LEVELS:
            raise AccessRequestError("Requested access must be viewer, commenter or editor")

        self.permissions.grant_document_access(
            document.id,
            PermissionType.USER,
            str(access_request.requester_id),
            granted_level,
            reviewer.id,
        )
        self._close(access_request, reviewer, AccessRequestStatus.APPROVED, response_message)
        self._announce(access_request, document, reviewer, NotificationType.ACCESS_REQUEST_APPROVED)
        return access_request

    def deny(
        self,
        request_id: uuid.UUID,
        reviewer: User,
        response_message: Optional[str] = None,
    ) -> AccessRequest:
        access_request, document = self._load_for_review(request_id, reviewer)
        self._close(access_request, reviewer, AccessRequestStatus.DENIED, response_message)
        self._announce(access_request, document, reviewer, NotificationType.ACCESS_REQUEST_DENIED)
        return access_request

    def _close(
        self,
        access_request: AccessRequest,
        reviewer: User,
        status: AccessRequestStatus,
        response_message: Optional[str],
    ) -> None:
        access_request.status = status
        access_request.reviewed_by = reviewer.id
        access_request.reviewed_at = utcnow()
        access_request.response_message = response_message
        self.db.add(access_request)
        self.db.flush()
        record_access_request_decision(status.value)
        logger.info(
            "access_request_reviewed request_id=%s status=%s reviewer_id=%s",
            access_request.id,
            status.value,
            reviewer.id,
        )

    def _announce(
        self,
        access_request: AccessRequest,
        document: Document,
        reviewer: User,
        notification_type: NotificationType,
    ) -> None:
        status = AccessRequestStatus(access_request.status).value
        notify(
            self.db,
            access_request.requester_id,
            notification_type,
            f"Access request {status}",
            f'Your request for "{document.title}" was {status}',
            related_id=document.id,
            related_type="document",
            actor_id=reviewer.id,
        )
        requester = self.db.get(User, access_request.requester_id)
        if requester is not None:
            self.outbox.append(
                access_request_response_message(
                    requester.email,
                    requester.display_name,
                    document.title,
                    status,
                    access_request.response_message,
                    str(document.id),
                )
            )

    def send_pending_mail(self) -> int:
        """Deliver queued e-mail; call only once the triggering change is committed."""
        sent = sum(1 for message in self.outbox if send_quietly(message))
        self.outbox.clear()
        return sent
