from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models import Document, Notification, NotificationType, User
from ..models.base import as_utc, utcnow
from .email import EmailClient, EmailMessage, send_quietly
from .notifications import notify
from .sharing import ShareLinkService

logger = logging.getLogger(__name__)


def deactivate_expired_share_links(db: Session, now: Optional[datetime] = None) -> int:
    return ShareLinkService(db).deactivate_expired(now)


def _already_warned(db: Session, document: Document) -> bool:
    return (
        db.query(Notification.id)
        .filter(
            Notification.recipient_id == document.uploaded_by,
            Notification.related_id == document.id,
            Notification.type == NotificationType.DOCUMENT_EXPIRING.value,
        )
        .first()
        is not None
    )


def notify_expiring_documents(
    db: Session,
    *,
    now: Optional[datetime] = None,
    window_days: Optional[int] = None,
    email_client: Optional[EmailClient] = None,
) -> Counter:
    """Warn uploaders once about documents whose expiry falls inside the window."""
    current = now or utcnow()
    horizon = current + timedelta(days=window_days if window_days is not None else settings.expiry_warning_days)
    stats: Counter = Counter()

    documents = (
        db.query(Document)
        .filter(
            Document.is_deleted.is_(False),
            Document.expires_at.isnot(None),
            Document.expires_at > current,
            Document.expires_at <= horizon,
        )
        .order_by(Document.expires_at.asc())
        .all()
    )

    for document in documents:
        if _already_warned(db, document):
            stats["skipped"] += 1
            continue

        expires_on = as_utc(document.expires_at).strftime("%Y-%m-%d")
        notify(
            db,
            document.uploaded_by,
            NotificationType.DOCUMENT_EXPIRING,
            "Document expiring soon",
            f'"{document.title}" expires on {expires_on}',
            related_id=document.id,
            related_type="document",
        )
        stats["notified"] += 1

        owner = db.get(User, document.uploaded_by)
        if owner is not None and owner.is_active:
            sent = send_quietly(
                EmailMessage(
                    to=owner.email,
                    subject=f'"{document.title}" expires on {expires_on}',
                    text_body=(
                        f"Hello {owner.display_name},\n\n"
                        f'"{document.title}" expires on {expires_on}.\n'
                        f"Review it here: {settings.app_url}/documents/{document.id}\n"
                    ),
                ),
                client=email_client,
            )
            stats["emailed" if sent else "email_failed"] += 1

    if stats:
        logger.info("expiry_warnings %s", dict(stats))
    return stats
