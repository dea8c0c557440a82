from __future__ import annotations

import logging
import uuid
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ..models import Notification, NotificationType

logger = logging.getLogger(__name__)


def notify(
    db: Session,
    recipient_id: uuid.UUID,
    notification_type: NotificationType,
    title: str,
    message: Optional[str] = None,
    *,
    related_id: Optional[uuid.UUID] = None,
    related_type: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> Optional[Notification]:
    if actor_id is not None and actor_id == recipient_id:
        return None

    notification = Notification(
        recipient_id=recipient_id,
        type=notification_type.value,
        title=title,
        message=message,
        related_id=related_id,
        related_type=related_type,
        actor_id=actor_id,
    )
    db.add(notification)
    logger.info(
        "notification_created recipient_id=%s type=%s related_id=%s",
        recipient_id,
        notification_type.value,
        related_id,
    )
    return notification


def notify_many(
    db: Session,
    recipient_ids: Iterable[uuid.UUID],
    notification_type: NotificationType,
    title: str,
    message: Optional[str] = None,
    *,
    related_id: Optional[uuid.UUID] = None,
    related_type: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> list[Notification]:
    created: list[Notification] = []
    for recipient_id in dict.fromkeys(recipient_ids):
        notification = notify(
            db,
            recipient_id,
            notification_type,
            title,
            message,
            related_id=related_id,
            related_type=related_type,
            actor_id=actor_id,
        )
        if notification is not None:
            created.append(notification)
    return created
