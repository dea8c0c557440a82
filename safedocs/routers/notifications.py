from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..dependencies.access import paginate, parse_uuid
from ..dependencies.auth import AuthContext, require_auth
from ..dependencies.db import get_db
from ..models import Notification, User

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _serialize_notification(notification: Notification, actor_name: str | None = None) -> dict:
    return {
        "id": str(notification.id),
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "related_id": str(notification.related_id) if notification.related_id else None,
        "related_type": notification.related_type,
        "actor_id": str(notification.actor_id) if notification.actor_id else None,
        "actor_name": actor_name,
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


def _unread_count(db: Session, user_id) -> int:
    return (
        db.query(func.count(Notification.id))
        .filter(Notification.recipient_id == user_id, Notification.is_read.is_(False))
        .scalar()
        or 0
    )


@router.get("")
def list_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    unread_only: bool = Query(default=False),
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    query = db.query(Notification).filter(Notification.recipient_id == context.user.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))

    total = query.count()
    notifications = query.order_by(Notification.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    actor_ids = {n.actor_id for n in notifications if n.actor_id}
    actors = {user.id: user.display_name for user in db.query(User).filter(User.id.in_(actor_ids)).all()} if actor_ids else {}
    return {
        "items": [_serialize_notification(n, actors.get(n.actor_id)) for n in notifications],
        "unread_count": _unread_count(db, context.user.id),
        "pagination": paginate(page, limit, total),
    }


@router.get("/unread-count")
def unread_count(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    return {"count": _unread_count(db, context.user.id)}


@router.patch("/read-all")
def mark_all_read(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    updated = (
        db.query(Notification)
        .filter(Notification.recipient_id == context.user.id, Notification.is_read.is_(False))
        .update({"is_read": True}, synchronize_session=False)
    )
    db.commit()
    return {"updated": updated}


@router.patch("/{notification_id}/read")
def mark_read(
    notification_id: str,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    notification = db.get(Notification, parse_uuid(notification_id, "notification"))
    if notification is None or notification.recipient_id != context.user.id:
        raise HTTPException(status_code=404, detail="Notification not found")
    notification.is_read = True
    db.add(notification)
    db.commit()
    return _serialize_notification(notification)
