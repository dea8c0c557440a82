from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..dependencies.access import paginate, parse_uuid
from ..dependencies.auth import AuthContext, require_auth
from ..dependencies.db import get_db
from ..models import AuditLog, Document, User

router = APIRouter(prefix="/audit-logs", tags=["audit-logs"])


def _parse_day(value: Optional[str], end_of_day: bool = False) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date format") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    # a bare date as end bound covers the whole day
    if end_of_day and len(value) == 10:
        parsed = datetime.combine(parsed.date(), time.min, tzinfo=timezone.utc) + timedelta(days=1) - timedelta(microseconds=1)
    return parsed


@router.get("")
def list_audit_logs(
    page: int = Query(default=1),
    limit: int = Query(default=25),
    user_id: Optional[str] = Query(default=None),
    document_id: Optional[str] = Query(default=None),
    action: Optional[str] = Query(default=None),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    query = (
        db.query(AuditLog, User.username, Document.title)
        .outerjoin(User, User.id == AuditLog.user_id)
        .outerjoin(Document, Document.id == AuditLog.document_id)
    )
    if not context.user.is_privileged:
        query = query.filter(AuditLog.user_id == context.user.id)
    elif user_id:
        query = query.filter(AuditLog.user_id == parse_uuid(user_id, "user"))
    if document_id:
        query = query.filter(AuditLog.document_id == parse_uuid(document_id, "document"))
    if action:
        query = query.filter(func.lower(AuditLog.action).like(f"%{action.strip().lower()}%"))

    start = _parse_day(start_date)
    end = _parse_day(end_date, end_of_day=True)
    if start:
        query = query.filter(AuditLog.created_at >= start)
    if end:
        query = query.filter(AuditLog.created_at <= end)

    total = query.count()
    rows = query.order_by(AuditLog.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    items = [
        {
            "id": str(entry.id),
            "user_id": str(entry.user_id) if entry.user_id else None,
            "username": username,
            "document_id": str(entry.document_id) if entry.document_id else None,
            "document_title": title,
            "action": entry.action,
            "details": entry.details or {},
            "ip_address": entry.ip_address,
            "user_agent": entry.user_agent,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry, username, title in rows
    ]
    return {"items": items, "pagination": paginate(page, limit, total)}
