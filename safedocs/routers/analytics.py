from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Query as SAQuery, Session

from ..dependencies.auth import AuthContext, require_role
from ..dependencies.db import get_db
from ..models import AuditLog, Document, EmployeeDocument, Folder, MediaItem, Org, User, UserRole
from ..models.base import utcnow
from .healthcare import is_healthcare_record

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"])

RANGE_DAYS = {"7d": 7, "30d": 30, "90d": 90}
TOP_N = 10
RECENT_ACTIVITY = 20

require_analytics = require_role(UserRole.ADMIN, UserRole.MANAGER)
RANGE_PATTERN = "^(7d|30d|90d|all)$"


def _since(range_key: str) -> Optional[datetime]:
    days = RANGE_DAYS.get(range_key)
    return utcnow() - timedelta(days=days) if days else None


def _scoped(query: SAQuery, column, org_id: Optional[uuid.UUID]) -> SAQuery:
    return query.filter(column == org_id) if org_id else query


def _recent(query: SAQuery, column, since: Optional[datetime]) -> SAQuery:
    return query.filter(column >= since) if since else query


def _daily(rows: Iterable[tuple[Optional[datetime], int]], key: str = "count") -> list[dict[str, Any]]:
    buckets: Counter = Counter()
    for created_at, value in rows:
        if created_at is not None:
            buckets[created_at.date().isoformat()] += int(value or 0)
    return [{"date": day, key: buckets[day]} for day in sorted(buckets)]


def _live_documents(db: Session, org_id: Optional[uuid.UUID], since: Optional[datetime], *columns) -> SAQuery:
    query = db.query(*columns).filter(Document.is_deleted.is_(False))
    return _recent(_scoped(query, Document.org_id, org_id), Document.created_at, since)


def _audit_entries(db: Session, org_id: Optional[uuid.UUID], since: Optional[datetime], *columns) -> SAQuery:
    query = db.query(*columns)
    if org_id:
        query = query.join(User, User.id == AuditLog.user_id).filter(User.org_id == org_id)
    return _recent(query, AuditLog.created_at, since)


def _user_names(db: Session, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, User]:
    ids = [user_id for user_id in user_ids if user_id]
    if not ids:
        return {}
    return {user.id: user for user in db.query(User).filter(User.id.in_(ids)).all()}


@router.get("/overview")
def overview(
    range_key: str = Query(default="all", alias="range", pattern=RANGE_PATTERN),
    context: AuthContext = Depends(require_analytics),
    db: Session = Depends(get_db),
):
    org_id = context.user.org_id
    since = _since(range_key)

    total_documents = _live_documents(db, org_id, since, func.count(Document.id)).scalar() or 0
    total_storage = _live_documents(db, org_id, None, func.coalesce(func.sum(Document.file_size), 0)).scalar() or 0
    total_users = _scoped(db.query(func.count(User.id)).filter(User.is_active.is_(True)), User.org_id, org_id).scalar()
    total_folders = _recent(_scoped(db.query(func.count(Folder.id)), Folder.org_id, org_id), Folder.created_at, since).scalar()
    total_orgs = 1 if org_id else db.query(func.count(Org.id)).filter(Org.is_active.is_(True)).scalar()

    return {
        "total_documents": int(total_documents),
        "total_users": int(total_users or 0),
        "total_storage_bytes": int(total_storage),
        "total_organizations": int(total_orgs or 0),
        "total_folders": int(total_folders or 0),
    }


@router.get("/documents")
def document_analytics(
    range_key: str = Query(default="all", alias="range", pattern=RANGE_PATTERN),
    context: AuthContext = Depends(require_analytics),
    db: Session = Depends(get_db),
):
    org_id = context.user.org_id
    since = _since(range_key)

    rows = _live_documents(db, org_id, since, Document.id, Document.created_at, Document.metadata_json).all()
    by_mime = (
        _live_documents(db, org_id, since, Document.mime_type, func.count(Document.id))
        .group_by(Document.mime_type)
        .order_by(func.count(Document.id).desc())
        .limit(TOP_N)
        .all()
    )

    hr_ids: set[uuid.UUID] = set()
    if rows:
        linked = db.query(EmployeeDocument.document_id).filter(
            EmployeeDocument.document_id.in_([doc_id for doc_id, _, _ in rows])
        )
        hr_ids = {row[0] for row in linked.all()}
    healthcare = sum(1 for doc_id, _, metadata in rows if doc_id not in hr_ids and is_healthcare_record(metadata or {}))
    media = _recent(
        _scoped(db.query(func.count(MediaItem.id)).filter(MediaItem.is_deleted.is_(False)), MediaItem.org_id, org_id),
        MediaItem.created_at,
        since,
    ).scalar()

    return {
        "documents_over_time": _daily((created_at, 1) for _, created_at, _ in rows),
        "by_mime_type": [{"mime_type": mime or "unknown", "count": int(count)} for mime, count in by_mime],
        "by_module": [
            {"module": "General", "count": len(rows) - healthcare - len(hr_ids)},
            {"module": "Healthcare", "count": healthcare},
            {"module": "HR", "count": len(hr_ids)},
            {"module": "Media", "count": int(media or 0)},
        ],
    }


@router.get("/users")
def user_activity(
    range_key: str = Query(default="all", alias="range", pattern=RANGE_PATTERN),
    context: AuthContext = Depends(require_analytics),
    db: Session = Depends(get_db),
):
    org_id = context.user.org_id
    since = _since(range_key)

    users = _scoped(db.query(User.is_active), User.org_id, org_id).all()
    joined = _recent(_scoped(db.query(User.created_at), User.org_id, org_id), User.created_at, since).all()
    uploaders = (
        _live_documents(
            db,
            org_id,
            since,
            Document.uploaded_by,
            func.count(Document.id),
            func.coalesce(func.sum(Document.file_size), 0),
        )
        .group_by(Document.uploaded_by)
        .order_by(func.count(Document.id).desc())
        .limit(TOP_N)
        .all()
    )
    recent = (
        _audit_entries(db, org_id, since, AuditLog)
        .order_by(AuditLog.created_at.desc())
        .limit(RECENT_ACTIVITY)
        .all()
    )
    names = _user_names(db, [row[0] for row in uploaders] + [entry.user_id for entry in recent])

    def _person(user_id: Optional[uuid.UUID]) -> Optional[dict[str, Any]]:
        user = names.get(user_id)
        if user is None:
            return None
        return {"id": str(user.id), "username": user.username, "full_name": user.display_name}

    return {
        "active_users": sum(1 for (is_active,) in users if is_active),
        "total_users": len(users),
        "new_users_over_time": _daily((created_at, 1) for (created_at,) in joined),
        "top_uploaders": [
            {
                "user_id": str(user_id),
                "username": names[user_id].username if user_id in names else "Unknown",
                "full_name": names[user_id].display_name if user_id in names else "Unknown",
                "count": int(count),
                "total_size": int(total_size or 0),
            }
            for user_id, count, total_size in uploaders
        ],
        "recent_activity": [
            {
                "id": str(entry.id),
                "action": entry.action,
                "user_id": str(entry.user_id) if entry.user_id else None,
                "user": _person(entry.user_id),
                "created_at": entry.created_at.isoformat() if entry.created_at else None,
            }
            for entry in recent
        ],
    }


@router.get("/storage")
def storage_analytics(
    range_key: str = Query(default="all", alias="range", pattern=RANGE_PATTERN),
    context: AuthContext = Depends(require_analytics),
    db: Session = Depends(get_db),
):
    org_id = context.user.org_id
    since = _since(range_key)
    size = func.coalesce(func.sum(Document.file_size), 0)

    by_user = (
        _live_documents(db, org_id, since, Document.uploaded_by, size, func.count(Document.id))
        .group_by(Document.uploaded_by)
        .order_by(size.desc())
        .limit(TOP_N)
        .all()
    )
    growth = _live_documents(db, org_id, since, Document.created_at, Document.file_size).all()
    by_org = []
    if not org_id:
        by_org = (
            _live_documents(db, None, since, Document.org_id, size, func.count(Document.id))
            .group_by(Document.org_id)
            .order_by(size.desc())
            .all()
        )
    names = _user_names(db, [row[0] for row in by_user])
    org_ids = [row[0] for row in by_org if row[0]]
    org_names = {org.id: org.name for org in db.query(Org).filter(Org.id.in_(org_ids)).all()} if org_ids else {}

    return {
        "storage_by_user": [
            {
                "user_id": str(user_id),
                "full_name": names[user_id].display_name if user_id in names else "Unknown",
                "total_size": int(total or 0),
                "count": int(count),
            }
            for user_id, total, count in by_user
        ],
        "storage_growth": _daily(growth, key="bytes"),
        "storage_by_org": [
            {
                "org_id": str(row_org) if row_org else None,
                "org_name": org_names.get(row_org, "Unknown") if row_org else "Unassigned",
                "total_size": int(total or 0),
                "count": int(count),
            }
            for row_org, total, count in by_org
        ],
    }


@router.get("/audit")
def audit_analytics(
    range_key: str = Query(default="all", alias="range", pattern=RANGE_PATTERN),
    context: AuthContext = Depends(require_analytics),
    db: Session = Depends(get_db),
):
    org_id = context.user.org_id
    since = _since(range_key)

    timestamps = _audit_entries(db, org_id, since, AuditLog.created_at).all()
    top_actions = (
        _audit_entries(db, org_id, since, AuditLog.action, func.count(AuditLog.id))
        .group_by(AuditLog.action)
        .order_by(func.count(AuditLog.id).desc())
        .limit(TOP_N)
        .all()
    )
    logger.info("audit_analytics_viewed user_id=%s range=%s", context.user.id, range_key)
    return {
        "total_actions": len(timestamps),
        "actions_over_time": _daily((created_at, 1) for (created_at,) in timestamps),
        "top_actions": [{"action": action, "count": int(count)} for action, count in top_actions],
    }
