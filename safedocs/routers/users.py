from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..dependencies.access import paginate, parse_uuid
from ..dependencies.auth import AuthContext, require_admin, require_auth
from ..dependencies.db import get_db
from ..models import Org, User, UserRole, UserSession
from ..services import audit
from ..services.auth import AuthError, AuthService
from .auth import serialize_user

router = APIRouter(prefix="/users", tags=["users"])

logger = logging.getLogger(__name__)


class CreateUserRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    full_name: Optional[str] = Field(default=None, max_length=255)
    role: UserRole = UserRole.USER
    org_id: Optional[str] = None


class UpdateUserRequest(BaseModel):
    role: Optional[UserRole] = None
    org_id: Optional[str] = None
    clear_org: bool = False
    full_name: Optional[str] = Field(default=None, max_length=255)


def _resolve_org(db: Session, org_id: Optional[str]) -> Optional[Org]:
    if not org_id:
        return None
    org = db.get(Org, parse_uuid(org_id, "organization"))
    if org is None:
        raise HTTPException(status_code=404, detail="Organization not found")
    return org


def _get_user_or_404(db: Session, user_id: str) -> User:
    user = db.get(User, parse_uuid(user_id, "user"))
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/search")
def search_users(
    q: str = Query(..., min_length=1),
    limit: int = Query(default=10, ge=1, le=50),
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """Lightweight lookup used by share dialogs; only active accounts are returned."""
    pattern = f"%{q.strip().lower()}%"
    users = (
        db.query(User)
        .filter(
            User.is_active.is_(True),
            or_(
                func.lower(User.username).like(pattern),
                func.lower(User.email).like(pattern),
                func.lower(func.coalesce(User.full_name, "")).like(pattern),
            ),
        )
        .order_by(User.username.asc())
        .limit(limit)
        .all()
    )
    return {
        "items": [
            {"id": str(user.id), "username": user.username, "email": user.email, "full_name": user.full_name}
            for user in users
        ]
    }


@router.get("")
def list_users(
    search: Optional[str] = Query(default=None),
    role: Optional[UserRole] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=25, ge=1, le=100),
    context: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    query = db.query(User)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(func.lower(User.username).like(pattern), func.lower(User.email).like(pattern))
        )
    if role:
        query = query.filter(User.role == role)

    total = query.count()
    users = query.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    orgs = {org.id: org for org in db.query(Org).filter(Org.id.in_({u.org_id for u in users if u.org_id})).all()}
    return {
        "items": [serialize_user(user, orgs.get(user.org_id)) for user in users],
        "pagination": paginate(page, limit, total),
    }


@router.post("", status_code=201)
def create_user(
    payload: CreateUserRequest,
    request: Request,
    context: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    org = _resolve_org(db, payload.org_id)
    try:
        user = AuthService(db).register(
            payload.username,
            payload.email,
            payload.password,
            full_name=payload.full_name,
            role=payload.role,
            org_id=org.id if org else None,
        )
    except AuthError as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    audit.record_audit(
        db,
        audit.USER_CREATED,
        user_id=context.user.id,
        details={"created_user_id": str(user.id), "role": payload.role.value},
        request=request,
    )
    db.commit()
    db.refresh(user)
    return serialize_user(user, org)


@router.patch("/{user_id}")
def update_user(
    user_id: str,
    payload: UpdateUserRequest,
    request: Request,
    context: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = _get_user_or_404(db, user_id)
    changes: dict[str, object] = {}

    if payload.role is not None and payload.role != user.role:
        if user.id == context.user.id:
            raise HTTPException(status_code=400, detail="You cannot change your own role")
        user.role = payload.role
        changes["role"] = payload.role.value
    if payload.clear_org:
        user.org_id = None
        changes["org_id"] = None
    elif payload.org_id is not None:
        org = _resolve_org(db, payload.org_id)
        user.org_id = org.id if org else None
        changes["org_id"] = str(user.org_id)
    if payload.full_name is not None:
        user.full_name = payload.full_name.strip() or None
        changes["full_name"] = user.full_name

    if changes:
        audit.record_audit(
            db,
            audit.USER_UPDATED,
            user_id=context.user.id,
            details={"target_user_id": str(user.id), **changes},
            request=request,
        )
        db.add(user)
        db.commit()
        db.refresh(user)

    org = db.get(Org, user.org_id) if user.org_id else None
    return serialize_user(user, org)


@router.post("/{user_id}/toggle-active")
def toggle_user_active(
    user_id: str,
    request: Request,
    context: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = _get_user_or_404(db, user_id)
    if user.id == context.user.id:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")

    user.is_active = not user.is_active
    if not user.is_active:
        db.query(UserSession).filter(
            UserSession.user_id == user.id, UserSession.revoked_at.is_(None)
        ).update({"revoked_at": func.now()}, synchronize_session=False)

    audit.record_audit(
        db,
        audit.USER_UPDATED,
        user_id=context.user.id,
        details={"target_user_id": str(user.id), "is_active": user.is_active},
        request=request,
    )
    db.add(user)
    db.commit()
    logger.info("user_active_toggled user_id=%s is_active=%s by=%s", user.id, user.is_active, context.user.id)
    return {"id": str(user.id), "is_active": user.is_active}


@router.delete("/{user_id}")
def delete_user(
    user_id: str,
    request: Request,
    context: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = _get_user_or_404(db, user_id)
    if user.id == context.user.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    target_id = user.id
    db.query(UserSession).filter(UserSession.user_id == target_id).delete(synchronize_session=False)
    db.delete(user)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=409,
            detail="User still owns content; deactivate the account instead",
        ) from exc

    audit.record_audit(
        db,
        audit.USER_DELETED,
        user_id=context.user.id,
        details={"deleted_user_id": str(target_id)},
        request=request,
    )
    db.commit()
    return {"status": "deleted"}
