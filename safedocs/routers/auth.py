from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..dependencies.auth import AuthContext, attach_session_cookie, clear_session_cookie, require_auth
from ..dependencies.db import get_db
from ..dependencies.rate_limit import AUTH_LIMIT_MESSAGE, limiter
from ..models import Org, User
from ..services import audit
from ..services.auth import AuthError, AuthService

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    full_name: Optional[str] = Field(default=None, max_length=255)


class LoginRequest(BaseModel):
    username: str
    password: str


class SessionPayload(BaseModel):
    user: dict
    token: str


class UpdateProfileRequest(BaseModel):
    full_name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[EmailStr] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=128)


def serialize_user(user: User, org: Org | None = None) -> dict:
    return {
        "id": str(user.id),
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role.value if hasattr(user.role, "value") else user.role,
        "org_id": str(user.org_id) if user.org_id else None,
        "org_name": org.name if org else None,
        "is_active": user.is_active,
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def _start_session(service: AuthService, user: User, request: Request, response: Response) -> SessionPayload:
    raw_token = service.create_session(
        user,
        request_ip=audit.client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    attach_session_cookie(response, raw_token)
    org = service.db.get(Org, user.org_id) if user.org_id else None
    return SessionPayload(user=serialize_user(user, org), token=raw_token)


@router.post("/register", status_code=201)
@limiter.limit(settings.rate_limit_auth, error_message=AUTH_LIMIT_MESSAGE)
def register(
    payload: RegisterRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> SessionPayload:
    service = AuthService(db)
    try:
        user = service.register(payload.username, payload.email, payload.password, full_name=payload.full_name)
    except AuthError as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    audit.record_audit(db, audit.USER_CREATED, user_id=user.id, details={"self_registered": True}, request=request)
    return _start_session(service, user, request, response)


@router.post("/login")
@limiter.limit(settings.rate_limit_auth, error_message=AUTH_LIMIT_MESSAGE)
def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> SessionPayload:
    service = AuthService(db)
    try:
        user = service.authenticate(payload.username, payload.password)
    except AuthError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    audit.record_audit(db, audit.USER_LOGIN, user_id=user.id, request=request)
    return _start_session(service, user, request, response)


@router.post("/logout")
def logout(
    response: Response,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> dict:
    AuthService(db).revoke_session(context.token)
    clear_session_cookie(response)
    return {"status": "logged_out"}


@router.get("/profile")
def get_profile(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> dict:
    org = db.get(Org, context.user.org_id) if context.user.org_id else None
    return serialize_user(context.user, org)


@router.patch("/profile")
def update_profile(
    payload: UpdateProfileRequest,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> dict:
    user = context.user
    if payload.email is not None:
        email = str(payload.email).strip().lower()
        taken = (
            db.query(User.id)
            .filter(func.lower(User.email) == email, User.id != user.id)
            .first()
        )
        if taken:
            raise HTTPException(status_code=409, detail="Email already in use")
        user.email = email
    if payload.full_name is not None:
        user.full_name = payload.full_name.strip() or None

    db.add(user)
    db.commit()
    db.refresh(user)
    org = db.get(Org, user.org_id) if user.org_id else None
    return serialize_user(user, org)


@router.post("/change-password")
def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    response: Response,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
) -> SessionPayload:
    service = AuthService(db)
    try:
        service.change_password(context.user, payload.current_password, payload.new_password)
    except AuthError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    audit.record_audit(db, audit.USER_UPDATED, user_id=context.user.id, details={"password_changed": True}, request=request)
    # every session was revoked; hand the caller a fresh one
    return _start_session(service, context.user, request, response)
