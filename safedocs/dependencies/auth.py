from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from fastapi import Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from ..config import settings
from ..models import User, UserRole, UserSession
from ..services.auth import AuthService
from .db import get_db


@dataclass
class AuthContext:
    user: User
    session: UserSession
    token: str


def _token_from_request(request: Request) -> str:
    authorization = request.headers.get("authorization") or ""
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get(settings.cookie_name) or ""


def require_auth(request: Request, db: Session = Depends(get_db)) -> AuthContext:
    raw_token = _token_from_request(request)
    row = AuthService(db).session_from_token(raw_token)
    if not row:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    session, user = row
    request.state.user_id = str(user.id)
    if user.org_id:
        request.state.org_id = str(user.org_id)
    return AuthContext(user=user, session=session, token=raw_token)


def require_role(*roles: UserRole) -> Callable[..., AuthContext]:
    allowed = set(roles)

    def _dependency(context: AuthContext = Depends(require_auth)) -> AuthContext:
        if context.user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return context

    return _dependency


require_admin = require_role(UserRole.ADMIN)


def attach_session_cookie(response: Response, raw_token: str) -> None:
    response.set_cookie(
        key=settings.cookie_name,
        value=raw_token,
        httponly=True,
        secure=settings.environment == "production",
        samesite="lax",
        domain=settings.cookie_domain,
        path="/",
        max_age=int(timedelta(hours=settings.session_ttl_hours).total_seconds()),
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.cookie_name,
        domain=settings.cookie_domain,
        path="/",
    )
