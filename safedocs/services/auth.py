from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from datetime import timedelta
from typing import Optional

import bcrypt
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..models import User, UserRole, UserSession
from ..models.base import utcnow

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes and newer releases refuse longer input
_BCRYPT_MAX_BYTES = 72


class AuthError(Exception):
    status_code = 401


class DuplicateUserError(AuthError):
    status_code = 409


class AccountDisabledError(AuthError):
    status_code = 403


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8")[:_BCRYPT_MAX_BYTES], bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8")[:_BCRYPT_MAX_BYTES], password_hash.encode("utf-8"))
    except ValueError:
        return False


class AuthService:
    def __init__(self, db: Session) -> None:
        self.db = db

    # --- Accounts --------------------------------------------------------
    def register(
        self,
        username: str,
        email: str,
        password: str,
        full_name: Optional[str] = None,
        role: UserRole = UserRole.USER,
        org_id: Optional[uuid.UUID] = None,
    ) -> User:
        normalized_email = email.strip().lower()
        normalized_username = username.strip()
        if not normalized_username or not normalized_email:
            raise AuthError("Username and email required")

        existing = (
            self.db.query(User)
            .filter(
                or_(
                    User.username == normalized_username,
                    func.lower(User.email) == normalized_email,
                )
            )
            .first()
        )
        if existing:
            raise DuplicateUserError("Username or email already exists")

        user = User(
            username=normalized_username,
            email=normalized_email,
            password_hash=hash_password(password),
            full_name=full_name,
            role=role,
            org_id=org_id,
        )
        self.db.add(user)
        self.db.flush()
        logger.info("user_registered user_id=%s role=%s org_id=%s", user.id, role.value, org_id)
        return user

    def authenticate(self, username: str, password: str) -> User:
        user = self.db.query(User).filter(User.username == username.strip()).one_or_none()
        if not user or not verify_password(password, user.password_hash):
            raise AuthError("Invalid credentials")
        if not user.is_active:
            raise AccountDisabledError("Account is disabled")
        return user

    def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if not verify_password(current_password, user.password_hash):
            raise AuthError("Current password is incorrect")
        self.set_password(user, new_password)

    def set_password(self, user: User, new_password: str) -> None:
        user.password_hash = hash_password(new_password)
        # outstanding sessions carry the old version and stop validating
        user.token_version = (user.token_version or 0) + 1
        self.db.query(UserSession).filter(
            UserSession.user_id == user.id, UserSession.revoked_at.is_(None)
        ).update({"revoked_at": utcnow()})
        self.db.add(user)
        logger.info("password_changed user_id=%s token_version=%s", user.id, user.token_version)

    # --- Session flow ----------------------------------------------------
    def create_session(
        self,
        user: User,
        request_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> str:
        raw_token = secrets.token_urlsafe(32)
        session = UserSession(
            user_id=user.id,
            session_token_hash=self.hash_token(raw_token),
            token_version=user.token_version or 0,
            ip_address=request_ip,
            user_agent=user_agent,
            expires_at=utcnow() + timedelta(hours=settings.session_ttl_hours),
        )
        user.last_login_at = utcnow()
        self.db.add_all([session, user])
        self.db.commit()

        logger.info("user_login user_id=%s request_ip=%s", user.id, request_ip)
        return raw_token

    def session_from_token(self, raw_token: str) -> Optional[tuple[UserSession, User]]:
        if not raw_token:
            return None
        hashed = self.hash_token(raw_token)
        row = (
            self.db.query(UserSession, User)
            .join(User, User.id == UserSession.user_id)
            .filter(
                UserSession.session_token_hash == hashed,
                UserSession.revoked_at.is_(None),
                UserSession.expires_at > utcnow(),
                User.is_active.is_(True),
            )
            .one_or_none()
        )
        if row is None:
            return None
        session, user = row
        if session.token_version != user.token_version:
            return None
        return session, user

    def revoke_session(self, raw_token: str) -> None:
        hashed = self.hash_token(raw_token)
        updated = (
            self.db.query(UserSession)
            .filter(UserSession.session_token_hash == hashed, UserSession.revoked_at.is_(None))
            .update({"revoked_at": utcnow()})
        )
        if updated:
            logger.info("session_revoked hash=%s", hashed[:8])
        self.db.commit()

    # --- Helpers ---------------------------------------------------------
    @staticmethod
    def hash_token(value: str) -> str:
        return hashlib.sha256(value.encode("utf-8")).hexdigest()
