from __future__ import annotations

import os
import pathlib
import secrets
import sys
import tempfile
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, Optional

import pytest
from fastapi.testclient import TestClient

ROOT_DIR = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

# settings are read at import time, so point them at a throwaway SQLite file and upload dir first
_WORK_DIR = pathlib.Path(tempfile.mkdtemp(prefix="safedocs-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_WORK_DIR / 'safedocs.db'}")
os.environ["STORAGE_BACKEND"] = "local"
os.environ["UPLOAD_DIR"] = str(_WORK_DIR / "uploads")
os.environ["APP_ENV"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from safedocs.config import settings
from safedocs.db.session import SessionLocal, engine
from safedocs.main import app
from safedocs.models import Org, User, UserRole, UserSession
from safedocs.models.base import Base
from safedocs.services.auth import AuthService, hash_password

Base.metadata.create_all(bind=engine)

DEFAULT_PASSWORD = "correct-horse-battery"
_PASSWORD_HASH = hash_password(DEFAULT_PASSWORD)


@dataclass
class Account:
    id: str
    username: str
    email: str
    role: str
    org_id: Optional[str]
    token: str
    password: str = DEFAULT_PASSWORD

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


@pytest.fixture(scope="session")
def client() -> Iterator[TestClient]:
    """Provide a FastAPI TestClient instance."""
    with TestClient(app) as _client:
        yield _client


@pytest.fixture()
def org() -> dict[str, str]:
    with SessionLocal() as session:
        organization = Org(name=f"Kigali Clinic {secrets.token_hex(3)}", slug=f"kigali-{secrets.token_hex(3)}")
        session.add(organization)
        session.commit()
        return {"id": str(organization.id), "name": organization.name, "slug": organization.slug}


@pytest.fixture()
def make_user() -> Callable[..., Account]:
    """Create a user and mint a live session for it directly in the database."""

    def _make(role: UserRole = UserRole.USER, org_id: Optional[str] = None, username: Optional[str] = None) -> Account:
        name = username or f"{role.value}-{secrets.token_hex(4)}"
        token = secrets.token_urlsafe(32)
        with SessionLocal() as session:
            user = User(
                username=name,
                email=f"{name}@safedocs.rw",
                password_hash=_PASSWORD_HASH,
                full_name=name.replace("-", " ").title(),
                role=role,
                org_id=uuid.UUID(str(org_id)) if org_id else None,
                is_active=True,
                token_version=0,
            )
            session.add(user)
            session.flush()
            session.add(
                UserSession(
                    user_id=user.id,
                    session_token_hash=AuthService.hash_token(token),
                    token_version=0,
                    expires_at=datetime.now(timezone.utc) + timedelta(hours=4),
                )
            )
            session.commit()
            return Account(
                id=str(user.id),
                username=user.username,
                email=user.email,
                role=role.value,
                org_id=str(org_id) if org_id else None,
                token=token,
            )

    return _make


@pytest.fixture()
def auth_context(client: TestClient, make_user) -> Iterator[Account]:
    """Create an ordinary user and attach its session cookie to the client."""
    account = make_user(UserRole.USER)
    client.cookies.set(settings.cookie_name, account.token)
    try:
        yield account
    finally:
        client.cookies.clear()


@pytest.fixture()
def admin(make_user) -> Account:
    return make_user(UserRole.ADMIN)


@pytest.fixture(autouse=True)
def cleanup_database(client: TestClient) -> Iterator[None]:
    """Empty every table after each test to keep isolation."""
    yield
    client.cookies.clear()
    with SessionLocal() as session:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
