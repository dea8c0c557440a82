from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from ..config import settings
from ..models import AccessLevel, Document, ShareLink, User
from ..models.base import as_utc, utcnow
from .auth import hash_password, verify_password
from .metrics import record_share_link_access, record_share_links_expired

logger = logging.getLogger(__name__)

SHARE_LINK_LEVELS = (AccessLevel.VIEWER, AccessLevel.COMMENTER)
_DOWNLOAD_SALT = "share-link-download"


class ShareLinkError(Exception):
    def __init__(self, detail: str, status_code: int = 403, requires_password: bool = False) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code
        self.requires_password = requires_password


@dataclass
class ShareLinkAccess:
    link: ShareLink
    document: Document
    download_signature: Optional[str]


def share_url(token: str) -> str:
    return f"{settings.app_url}/share/{token}"


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.share_link_secret, salt=_DOWNLOAD_SALT)


class ShareLinkService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def create(
        self,
        document: Document,
        creator: User,
        *,
        access_level: AccessLevel = AccessLevel.VIEWER,
        password: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        max_uses: Optional[int] = None,
        allow_download: bool = True,
    ) -> ShareLink:
        if access_level not in SHARE_LINK_LEVELS:
            raise ShareLinkError("Share links grant viewer or commenter access only", status_code=400)
        if max_uses is not None and max_uses < 1:
            raise ShareLinkError("max_uses must be at least 1", status_code=400)

        expiry = as_utc(expires_at) if expires_at else utcnow() + timedelta(days=settings.share_link_default_days)
        if expiry <= utcnow():
            raise ShareLinkError("Expiry must be in the future", status_code=400)

        link = ShareLink(
            document_id=document.id,
            token=secrets.token_hex(32),
            password_hash=hash_password(password) if password else None,
            access_level=access_level,
            max_uses=max_uses,
            current_uses=0,
            allow_download=allow_download,
            created_by=creator.id,
            expires_at=expiry,
            is_active=True,
        )
        self.db.add(link)
        self.db.flush()
        logger.info(
            "share_link_created link_id=%s document_id=%s by=%s protected=%s max_uses=%s",
            link.id,
            document.id,
            creator.id,
            bool(password),
            max_uses,
        )
        return link

    def list_for_document(self, document_id) -> list[ShareLink]:
        return (
            self.db.query(ShareLink)
            .filter(ShareLink.document_id == document_id)
            .order_by(ShareLink.created_at.desc())
            .all()
        )

    def deactivate(self, link: ShareLink) -> None:
        link.is_active = False
        self.db.add(link)
        self.db.flush()
        logger.info("share_link_deactivated link_id=%s", link.id)

    def _lookup(self, token: str) -> tuple[ShareLink, Document]:
        row = (
            self.db.query(ShareLink, Document)
            .join(Document, Document.id == ShareLink.document_id)
            .filter(ShareLink.token == token, Document.is_deleted.is_(False))
            .one_or_none()
        )
        if row is None:
            raise ShareLinkError("Share link not found or expired", status_code=404)
        return row

    def _ensure_usable(self, link: ShareLink) -> None:
        if not link.is_active:
            raise ShareLinkError("Share link not found or expired", status_code=404)
        if as_utc(link.expires_at) <= utcnow():
            raise ShareLinkError("Share link has expired", status_code=403)

    def access(self, token: str, password: Optional[str] = None) -> ShareLinkAccess:
        try:
            link, document = self._lookup(token)
            self._ensure_usable(link)

            if link.max_uses is not None and (link.current_uses or 0) >= link.max_uses:
                raise ShareLinkError("Share link has reached maximum uses", status_code=403)

            if link.password_hash:
                if not password:
                    raise ShareLinkError("Password required", status_code=401, requires_password=True)
                if not verify_password(password, link.password_hash):
                    raise ShareLinkError("Invalid password", status_code=401)

            # guarded increment so concurrent opens cannot exceed max_uses
            result = self.db.execute(
                update(ShareLink)
                .where(
                    ShareLink.id == link.id,
                    or_(ShareLink.max_uses.is_(None), ShareLink.current_uses < ShareLink.max_uses),
                )
                .values(current_uses=ShareLink.current_uses + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ShareLinkError("Share link has reached maximum uses", status_code=403)
            self.db.refresh(link)
        except ShareLinkError as exc:
            record_share_link_access(f"denied_{exc.status_code}")
            raise

        record_share_link_access("granted")
        logger.info("share_link_accessed link_id=%s uses=%s", link.id, link.current_uses)
        signature = self.sign_download(link) if link.allow_download else None
        return ShareLinkAccess(link=link, document=document, download_signature=signature)

    # --- Public downloads ------------------------------------------------
    @staticmethod
    def sign_download(link: ShareLink) -> str:
        return _serializer().dumps({"token": link.token})

    def verify_download(self, token: str, signature: str) -> tuple[ShareLink, Document]:
        try:
            payload = _serializer().loads(signature, max_age=settings.share_download_ttl_minutes * 60)
        except SignatureExpired as exc:
            raise ShareLinkError("Download link has expired", status_code=403) from exc
        except BadSignature as exc:
            raise ShareLinkError("Invalid download signature", status_code=403) from exc

        if not isinstance(payload, dict) or payload.get("token") != token:
            raise ShareLinkError("Invalid download signature", status_code=403)

        link, document = self._lookup(token)
        self._ensure_usable(link)
        if not link.allow_download:
            raise ShareLinkError("Downloads are disabled for this link", status_code=403)
        return link, document

    # --- Maintenance -----------------------------------------------------
    def deactivate_expired(self, now: Optional[datetime] = None) -> int:
        cutoff = now or utcnow()
        count = (
            self.db.query(ShareLink)
            .filter(ShareLink.is_active.is_(True), ShareLink.expires_at <= cutoff)
            .update({"is_active": False}, synchronize_session=False)
        )
        if count:
            logger.info("share_links_expired count=%s", count)
        record_share_links_expired(count)
        return count
