from __future__ import annotations

import secrets
from datetime import timedelta

import boto3
import pytest

from safedocs.config import settings
from safedocs.db.session import SessionLocal
from safedocs.models import AccessLevel, Document, Notification, ShareLink, User, UserRole
from safedocs.models.base import utcnow
from safedocs.services.email import EmailClient, EmailMessage, SesEmailClient, send_quietly
from safedocs.services.expiry import notify_expiring_documents
from safedocs.workers.expiry import configure_scheduler, run_share_link_sweep


class RecordingEmailClient(EmailClient):
    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []

    def send(self, message: EmailMessage) -> None:
        self.sent.append(message)


class FailingEmailClient(EmailClient):
    def send(self, message: EmailMessage) -> None:
        raise RuntimeError("smtp down")


def _owner(session) -> User:
    name = f"owner-{secrets.token_hex(4)}"
    user = User(username=name, email=f"{name}@safedocs.rw", password_hash="x", role=UserRole.USER, is_active=True)
    session.add(user)
    session.flush()
    return user


def _document(session, owner: User, title: str, expires_in: timedelta | None) -> Document:
    document = Document(
        title=title,
        file_name="file.pdf",
        file_path=f"documents/{secrets.token_hex(4)}.pdf",
        file_size=1,
        mime_type="application/pdf",
        uploaded_by=owner.id,
        expires_at=utcnow() + expires_in if expires_in is not None else None,
    )
    session.add(document)
    session.flush()
    return document


@pytest.mark.integration
def test_expiring_documents_are_announced_once():
    session = SessionLocal()
    try:
        owner = _owner(session)
        _document(session, owner, "Fire safety certificate", timedelta(days=5))
        _document(session, owner, "Lease", timedelta(days=120))
        _document(session, owner, "Expired licence", timedelta(days=-2))
        _document(session, owner, "Policy", None)
        session.commit()

        mailer = RecordingEmailClient()
        stats = notify_expiring_documents(session, window_days=30, email_client=mailer)
        session.commit()
        assert stats == {"notified": 1, "emailed": 1}
        assert [message.to for message in mailer.sent] == [owner.email]
        assert "Fire safety certificate" in mailer.sent[0].subject

        notifications = session.query(Notification).all()
        assert len(notifications) == 1
        assert notifications[0].type == "document_expiring"

        again = notify_expiring_documents(session, window_days=30, email_client=mailer)
        assert again == {"skipped": 1}
        assert len(mailer.sent) == 1
    finally:
        session.close()


@pytest.mark.integration
def test_email_failures_do_not_block_notifications():
    session = SessionLocal()
    try:
        owner = _owner(session)
        _document(session, owner, "Insurance policy", timedelta(days=3))
        session.commit()

        stats = notify_expiring_documents(session, window_days=7, email_client=FailingEmailClient())
        session.commit()
        assert stats == {"notified": 1, "email_failed": 1}
        assert session.query(Notification).count() == 1
    finally:
        session.close()


@pytest.mark.integration
def test_share_link_sweep_deactivates_expired_links():
    session = SessionLocal()
    try:
        owner = _owner(session)
        document = _document(session, owner, "Referral", None)
        for offset in (timedelta(hours=-1), timedelta(days=2)):
            session.add(
                ShareLink(
                    document_id=document.id,
                    token=secrets.token_hex(32),
                    access_level=AccessLevel.VIEWER,
                    current_uses=0,
                    allow_download=True,
                    created_by=owner.id,
                    expires_at=utcnow() + offset,
                    is_active=True,
                )
            )
        session.commit()
    finally:
        session.close()

    assert run_share_link_sweep() == 1

    with SessionLocal() as session:
        states = sorted(link.is_active for link in session.query(ShareLink).all())
    assert states == [False, True]


def test_scheduler_registers_both_jobs():
    scheduler = configure_scheduler()
    names = sorted(job.func.__name__ for job in scheduler.get_jobs())
    assert names == ["run_expiry_notifications", "run_share_link_sweep"]


def test_ses_client_sends_through_amazon_ses():
    from moto import mock_aws

    with mock_aws():
        ses = boto3.client("ses", region_name=settings.storage.region)
        ses.verify_email_identity(EmailAddress=settings.email_from)

        sent = send_quietly(
            EmailMessage(to="nurse@safedocs.rw", subject="Document shared", text_body="hello"),
            client=SesEmailClient(),
        )
        assert sent is True
        quota = ses.get_send_quota()
        assert quota["SentLast24Hours"] == 1
