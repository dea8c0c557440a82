from __future__ import annotations

import secrets

import pytest
from sqlalchemy.exc import IntegrityError

from safedocs.db.session import SessionLocal
from safedocs.models import AccessLevel, AccessRequest, AccessRequestStatus, Document, User, UserRole
from safedocs.services import access_requests as access_requests_module
from safedocs.services.access_requests import AccessRequestError, AccessRequestService


def _user(session, role: UserRole = UserRole.USER) -> User:
    name = f"{role.value}-{secrets.token_hex(4)}"
    user = User(username=name, email=f"{name}@safedocs.rw", password_hash="x", role=role, is_active=True)
    session.add(user)
    session.flush()
    return user


def _document(session, owner: User) -> Document:
    document = Document(
        title="Theatre schedule",
        file_name="theatre.pdf",
        file_path="documents/theatre.pdf",
        file_size=10,
        mime_type="application/pdf",
        uploaded_by=owner.id,
    )
    session.add(document)
    session.flush()
    return document


@pytest.mark.integration
def test_database_allows_one_pending_request_per_requester():
    with SessionLocal() as session:
        owner = _user(session)
        requester = _user(session)
        document = _document(session, owner)
        session.add(AccessRequest(document_id=document.id, requester_id=requester.id, status=AccessRequestStatus.DENIED))
        session.add(AccessRequest(document_id=document.id, requester_id=requester.id, status=AccessRequestStatus.PENDING))
        session.commit()

        session.add(AccessRequest(document_id=document.id, requester_id=requester.id, status=AccessRequestStatus.PENDING))
        with pytest.raises(IntegrityError):
            session.commit()


@pytest.mark.integration
def test_concurrent_duplicate_submit_is_reported_as_request_error(monkeypatch):
    with SessionLocal() as session:
        owner = _user(session)
        requester = _user(session)
        document = _document(session, owner)
        service = AccessRequestService(session)
        service.submit(requester, document, AccessLevel.VIEWER)
        session.commit()

        # the other submit already passed its pending check
        monkeypatch.setattr(AccessRequestService, "pending_request", lambda self, document, requester: None)
        with pytest.raises(AccessRequestError, match="already have a pending request"):
            AccessRequestService(session).submit(requester, document, AccessLevel.EDITOR)
        session.rollback()

        assert session.query(AccessRequest).count() == 1


@pytest.mark.integration
def test_mail_is_queued_until_sent_explicitly(monkeypatch):
    sent = []
    monkeypatch.setattr(access_requests_module, "send_quietly", lambda message: sent.append(message) or True)

    with SessionLocal() as session:
        owner = _user(session)
        requester = _user(session)
        document = _document(session, owner)
        service = AccessRequestService(session)
        service.submit(requester, document, AccessLevel.VIEWER, "For the ward round")

        assert sent == []
        assert [message.to for message in service.outbox] == [owner.email]

        session.commit()
        assert service.send_pending_mail() == 1
        assert [message.to for message in sent] == [owner.email]
        assert service.outbox == []


@pytest.mark.integration
def test_rejected_submission_sends_no_mail(client, make_user, monkeypatch):
    sent = []
    monkeypatch.setattr(access_requests_module, "send_quietly", lambda message: sent.append(message) or True)
    owner = make_user()
    requester = make_user()
    document = client.post(
        "/documents/upload",
        headers=owner.headers,
        data={"title": "Duty roster"},
        files={"file": ("roster.txt", b"roster", "text/plain")},
    ).json()

    body = {"document_id": document["id"], "requested_access": "viewer"}
    assert client.post("/access-requests", headers=requester.headers, json=body).status_code == 201
    assert [message.to for message in sent] == [owner.email]

    duplicate = client.post("/access-requests", headers=requester.headers, json=body)
    assert duplicate.status_code == 400
    assert len(sent) == 1

    with SessionLocal() as session:
        assert session.query(AccessRequest).filter(AccessRequest.status == AccessRequestStatus.PENDING).count() == 1
