from __future__ import annotations

import io
from datetime import datetime, timedelta, timezone

import pytest

from safedocs.db.session import SessionLocal
from safedocs.models import AuditLog, ShareLink
from safedocs.services.sharing import ShareLinkService


def _document(client, owner, body=b"discharge summary"):
    response = client.post(
        "/documents/upload",
        headers=owner.headers,
        data={"title": "Discharge summary"},
        files={"file": ("summary.txt", io.BytesIO(body), "text/plain")},
    )
    assert response.status_code == 201
    return response.json()


def _link(client, owner, document_id, **payload):
    response = client.post(f"/shares/documents/{document_id}/links", headers=owner.headers, json=payload)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.integration
def test_public_access_counts_uses_and_signs_download(client, make_user):
    owner = make_user()
    document = _document(client, owner)
    link = _link(client, owner, document["id"])
    assert link["has_password"] is False
    assert link["url"].endswith(f"/share/{link['token']}")
    assert "password_hash" not in link

    opened = client.post(f"/shares/link/{link['token']}/access")
    assert opened.status_code == 200
    body = opened.json()
    assert body["document"]["title"] == "Discharge summary"
    assert body["access_level"] == "viewer"
    assert "download_path" not in body["document"]

    download = client.get(body["download_url"])
    assert download.status_code == 200
    assert download.content == b"discharge summary"

    with SessionLocal() as session:
        assert session.query(ShareLink).one().current_uses == 1
        actions = {row.action for row in session.query(AuditLog).all()}
    assert {"SHARE_LINK_CREATED", "SHARE_LINK_ACCESSED", "DOCUMENT_DOWNLOADED"} <= actions


@pytest.mark.integration
def test_password_protected_link(client, make_user):
    owner = make_user()
    document = _document(client, owner)
    link = _link(client, owner, document["id"], password="open-sesame")
    assert link["has_password"] is True

    missing = client.post(f"/shares/link/{link['token']}/access")
    assert missing.status_code == 401
    assert missing.json() == {"detail": "Password required", "requires_password": True}

    wrong = client.post(f"/shares/link/{link['token']}/access", json={"password": "guess"})
    assert wrong.status_code == 401
    assert wrong.json()["detail"] == "Invalid password"

    granted = client.post(f"/shares/link/{link['token']}/access", json={"password": "open-sesame"})
    assert granted.status_code == 200


@pytest.mark.integration
def test_max_uses_is_enforced(client, make_user):
    owner = make_user()
    document = _document(client, owner)
    link = _link(client, owner, document["id"], max_uses=1)

    assert client.post(f"/shares/link/{link['token']}/access").status_code == 200
    exhausted = client.post(f"/shares/link/{link['token']}/access")
    assert exhausted.status_code == 403
    assert exhausted.json()["detail"] == "Share link has reached maximum uses"


@pytest.mark.integration
def test_expired_and_deactivated_links_are_refused(client, make_user):
    owner = make_user()
    document = _document(client, owner)
    expired = _link(client, owner, document["id"])
    revoked = _link(client, owner, document["id"])

    with SessionLocal() as session:
        row = session.query(ShareLink).filter(ShareLink.token == expired["token"]).one()
        row.expires_at = datetime.now(timezone.utc) - timedelta(minutes=5)
        session.commit()

    response = client.post(f"/shares/link/{expired['token']}/access")
    assert response.status_code == 403
    assert response.json()["detail"] == "Share link has expired"

    assert client.delete(f"/shares/link/{revoked['token']}", headers=owner.headers).json() == {"status": "deactivated"}
    response = client.post(f"/shares/link/{revoked['token']}/access")
    assert response.status_code == 404
    assert client.post("/shares/link/not-a-token/access").status_code == 404


@pytest.mark.integration
def test_link_options_are_validated(client, make_user):
    owner = make_user()
    document = _document(client, owner)

    response = client.post(
        f"/shares/documents/{document['id']}/links", headers=owner.headers, json={"access_level": "editor"}
    )
    assert response.status_code == 400

    past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    response = client.post(f"/shares/documents/{document['id']}/links", headers=owner.headers, json={"expires_at": past})
    assert response.status_code == 400
    assert response.json()["detail"] == "Expiry must be in the future"

    stranger = make_user()
    response = client.post(f"/shares/documents/{document['id']}/links", headers=stranger.headers, json={})
    assert response.status_code == 403


@pytest.mark.integration
def test_download_requires_valid_signature(client, make_user):
    owner = make_user()
    document = _document(client, owner)
    link = _link(client, owner, document["id"], allow_download=False)

    body = client.post(f"/shares/link/{link['token']}/access").json()
    assert body["allow_download"] is False
    assert "download_url" not in body

    forged = client.get(f"/shares/link/{link['token']}/download", params={"signature": "forged"})
    assert forged.status_code == 403
    assert forged.json()["detail"] == "Invalid download signature"

    with SessionLocal() as session:
        row = session.query(ShareLink).one()
        signature = ShareLinkService.sign_download(row)
    refused = client.get(f"/shares/link/{link['token']}/download", params={"signature": signature})
    assert refused.status_code == 403
    assert refused.json()["detail"] == "Downloads are disabled for this link"


@pytest.mark.integration
def test_direct_grants_can_be_listed_and_revoked(client, make_user):
    owner = make_user()
    colleague = make_user()
    document = _document(client, owner)

    grant = client.post(
        f"/shares/documents/{document['id']}",
        headers=owner.headers,
        json={"permission_type": "user", "target_id": colleague.id, "access_level": "editor"},
    ).json()
    assert grant["target_name"]
    assert client.get(f"/documents/{document['id']}", headers=colleague.headers).json()["access_level"] == "editor"

    listing = client.get(f"/shares/documents/{document['id']}", headers=owner.headers).json()["items"]
    assert [item["id"] for item in listing] == [grant["id"]]

    notifications = client.get("/notifications", headers=colleague.headers).json()
    assert notifications["unread_count"] == 1

    assert client.delete(f"/shares/{grant['id']}", headers=owner.headers).json() == {"status": "revoked"}
    assert client.get(f"/documents/{document['id']}", headers=colleague.headers).status_code == 403


@pytest.mark.integration
def test_role_grants_reject_unknown_roles(client, make_user):
    owner = make_user()
    document = _document(client, owner)
    response = client.post(
        f"/shares/documents/{document['id']}",
        headers=owner.headers,
        json={"permission_type": "role", "target_id": "janitor", "access_level": "viewer"},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Unknown role"


@pytest.mark.integration
def test_only_owners_can_grant_owner_access(client, make_user):
    owner = make_user()
    editor = make_user()
    outsider = make_user()
    document = _document(client, owner)
    client.post(
        f"/shares/documents/{document['id']}",
        headers=owner.headers,
        json={"permission_type": "user", "target_id": editor.id, "access_level": "editor"},
    )

    response = client.post(
        f"/shares/documents/{document['id']}",
        headers=editor.headers,
        json={"permission_type": "user", "target_id": outsider.id, "access_level": "owner"},
    )
    assert response.status_code == 403
    assert response.json()["detail"] == "Only owners can grant owner access"
    assert client.get(f"/documents/{document['id']}", headers=outsider.headers).status_code == 403

    allowed = client.post(
        f"/shares/documents/{document['id']}",
        headers=editor.headers,
        json={"permission_type": "user", "target_id": outsider.id, "access_level": "viewer"},
    )
    assert allowed.status_code == 201
