from __future__ import annotations

import io

import pytest


def _share_with(client, owner, recipient, title):
    document = client.post(
        "/documents/upload",
        headers=owner.headers,
        data={"title": title},
        files={"file": ("doc.txt", io.BytesIO(b"body"), "text/plain")},
    ).json()
    client.post(
        f"/shares/documents/{document['id']}",
        headers=owner.headers,
        json={"permission_type": "user", "target_id": recipient.id, "access_level": "viewer"},
    )
    return document


@pytest.mark.integration
def test_notifications_list_and_mark_read(client, make_user):
    owner = make_user()
    recipient = make_user()
    first = _share_with(client, owner, recipient, "Triage protocol")
    _share_with(client, owner, recipient, "Visitor policy")

    listing = client.get("/notifications", headers=recipient.headers).json()
    assert listing["unread_count"] == 2
    assert listing["pagination"]["total"] == 2
    assert {item["related_id"] for item in listing["items"]} >= {first["id"]}
    assert all(item["actor_id"] == owner.id for item in listing["items"])
    assert listing["items"][0]["actor_name"]

    target = listing["items"][0]["id"]
    marked = client.patch(f"/notifications/{target}/read", headers=recipient.headers)
    assert marked.json()["is_read"] is True
    assert client.get("/notifications/unread-count", headers=recipient.headers).json() == {"count": 1}

    unread = client.get("/notifications", headers=recipient.headers, params={"unread_only": True}).json()
    assert len(unread["items"]) == 1

    assert client.patch("/notifications/read-all", headers=recipient.headers).json() == {"updated": 1}
    assert client.get("/notifications/unread-count", headers=recipient.headers).json() == {"count": 0}


@pytest.mark.integration
def test_notifications_are_private_to_recipient(client, make_user):
    owner = make_user()
    recipient = make_user()
    _share_with(client, owner, recipient, "Roster")
    notification_id = client.get("/notifications", headers=recipient.headers).json()["items"][0]["id"]

    assert client.get("/notifications", headers=owner.headers).json()["items"] == []
    response = client.patch(f"/notifications/{notification_id}/read", headers=owner.headers)
    assert response.status_code == 404
