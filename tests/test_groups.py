from __future__ import annotations

import io

import pytest


def _group(client, account, name="Night shift nurses"):
    response = client.post("/groups", headers=account.headers, json={"name": name, "description": "Ward C"})
    assert response.status_code == 201
    return response.json()


@pytest.mark.integration
def test_creator_becomes_group_admin(client, make_user):
    creator = make_user()
    group = _group(client, creator)
    assert group["my_role"] == "admin"
    assert group["member_count"] == 1

    mine = client.get("/groups", headers=creator.headers).json()["items"]
    assert [item["id"] for item in mine] == [group["id"]]


@pytest.mark.integration
def test_member_management(client, make_user):
    creator = make_user()
    nurse = make_user()
    group = _group(client, creator)

    added = client.post(f"/groups/{group['id']}/members", headers=creator.headers, json={"user_id": nurse.id})
    assert added.status_code == 201
    assert added.json()["role"] == "member"

    again = client.post(f"/groups/{group['id']}/members", headers=creator.headers, json={"user_id": nurse.id})
    assert again.status_code == 400

    detail = client.get(f"/groups/{group['id']}", headers=nurse.headers).json()
    assert detail["member_count"] == 2
    assert detail["my_role"] == "member"

    forbidden = client.patch(f"/groups/{group['id']}", headers=nurse.headers, json={"name": "Renamed"})
    assert forbidden.status_code == 403

    left = client.delete(f"/groups/{group['id']}/members/{nurse.id}", headers=nurse.headers)
    assert left.json() == {"status": "removed"}
    assert client.get(f"/groups/{group['id']}", headers=nurse.headers).status_code == 403


@pytest.mark.integration
def test_last_admin_is_protected(client, make_user):
    creator = make_user()
    group = _group(client, creator)

    response = client.delete(f"/groups/{group['id']}/members/{creator.id}", headers=creator.headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot remove the last admin from the group"

    response = client.patch(
        f"/groups/{group['id']}/members/{creator.id}/role", headers=creator.headers, json={"role": "member"}
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot demote the last admin"


@pytest.mark.integration
def test_group_grants_follow_membership_and_vanish_with_group(client, make_user):
    owner = make_user()
    nurse = make_user()
    group = _group(client, owner)
    client.post(f"/groups/{group['id']}/members", headers=owner.headers, json={"user_id": nurse.id})
    document = client.post(
        "/documents/upload",
        headers=owner.headers,
        data={"title": "Shift handover"},
        files={"file": ("handover.txt", io.BytesIO(b"bed 4 stable"), "text/plain")},
    ).json()

    shared = client.post(
        f"/shares/documents/{document['id']}",
        headers=owner.headers,
        json={"permission_type": "group", "target_id": group["id"], "access_level": "commenter"},
    )
    assert shared.status_code == 201
    assert shared.json()["target_name"] == "Night shift nurses"
    assert client.get(f"/documents/{document['id']}", headers=nurse.headers).json()["access_level"] == "commenter"

    assert client.delete(f"/groups/{group['id']}", headers=owner.headers).json() == {"status": "deleted"}
    assert client.get(f"/documents/{document['id']}", headers=nurse.headers).status_code == 403
    assert client.get(f"/shares/documents/{document['id']}", headers=owner.headers).json()["items"] == []
