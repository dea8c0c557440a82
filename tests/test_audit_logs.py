from __future__ import annotations

import io

import pytest

from safedocs.models import UserRole


def _upload(client, account, title):
    return client.post(
        "/documents/upload",
        headers=account.headers,
        data={"title": title},
        files={"file": ("file.txt", io.BytesIO(b"content"), "text/plain")},
    ).json()


@pytest.mark.integration
def test_regular_users_only_see_their_own_entries(client, make_user):
    first = make_user()
    second = make_user()
    _upload(client, first, "First upload")
    _upload(client, second, "Second upload")

    entries = client.get("/audit-logs", headers=first.headers).json()["items"]
    assert entries
    assert {entry["user_id"] for entry in entries} == {first.id}

    # a user_id filter cannot widen the view
    filtered = client.get("/audit-logs", headers=first.headers, params={"user_id": second.id}).json()["items"]
    assert {entry["user_id"] for entry in filtered} == {first.id}


@pytest.mark.integration
def test_managers_see_everything_and_can_filter(client, make_user):
    first = make_user()
    second = make_user()
    manager = make_user(UserRole.MANAGER)
    document = _upload(client, first, "Board minutes")
    _upload(client, second, "Budget")

    everything = client.get("/audit-logs", headers=manager.headers).json()
    assert everything["pagination"]["total"] >= 2

    by_user = client.get("/audit-logs", headers=manager.headers, params={"user_id": second.id}).json()["items"]
    assert {entry["user_id"] for entry in by_user} == {second.id}

    by_document = client.get("/audit-logs", headers=manager.headers, params={"document_id": document["id"]}).json()
    assert [entry["document_title"] for entry in by_document["items"]] == ["Board minutes"]

    by_action = client.get("/audit-logs", headers=manager.headers, params={"action": "uploaded"}).json()["items"]
    assert {entry["action"] for entry in by_action} == {"DOCUMENT_UPLOADED"}


@pytest.mark.integration
def test_date_filters_are_validated(client, make_user):
    account = make_user()
    response = client.get("/audit-logs", headers=account.headers, params={"start_date": "yesterday"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid date format"

    future = client.get("/audit-logs", headers=account.headers, params={"start_date": "2999-01-01"}).json()
    assert future["items"] == []
