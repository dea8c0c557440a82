from __future__ import annotations

import io

import pytest
from PIL import Image

from safedocs.db.session import SessionLocal
from safedocs.models import MediaItem, UserRole


def _png(width=32, height=24) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), "green").save(buffer, format="PNG")
    return buffer.getvalue()


def _upload(client, account, name="poster.png", body=None, content_type="image/png", **form):
    return client.post(
        "/media",
        headers=account.headers,
        data=form,
        files={"file": (name, io.BytesIO(body if body is not None else _png()), content_type)},
    )


@pytest.mark.integration
def test_image_upload_records_dimensions_and_tags(client, make_user):
    manager = make_user(UserRole.MANAGER)
    response = _upload(client, manager, title="Handwashing poster", category="campaigns", tags="hygiene, posters")
    assert response.status_code == 201
    item = response.json()
    assert item["media_type"] == "image"
    assert (item["width"], item["height"]) == (32, 24)
    assert item["tags"] == ["hygiene", "posters"]
    assert item["uploader"]["username"] == manager.username

    streamed = client.get(f"/media/{item['id']}/stream", headers=manager.headers)
    assert streamed.status_code == 200
    assert streamed.headers["content-disposition"].startswith("inline")
    assert streamed.content == _png()

    downloaded = client.get(f"/media/{item['id']}/download", headers=manager.headers)
    assert downloaded.headers["content-disposition"].startswith("attachment")


@pytest.mark.integration
def test_non_media_files_are_rejected(client, make_user):
    manager = make_user(UserRole.MANAGER)
    response = _upload(client, manager, name="notes.txt", body=b"plain text", content_type="text/plain")
    assert response.status_code == 415
    assert response.json()["detail"] == "Only image, video or audio files are accepted"


@pytest.mark.integration
def test_media_library_requires_manager(client, make_user):
    staff = make_user()
    assert client.get("/media", headers=staff.headers).status_code == 403
    assert _upload(client, staff).status_code == 403


@pytest.mark.integration
def test_list_filters_stats_and_update(client, make_user):
    manager = make_user(UserRole.MANAGER)
    image = _upload(client, manager, title="Clinic entrance", category="facility").json()
    _upload(
        client,
        manager,
        name="jingle.mp3",
        body=b"ID3\x03\x00fake-audio",
        content_type="audio/mpeg",
        title="Radio jingle",
        tags='["radio"]',
    )

    audio = client.get("/media", headers=manager.headers, params={"media_type": "audio"}).json()["items"]
    assert [item["title"] for item in audio] == ["Radio jingle"]
    assert audio[0]["width"] is None

    searched = client.get("/media", headers=manager.headers, params={"q": "entrance"}).json()["items"]
    assert [item["id"] for item in searched] == [image["id"]]

    stats = client.get("/media/stats", headers=manager.headers).json()
    assert stats["total"] == 2
    assert stats["images"] == 1
    assert stats["audio"] == 1
    assert stats["videos"] == 0
    assert stats["total_storage_bytes"] > 0

    updated = client.put(
        f"/media/{image['id']}", headers=manager.headers, json={"title": "Main entrance", "tags": ["facility"]}
    )
    assert updated.json()["title"] == "Main entrance"
    assert updated.json()["tags"] == ["facility"]


@pytest.mark.integration
def test_delete_is_admin_only_and_soft(client, make_user, admin):
    manager = make_user(UserRole.MANAGER)
    item = _upload(client, manager).json()

    assert client.delete(f"/media/{item['id']}", headers=manager.headers).status_code == 403
    assert client.delete(f"/media/{item['id']}", headers=admin.headers).json() == {"status": "deleted"}

    missing = client.get(f"/media/{item['id']}", headers=manager.headers)
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Media item not found"

    with SessionLocal() as session:
        assert session.query(MediaItem).one().is_deleted is True
