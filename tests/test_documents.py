from __future__ import annotations

import io

import pytest
from PIL import Image

from safedocs.db.session import SessionLocal
from safedocs.models import Document, DocumentVersion, UserRole


def _upload(client, account, name="policy.txt", body=b"hand hygiene policy", **form):
    return client.post(
        "/documents/upload",
        headers=account.headers,
        data={"title": form.pop("title", "Hand hygiene policy"), **form},
        files={"file": (name, io.BytesIO(body), "text/plain")},
    )


def _png(color: str) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (40, 60), color).save(buffer, format="PNG")
    return buffer.getvalue()


def _text_pdf(text: str) -> bytes:
    stream = b"BT /F1 12 Tf 72 720 Td (" + text.encode("latin-1") + b") Tj ET"
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R"
        b" /Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref_at = len(out)
    out += b"xref\n0 %d\n0000000000 65535 f \n" % (len(objects) + 1)
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_at)
    return bytes(out)


@pytest.mark.integration
def test_upload_creates_document_and_first_version(client, make_user):
    owner = make_user()
    response = _upload(client, owner)
    assert response.status_code == 201
    document = response.json()
    assert document["title"] == "Hand hygiene policy"
    assert document["access_level"] == "owner"
    assert document["current_version"] == 1
    assert document["storage_type"] == "local"

    with SessionLocal() as session:
        versions = session.query(DocumentVersion).all()
        assert [v.version_number for v in versions] == [1]

    download = client.get(f"/documents/{document['id']}/download", headers=owner.headers)
    assert download.status_code == 200
    assert download.content == b"hand hygiene policy"
    assert "attachment" in download.headers["content-disposition"]


@pytest.mark.integration
def test_upload_rejects_empty_file(client, make_user):
    owner = make_user()
    response = _upload(client, owner, body=b"")
    assert response.status_code == 400
    assert response.json()["detail"] == "Empty file"


@pytest.mark.integration
def test_other_users_cannot_view_private_documents(client, make_user):
    owner = make_user()
    stranger = make_user()
    document = _upload(client, owner).json()

    response = client.get(f"/documents/{document['id']}", headers=stranger.headers)
    assert response.status_code == 403
    assert response.json()["detail"] == "You do not have access to this document"
    assert client.get("/documents", headers=stranger.headers).json()["pagination"]["total"] == 0

    manager = make_user(UserRole.MANAGER)
    assert client.get(f"/documents/{document['id']}", headers=manager.headers).json()["access_level"] == "owner"


@pytest.mark.integration
def test_list_supports_search_and_pagination(client, make_user):
    owner = make_user()
    for title in ("Vaccination schedule", "Staff rota", "Vaccination consent"):
        _upload(client, owner, title=title)

    page = client.get("/documents", headers=owner.headers, params={"limit": 2}).json()
    assert page["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
    assert len(page["items"]) == 2

    found = client.get("/documents", headers=owner.headers, params={"search": "vaccination"}).json()
    assert sorted(item["title"] for item in found["items"]) == ["Vaccination consent", "Vaccination schedule"]


@pytest.mark.integration
def test_search_matches_pdf_body_text(client, make_user):
    owner = make_user()
    _upload(client, owner, title="Staff rota")
    response = client.post(
        "/documents/upload",
        headers=owner.headers,
        data={"title": "Ward circular"},
        files={"file": ("circular.pdf", io.BytesIO(_text_pdf("Cholera outbreak response plan")), "application/pdf")},
    )
    assert response.status_code == 201

    found = client.get("/documents", headers=owner.headers, params={"search": "cholera"}).json()
    assert [item["title"] for item in found["items"]] == ["Ward circular"]


@pytest.mark.integration
def test_non_latin_file_names_survive_upload_and_download(client, make_user):
    owner = make_user()
    document = _upload(client, owner, name="Amasezerano_y_akazi_é.txt").json()
    assert document["file_name"] == "Amasezerano_y_akazi_é.txt"

    download = client.get(f"/documents/{document['id']}/download", headers=owner.headers)
    disposition = download.headers["content-disposition"]
    assert 'filename="Amasezerano_y_akazi_.txt"' in disposition
    assert "filename*=UTF-8''Amasezerano_y_akazi_%C3%A9.txt" in disposition


@pytest.mark.integration
def test_update_requires_editor_and_delete_requires_owner(client, make_user):
    owner = make_user()
    viewer = make_user()
    document = _upload(client, owner).json()
    grant = client.post(
        f"/shares/documents/{document['id']}",
        headers=owner.headers,
        json={"permission_type": "user", "target_id": viewer.id, "access_level": "viewer"},
    )
    assert grant.status_code == 201

    response = client.patch(f"/documents/{document['id']}", headers=viewer.headers, json={"title": "Hijacked"})
    assert response.status_code == 403

    response = client.patch(f"/documents/{document['id']}", headers=owner.headers, json={"title": "Renamed"})
    assert response.json()["title"] == "Renamed"

    assert client.delete(f"/documents/{document['id']}", headers=viewer.headers).status_code == 403
    assert client.delete(f"/documents/{document['id']}", headers=owner.headers).json()["status"] == "deleted"
    assert client.get(f"/documents/{document['id']}", headers=owner.headers).status_code == 404

    with SessionLocal() as session:
        assert session.query(Document).one().is_deleted is True


@pytest.mark.integration
def test_new_versions_increment_and_remain_downloadable(client, make_user):
    owner = make_user()
    document = _upload(client, owner, body=b"version one").json()

    response = client.post(
        f"/documents/{document['id']}/versions",
        headers=owner.headers,
        data={"change_note": "typo fixes"},
        files={"file": ("policy.txt", io.BytesIO(b"version two"), "text/plain")},
    )
    assert response.status_code == 201
    assert response.json()["version_number"] == 2

    versions = client.get(f"/documents/{document['id']}/versions", headers=owner.headers).json()["items"]
    assert [v["version_number"] for v in versions] == [2, 1]

    first = client.get(f"/documents/{document['id']}/versions/1/download", headers=owner.headers)
    assert first.content == b"version one"
    latest = client.get(f"/documents/{document['id']}/download", headers=owner.headers)
    assert latest.content == b"version two"
    assert client.get(f"/documents/{document['id']}/versions/9/download", headers=owner.headers).status_code == 404


@pytest.mark.integration
def test_tags_attach_to_documents(client, make_user):
    owner = make_user()
    tag = client.post("/tags", headers=owner.headers, json={"name": "Clinical", "color": "#1E90FF"})
    assert tag.status_code == 201
    tag_id = tag.json()["id"]

    assert client.post("/tags", headers=owner.headers, json={"name": "Clinical"}).status_code == 409
    assert client.post("/tags", headers=owner.headers, json={"name": "Bad", "color": "blue"}).status_code == 422

    document = _upload(client, owner, tag_ids=tag_id).json()
    assert [t["name"] for t in document["tags"]] == ["Clinical"]

    filtered = client.get("/documents", headers=owner.headers, params={"tag_id": tag_id}).json()
    assert [item["id"] for item in filtered["items"]] == [document["id"]]


@pytest.mark.integration
def test_compose_images_into_pdf(client, make_user):
    owner = make_user()
    response = client.post(
        "/documents/compose",
        headers=owner.headers,
        data={"title": "Scanned referral"},
        files=[
            ("files", ("page1.png", io.BytesIO(_png("white")), "image/png")),
            ("files", ("page2.png", io.BytesIO(_png("gray")), "image/png")),
        ],
    )
    assert response.status_code == 201
    document = response.json()
    assert document["mime_type"] == "application/pdf"
    assert document["metadata"] == {"composed_pages": 2}

    download = client.get(f"/documents/{document['id']}/download", headers=owner.headers)
    assert download.content.startswith(b"%PDF")


@pytest.mark.integration
def test_compose_rejects_non_images(client, make_user):
    owner = make_user()
    response = client.post(
        "/documents/compose",
        headers=owner.headers,
        data={"title": "Broken"},
        files=[("files", ("notes.txt", io.BytesIO(b"not an image"), "text/plain"))],
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Page 1 is not a readable image"
