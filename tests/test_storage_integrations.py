from __future__ import annotations

import io

import boto3
import pytest

from safedocs.config import settings
from safedocs.db.session import SessionLocal
from safedocs.models import Document, StorageType
from safedocs.services.storage import LocalStorageService, S3StorageService, StorageError


@pytest.fixture()
def mock_s3_bucket():
    from moto import mock_aws

    with mock_aws():
        s3 = boto3.client("s3", region_name=settings.storage.region)
        bucket = "test-storage-bucket"
        s3.create_bucket(Bucket=bucket)
        previous_bucket = settings.storage.bucket
        previous_backend = settings.storage.backend
        settings.storage.bucket = bucket
        settings.storage.backend = "minio"
        try:
            yield s3
        finally:
            settings.storage.bucket = previous_bucket
            settings.storage.backend = previous_backend


def test_s3_storage_round_trip(mock_s3_bucket):
    storage = S3StorageService()
    stored = storage.save("org-1", b"%PDF-1.7\n...", filename="Licence.PDF", content_type="application/pdf")
    assert stored.storage_type == StorageType.MINIO
    assert stored.key.startswith("org-1/")
    assert stored.key.endswith(".pdf")

    head = mock_s3_bucket.head_object(Bucket=settings.storage.bucket, Key=stored.key)
    assert head["ContentType"] == "application/pdf"
    assert storage.read_bytes(stored.key) == b"%PDF-1.7\n..."

    storage.delete(stored.key)
    with pytest.raises(StorageError):
        storage.open_stream(stored.key)


def test_local_storage_rejects_keys_outside_root(tmp_path):
    storage = LocalStorageService(root=tmp_path)
    stored = storage.save(None, io.BytesIO(b"hello"), filename="note", content_type="text/plain")
    assert stored.key.startswith("shared/")
    assert stored.key.endswith(".bin")
    assert storage.read_bytes(stored.key) == b"hello"

    with pytest.raises(StorageError):
        storage.open_stream("../../etc/passwd")
    with pytest.raises(StorageError):
        storage.open_stream("shared/missing.bin")


@pytest.mark.integration
def test_document_upload_saves_to_object_storage(client, make_user, mock_s3_bucket):
    owner = make_user()
    response = client.post(
        "/documents/upload",
        headers=owner.headers,
        data={"title": "Operating licence"},
        files={"file": ("licence.pdf", io.BytesIO(b"%PDF-1.7\n..."), "application/pdf")},
    )
    assert response.status_code == 201
    document = response.json()
    assert document["storage_type"] == "minio"

    with SessionLocal() as session:
        stored = session.query(Document).one()
        key = stored.file_path
    head = mock_s3_bucket.head_object(Bucket=settings.storage.bucket, Key=key)
    assert head["ResponseMetadata"]["HTTPStatusCode"] == 200

    download = client.get(f"/documents/{document['id']}/download", headers=owner.headers)
    assert download.content == b"%PDF-1.7\n..."
