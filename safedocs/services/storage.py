from __future__ import annotations

import io
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..config import settings
from ..models.documents import StorageType
from .aws import boto3_client

StreamParts = tuple[Callable[..., Iterator[bytes]], dict, Callable[[], None]]


class StorageError(RuntimeError):
    """Raised when the storage backend cannot complete an operation."""


@dataclass
class StoredFile:
    key: str
    storage_type: StorageType
    size: int


def build_key(prefix: str | uuid.UUID | None, original_name: str) -> str:
    suffix = Path(original_name).suffix.lower() or ".bin"
    return f"{prefix or 'shared'}/{uuid.uuid4()}{suffix}"


def _as_bytes(file_obj: BinaryIO | bytes) -> bytes:
    if isinstance(file_obj, (bytes, bytearray)):
        return bytes(file_obj)
    file_obj.seek(0)
    return file_obj.read()


class StorageService:
    storage_type: StorageType

    def save(self, prefix: str | uuid.UUID | None, file_obj: BinaryIO | bytes, filename: str, content_type: str) -> StoredFile:  # pragma: no cover - interface
        raise NotImplementedError

    def open_stream(self, key: str) -> StreamParts:  # pragma: no cover - interface
        raise NotImplementedError

    def delete(self, key: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def read_bytes(self, key: str) -> bytes:
        iterator, _, closer = self.open_stream(key)
        try:
            return b"".join(iterator())
        finally:
            closer()


class S3StorageService(StorageService):
    """Object storage on MinIO (or any S3-compatible endpoint)."""

    storage_type = StorageType.MINIO

    def __init__(self, bucket: Optional[str] = None) -> None:
        self.bucket = bucket or settings.storage.bucket
        self._client = boto3_client("s3")

    def save(self, prefix, file_obj, filename, content_type) -> StoredFile:
        data = _as_bytes(file_obj)
        key = build_key(prefix, filename)
        try:
            self._client.upload_fileobj(io.BytesIO(data), self.bucket, key, ExtraArgs={"ContentType": content_type})
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to upload to object storage: {exc}") from exc
        return StoredFile(key=key, storage_type=self.storage_type, size=len(data))

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to delete object: {exc}") from exc

    def open_stream(self, key: str) -> StreamParts:
        try:
            obj = self._client.get_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to download object: {exc}") from exc

        body = obj["Body"]
        metadata = {
            "content_type": obj.get("ContentType", "application/octet-stream"),
            "content_length": obj.get("ContentLength"),
        }

        def iterator(chunk_size: int = 1024 * 64):
            for chunk in body.iter_chunks(chunk_size):
                if chunk:
                    yield chunk

        def closer():
            try:
                body.close()
            except Exception:  # pragma: no cover - best effort
                pass

        return iterator, metadata, closer


class LocalStorageService(StorageService):
    storage_type = StorageType.LOCAL

    def __init__(self, root: Optional[str | Path] = None) -> None:
        self.root = Path(root or settings.storage.local_root).resolve()

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise StorageError("Invalid storage key")
        return path

    def save(self, prefix, file_obj, filename, content_type) -> StoredFile:
        data = _as_bytes(file_obj)
        key = build_key(prefix, filename)
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Failed to write file: {exc}") from exc
        return StoredFile(key=key, storage_type=self.storage_type, size=len(data))

    def delete(self, key: str) -> None:
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete file: {exc}") from exc

    def open_stream(self, key: str) -> StreamParts:
        path = self._path_for(key)
        try:
            handle = path.open("rb")
        except OSError as exc:
            raise StorageError(f"File not found on server: {exc}") from exc

        metadata = {"content_type": "application/octet-stream", "content_length": path.stat().st_size}

        def iterator(chunk_size: int = 1024 * 64):
            while True:
                chunk = handle.read(chunk_size)
                if not chunk:
                    break
                yield chunk

        return iterator, metadata, handle.close


def get_storage_service(storage_type: StorageType | str | None = None) -> StorageService:
    backend = StorageType(storage_type) if storage_type else StorageType(settings.storage.backend)
    if backend == StorageType.MINIO:
        return S3StorageService()
    return LocalStorageService()
