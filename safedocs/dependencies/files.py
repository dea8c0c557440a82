from __future__ import annotations

import logging
import mimetypes
import os
import re
import unicodedata
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

from fastapi import BackgroundTasks, HTTPException, UploadFile
from fastapi.responses import StreamingResponse

from ..config import settings
from ..services.storage import StorageError, get_storage_service

logger = logging.getLogger(__name__)

_CHUNK_BYTES = 1024 * 1024


def sanitize_filename(filename: str | None, default: str = "document") -> str:
    name = os.path.basename(filename or default)
    name = unicodedata.normalize("NFC", name)
    name = re.sub(r"[^\w.-]", "_", name)
    return name[:200] or default


def guess_mime_type(upload: UploadFile) -> str:
    if upload.content_type and upload.content_type != "application/octet-stream":
        return upload.content_type
    guessed, _ = mimetypes.guess_type(upload.filename or "")
    return guessed or "application/octet-stream"


def read_upload(upload: UploadFile, max_bytes: Optional[int] = None) -> bytes:
    """Read an upload in chunks, rejecting empty or oversized files."""
    if not upload.filename:
        raise HTTPException(status_code=400, detail="Filename required")

    limit = max_bytes or settings.max_upload_bytes
    chunks: list[bytes] = []
    total = 0
    try:
        while True:
            chunk = upload.file.read(_CHUNK_BYTES)
            if not chunk:
                break
            total += len(chunk)
            if total > limit:
                raise HTTPException(status_code=413, detail=f"File exceeds {limit // (1024 * 1024)} MB limit")
            chunks.append(chunk)
    finally:
        upload.file.close()

    if total == 0:
        raise HTTPException(status_code=400, detail="Empty file")
    return b"".join(chunks)


def parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid datetime format") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def content_disposition(disposition: str, filename: str) -> str:
    """ASCII fallback plus an RFC 5987 ``filename*`` for non-Latin names."""
    name = sanitize_filename(filename)
    fallback = name.encode("ascii", "ignore").decode("ascii")
    fallback = re.sub(r"[^A-Za-z0-9._-]", "_", fallback).strip("._") or "download"
    header = f'{disposition}; filename="{fallback}"'
    if fallback != name:
        header += f"; filename*=UTF-8''{quote(name, safe='')}"
    return header


def stream_stored_file(
    storage_type,
    key: str,
    filename: str,
    mime_type: str | None,
    inline: bool = False,
) -> StreamingResponse:
    storage = get_storage_service(storage_type)
    try:
        iterator, metadata, closer = storage.open_stream(key)
    except StorageError as exc:
        logger.warning("file_stream_failed key=%s", key, exc_info=True)
        raise HTTPException(status_code=404, detail="File not found on server") from exc

    disposition = "inline" if inline else "attachment"
    headers = {"Content-Disposition": content_disposition(disposition, filename)}
    if metadata.get("content_length") is not None:
        headers["Content-Length"] = str(metadata["content_length"])

    background = BackgroundTasks()
    background.add_task(closer)
    return StreamingResponse(
        iterator(),
        media_type=mime_type or metadata.get("content_type") or "application/octet-stream",
        headers=headers,
        background=background,
    )
