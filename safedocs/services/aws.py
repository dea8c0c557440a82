from __future__ import annotations

from typing import Any

import boto3
from botocore.config import Config

from ..config import settings


def boto3_client(service: str) -> Any:
    kwargs: dict[str, Any] = {"region_name": settings.storage.region, "config": Config(retries={"max_attempts": 3})}
    if settings.storage.access_key_id and settings.storage.secret_access_key:
        kwargs["aws_access_key_id"] = settings.storage.access_key_id
        kwargs["aws_secret_access_key"] = settings.storage.secret_access_key
    if settings.storage.endpoint_url and service == "s3":
        # MinIO speaks the S3 API; only the endpoint differs
        kwargs["endpoint_url"] = settings.storage.endpoint_url
    return boto3.client(service, **kwargs)
