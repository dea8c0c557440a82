from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from ..config import settings

logger = logging.getLogger(__name__)

limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.rate_limit_enabled,
    storage_uri=settings.rate_limit_storage_uri,
)

AUTH_LIMIT_MESSAGE = "Too many login attempts, please try again later."
UPLOAD_LIMIT_MESSAGE = "Upload rate limit exceeded. Please try again later."
SHARE_LIMIT_MESSAGE = "Too many share link requests, please try again later."


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(
        "rate_limited path=%s client=%s limit=%s",
        request.url.path,
        get_remote_address(request),
        exc.limit.limit,
    )
    return JSONResponse(status_code=429, content={"detail": exc.detail})
