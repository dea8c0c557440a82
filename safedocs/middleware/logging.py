from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..services.audit import client_ip

ACCESS_LOGGER_NAME = "safedocs.access"

# share tokens in public paths are credentials
_REDACTED_PREFIX = "/shares/link/"


def _loggable_path(path: str) -> str:
    if not path.startswith(_REDACTED_PREFIX):
        return path
    remainder = path[len(_REDACTED_PREFIX):]
    _, slash, tail = remainder.partition("/")
    return f"{_REDACTED_PREFIX}<token>{slash}{tail}"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Emit one JSON access line per request, tagged with the caller when known."""

    def __init__(self, app, logger: logging.Logger | None = None) -> None:
        super().__init__(app)
        self.logger = logger if logger is not None else logging.getLogger(ACCESS_LOGGER_NAME)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            payload = self._payload(request, "http_request_error", 500, start)
            self._log(payload, level=logging.ERROR)
            raise

        response.headers.setdefault("x-request-id", request_id)
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        self._log(self._payload(request, "http_request", response.status_code, start), level=level)
        return response

    @staticmethod
    def _payload(request: Request, event: str, status: int, start: float) -> dict[str, object]:
        payload: dict[str, object] = {
            "event": event,
            "request_id": request.state.request_id,
            "method": request.method,
            "path": _loggable_path(request.url.path),
            "status": status,
            "duration_ms": int((time.perf_counter() - start) * 1000),
            "client_ip": client_ip(request),
        }
        for key in ("user_id", "org_id"):
            value = getattr(request.state, key, None)
            if value:
                payload[key] = value
        return payload

    def _log(self, payload: dict[str, object], level: int = logging.INFO) -> None:
        self.logger.log(level, json.dumps(payload, separators=(",", ":")))
