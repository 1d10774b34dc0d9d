"""
Request ID middleware.

Every response carries an X-Request-ID header. One log line is written per
request with method, path, status, duration_ms and request_id; bodies and
client addresses are never logged.
"""

import logging
import re
import time
import uuid
from typing import Optional

logger = logging.getLogger(__name__)

# Incoming ids are reused only when hex/uuid-ish and at most 64 chars
_SAFE_REQUEST_ID_PATTERN = re.compile(r"^[a-fA-F0-9\-]{1,64}$")
_HEADER = b"x-request-id"


class RequestIdMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.monotonic()
        request_id = self._request_id_from(scope)
        scope.setdefault("state", {})
        scope["state"]["request_id"] = request_id

        status_code: Optional[int] = None

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
                headers = [h for h in message.get("headers", []) if h[0].lower() != _HEADER]
                headers.append((_HEADER, request_id.encode("utf-8")))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            logger.info(
                "[HTTP] request",
                extra={
                    "method": scope.get("method", "?"),
                    "path": scope.get("path", "?"),
                    "status": status_code,
                    "duration_ms": int((time.monotonic() - start_time) * 1000),
                    "request_id": request_id,
                },
            )

    @staticmethod
    def _request_id_from(scope) -> str:
        for name, value in scope.get("headers", []):
            if name.lower() == _HEADER:
                existing = value.decode("utf-8", errors="replace").strip()
                if existing and _SAFE_REQUEST_ID_PATTERN.match(existing):
                    return existing
        return str(uuid.uuid4())


__all__ = ["RequestIdMiddleware"]
