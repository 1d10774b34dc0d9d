"""Static admin key check. A placeholder, not real operator authentication."""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import Request

from riskgate.config import Settings, get_settings

logger = logging.getLogger(__name__)

ADMIN_HEADER = "x-admin-key"
ADMIN_QUERY_PARAM = "adminKey"


class AdminAuthError(Exception):
    """Missing or wrong admin key."""


def presented_admin_key(request: Request) -> Optional[str]:
    return request.headers.get(ADMIN_HEADER) or request.query_params.get(ADMIN_QUERY_PARAM)


def require_admin_key(request: Request, settings: Settings | None = None) -> None:
    s = settings or get_settings()
    presented = presented_admin_key(request) or ""
    if not s.admin_key or not hmac.compare_digest(presented.encode("utf-8"), s.admin_key.encode("utf-8")):
        logger.warning("[ADMIN] rejected admin request", extra={"path": request.url.path})
        raise AdminAuthError("Invalid admin key")


__all__ = ["AdminAuthError", "require_admin_key", "presented_admin_key", "ADMIN_HEADER", "ADMIN_QUERY_PARAM"]
