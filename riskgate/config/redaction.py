from __future__ import annotations

import re

_API_KEY_PATTERN = re.compile(r"(sk-[A-Za-z0-9]{8,})", re.IGNORECASE)
_BEARER_PATTERN = re.compile(r"(Authorization:\s*Bearer\s+)[^\s]+", re.IGNORECASE)
_ADMIN_KEY_PATTERN = re.compile(r"((?:x-admin-key|adminKey)\s*[:=]\s*)[^\s&]+", re.IGNORECASE)


def redact_secrets(s: str) -> str:
    if not s:
        return s
    redacted = _API_KEY_PATTERN.sub("[redacted]", s)
    redacted = _BEARER_PATTERN.sub(r"\1[redacted]", redacted)
    return _ADMIN_KEY_PATTERN.sub(r"\1[redacted]", redacted)


def safe_error_detail(exc: Exception) -> str:
    return redact_secrets(str(exc))[:200]


__all__ = ["redact_secrets", "safe_error_detail"]
