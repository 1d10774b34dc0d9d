from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass
from typing import Mapping, Optional

from riskgate.config import Settings, get_settings
from riskgate.utils.request_helpers import get_client_ip

HASH_ALGO = "sha256"
ANON_COOKIE_NAME = "anon_id"
SERVER_FINGERPRINT_LEN = 32

# Headers folded into the server-side fingerprint, in order.
_FINGERPRINT_HEADERS = ("accept-language", "accept-encoding", "accept", "dnt")


@dataclass(frozen=True)
class Identity:
    address: str
    user_agent: str
    fingerprint: str
    server_fingerprint: str
    key: str
    ip_hash: str
    country_hint: Optional[str] = None

    @property
    def has_fingerprint(self) -> bool:
        return bool(self.fingerprint)


def _hash_value(value: str, salt: str) -> str:
    hasher = hashlib.new(HASH_ALGO)
    hasher.update(salt.encode("utf-8"))
    hasher.update(value.encode("utf-8"))
    return hasher.hexdigest()


def hash_ip(address: str | None, salt: str) -> str:
    return _hash_value(address or "unknown-ip", salt)


def server_fingerprint(address: str, user_agent: str, headers: Mapping[str, str] | None = None) -> str:
    """Header-derived fingerprint; stable for one browser, not a secret."""
    headers = headers or {}
    components = [address or "unknown", user_agent or "unknown"]
    components.extend(headers.get(name) or "unknown" for name in _FINGERPRINT_HEADERS)
    digest = hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()
    return digest[:SERVER_FINGERPRINT_LEN]


def resolve_identity(
    address: str | None,
    user_agent: str | None = "",
    fingerprint: str | None = "",
    *,
    headers: Mapping[str, str] | None = None,
    country_hint: str | None = None,
    mode: str | None = None,
    settings: Settings | None = None,
) -> Identity:
    s = settings or get_settings()
    mode = (mode or s.identity_key_mode).lower()
    address = (address or "").strip() or "unknown"
    user_agent = user_agent or ""
    fingerprint = (fingerprint or "").strip()
    server_fp = server_fingerprint(address, user_agent, headers)

    if mode == "composite":
        key = _hash_value(f"{address}|{fingerprint or server_fp}", s.identity_hash_salt)[:40]
    else:
        key = address

    country = (country_hint or "").strip().upper() or None
    return Identity(
        address=address,
        user_agent=user_agent,
        fingerprint=fingerprint,
        server_fingerprint=server_fp,
        key=key,
        ip_hash=hash_ip(address, s.identity_hash_salt)[:16],
        country_hint=country if country and len(country) == 2 else None,
    )


def identity_from_request(request, settings: Settings | None = None) -> Identity:
    s = settings or get_settings()
    headers = {name: request.headers.get(name, "") for name in _FINGERPRINT_HEADERS}
    country = request.headers.get("cf-ipcountry") if s.trust_country_header else None
    return resolve_identity(
        get_client_ip(request, trust_forwarded_for=s.trust_forwarded_for),
        request.headers.get("user-agent", ""),
        request.headers.get(s.fingerprint_header, ""),
        headers=headers,
        country_hint=country,
        settings=s,
    )


def read_account_cookie(request) -> Optional[str]:
    existing = request.cookies.get(ANON_COOKIE_NAME)
    if not existing:
        return None
    try:
        return str(uuid.UUID(existing))
    except ValueError:
        return None


def new_account_id() -> str:
    return str(uuid.uuid4())


def set_account_cookie(response, account_id: str, settings: Settings | None = None) -> None:
    s = settings or get_settings()
    response.set_cookie(
        key=ANON_COOKIE_NAME,
        value=account_id,
        max_age=s.anon_session_ttl_days * 24 * 60 * 60,
        httponly=True,
        secure=s.auth_cookie_secure,
        samesite="lax",
        path="/",
    )


__all__ = [
    "ANON_COOKIE_NAME",
    "Identity",
    "hash_ip",
    "server_fingerprint",
    "resolve_identity",
    "identity_from_request",
    "read_account_cookie",
    "new_account_id",
    "set_account_cookie",
]
