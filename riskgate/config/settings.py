from __future__ import annotations

import functools
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_ADMIN_KEY = "dev-admin-key"


def _split_csv(value: str | None) -> List[str]:
    if not value:
        return []
    return [item.strip().lower() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    # App / env
    app_env: str = Field("dev", alias="APP_ENV")
    debug_errors: int = Field(0, alias="DEBUG_ERRORS")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    api_host: str = Field("0.0.0.0", alias="API_HOST")
    api_port: int = Field(8000, alias="PORT")
    cors_origins: str = Field("", alias="CORS_ORIGINS")

    # Identity
    identity_hash_salt: str = Field("dev-salt", alias="IDENTITY_HASH_SALT")
    identity_key_mode: str = Field("address", alias="IDENTITY_KEY_MODE")
    fingerprint_header: str = Field("x-browser-fingerprint", alias="FINGERPRINT_HEADER")
    trust_forwarded_for: bool = Field(True, alias="TRUST_FORWARDED_FOR")
    trust_country_header: bool = Field(False, alias="TRUST_COUNTRY_HEADER")
    anon_session_ttl_days: int = Field(30, alias="ANON_SESSION_TTL_DAYS")
    auth_cookie_secure: bool = Field(False, alias="AUTH_COOKIE_SECURE")

    # Risk scoring
    risk_allow_threshold: int = Field(50, alias="RISK_ALLOW_THRESHOLD")
    risk_block_threshold: int = Field(75, alias="RISK_BLOCK_THRESHOLD")
    detection_error_penalty: int = Field(40, alias="DETECTION_ERROR_PENALTY")
    reverse_dns_timeout_seconds: float = Field(2.0, alias="REVERSE_DNS_TIMEOUT_SECONDS")
    vpn_provider_fragments: str = Field("nordvpn,expressvpn,surfshark,protonvpn", alias="VPN_PROVIDER_FRAGMENTS")
    datacenter_provider_fragments: str = Field(
        "amazonaws,googlecloud,googleusercontent,azure,digitalocean", alias="DATACENTER_PROVIDER_FRAGMENTS"
    )
    hosting_provider_fragments: str = Field("vultr,linode,ovh,hetzner", alias="HOSTING_PROVIDER_FRAGMENTS")
    vpn_ip_prefixes: str = Field("185.220.,104.244.,192.42.,198.98.", alias="VPN_IP_PREFIXES")
    velocity_limit: int = Field(20, alias="VELOCITY_LIMIT")
    velocity_window_seconds: int = Field(60, alias="VELOCITY_WINDOW_SECONDS")

    # Ledger
    ledger_backend: str = Field("memory", alias="LEDGER_BACKEND")
    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")
    ledger_retention_days: int = Field(30, alias="LEDGER_RETENTION_DAYS")
    ledger_max_records: int = Field(10_000, alias="LEDGER_MAX_RECORDS")
    ledger_fail_open: bool = Field(False, alias="LEDGER_FAIL_OPEN")

    # Admin
    admin_key: str = Field(_DEFAULT_ADMIN_KEY, alias="ADMIN_KEY")

    # Content generator
    content_provider: str = Field("none", alias="CONTENT_PROVIDER")
    content_api_key: Optional[str] = Field(None, alias="CONTENT_API_KEY")
    content_base_url: str = Field("https://api.openai.com/v1/chat/completions", alias="CONTENT_BASE_URL")
    content_model: str = Field("gpt-4o-mini", alias="CONTENT_MODEL")
    content_timeout_seconds: float = Field(30.0, alias="CONTENT_TIMEOUT_SECONDS")
    content_connect_timeout_seconds: float = Field(10.0, alias="CONTENT_CONNECT_TIMEOUT_SECONDS")

    @field_validator("app_env", "ledger_backend", "identity_key_mode", "content_provider")
    @classmethod
    def normalize_lower(cls, v: str) -> str:
        return (v or "").strip().lower()

    @field_validator(
        "debug_errors",
        "detection_error_penalty",
        "velocity_limit",
        "velocity_window_seconds",
        "ledger_retention_days",
        "ledger_max_records",
        "anon_session_ttl_days",
    )
    @classmethod
    def clamp_non_negative(cls, v: int) -> int:
        return max(0, v)

    @model_validator(mode="after")
    def check_thresholds(self) -> "Settings":
        if not 0 < self.risk_allow_threshold <= self.risk_block_threshold <= 100:
            raise ValueError("risk thresholds must satisfy 0 < allow <= block <= 100")
        if self.identity_key_mode not in {"address", "composite"}:
            raise ValueError("IDENTITY_KEY_MODE must be 'address' or 'composite'")
        if self.ledger_backend not in {"memory", "redis"}:
            raise ValueError("LEDGER_BACKEND must be 'memory' or 'redis'")
        return self

    def cors_origins_list(self) -> List[str]:
        text = (self.cors_origins or "").strip()
        if text == "*":
            return ["*"]
        return [item.strip() for item in text.split(",") if item.strip()]

    @property
    def vpn_providers(self) -> List[str]:
        return _split_csv(self.vpn_provider_fragments)

    @property
    def datacenter_providers(self) -> List[str]:
        return _split_csv(self.datacenter_provider_fragments)

    @property
    def hosting_providers(self) -> List[str]:
        return _split_csv(self.hosting_provider_fragments)

    @property
    def vpn_prefixes(self) -> List[str]:
        return _split_csv(self.vpn_ip_prefixes)

    @property
    def ledger_retention_seconds(self) -> int:
        return self.ledger_retention_days * 24 * 60 * 60


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def validate_for_env(settings: Settings) -> Dict[str, Any]:
    issues: list[str] = []
    if settings.app_env == "prod":
        if settings.debug_errors != 0:
            issues.append("DEBUG_ERRORS must be 0 in prod")
        if settings.admin_key == _DEFAULT_ADMIN_KEY:
            issues.append("ADMIN_KEY must be changed in prod")
        if settings.identity_hash_salt == "dev-salt":
            issues.append("IDENTITY_HASH_SALT must be changed in prod")
        if settings.ledger_backend == "memory":
            issues.append("LEDGER_BACKEND=memory loses abuse history on restart")
        if settings.content_provider != "none" and not settings.content_api_key:
            issues.append("CONTENT_API_KEY required when CONTENT_PROVIDER is set")
    summary = settings_public_summary(settings)
    summary["issues"] = issues
    return summary


def settings_public_summary(settings: Optional[Settings] = None) -> Dict[str, Any]:
    s = settings or get_settings()
    return {
        "env": s.app_env,
        "ledger_backend": s.ledger_backend,
        "identity_key_mode": s.identity_key_mode,
        "thresholds": {"allow": s.risk_allow_threshold, "block": s.risk_block_threshold},
        "reverse_dns_timeout_seconds": s.reverse_dns_timeout_seconds,
        "content_provider": s.content_provider,
        "ledger_fail_open": s.ledger_fail_open,
    }


__all__ = ["Settings", "get_settings", "settings_public_summary", "validate_for_env"]
