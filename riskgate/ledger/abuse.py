from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Optional

import redis
from pydantic import BaseModel, Field

from riskgate.config import Settings
from riskgate.ledger.redis_store import RedisRecordStore, create_redis_client
from riskgate.ledger.store import InMemoryRecordStore, RecordStore, utcnow

ABUSE_KEY_PREFIX = "abuse"


class AbuseRecord(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    key: str
    address: str
    fingerprint: str = ""
    user_agent: str = ""
    free_usage_count: int = Field(0, ge=0)
    accounts_created: int = Field(0, ge=0)
    request_count: int = Field(0, ge=0)
    window_started_at: datetime = Field(default_factory=utcnow)
    window_request_count: int = Field(0, ge=0)
    is_banned: bool = False
    is_vpn: bool = False
    is_proxy: bool = False
    is_datacenter: bool = False
    is_flagged: bool = False
    country_code: Optional[str] = None
    risk_score: int = Field(0, ge=0, le=100)
    detection_degraded: bool = False
    admin_note: Optional[str] = None
    last_activity: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)

    def touched(self, now: datetime, window_seconds: int) -> "AbuseRecord":
        """Count one more request and refresh last_activity (strictly increasing)."""
        last_activity = now if now > self.last_activity else self.last_activity + timedelta(microseconds=1)
        if window_seconds and (now - self.window_started_at).total_seconds() >= window_seconds:
            window_started_at, window_count = now, 1
        else:
            window_started_at, window_count = self.window_started_at, self.window_request_count + 1
        return self.model_copy(
            update={
                "request_count": self.request_count + 1,
                "window_started_at": window_started_at,
                "window_request_count": window_count,
                "last_activity": last_activity,
            }
        )


AbuseLedger = RecordStore[AbuseRecord]


class _AbuseRetention:
    """Banned records are kept forever; everything else ages out by last_activity."""

    def last_seen(self, record: AbuseRecord) -> Optional[datetime]:
        return record.last_activity

    def is_evictable(self, record: AbuseRecord) -> bool:
        return not record.is_banned


class InMemoryAbuseLedger(_AbuseRetention, InMemoryRecordStore[AbuseRecord]):
    key_field = "key"


class RedisAbuseLedger(_AbuseRetention, RedisRecordStore[AbuseRecord]):
    key_field = "key"

    def __init__(self, client: redis.Redis, ttl_seconds: Optional[int] = None) -> None:
        super().__init__(client, AbuseRecord, ABUSE_KEY_PREFIX, ttl_seconds=ttl_seconds)


def build_abuse_ledger(settings: Settings, client: Optional[redis.Redis] = None) -> AbuseLedger:
    if settings.ledger_backend == "redis":
        return RedisAbuseLedger(
            client or create_redis_client(settings.redis_url),
            ttl_seconds=settings.ledger_retention_seconds,
        )
    return InMemoryAbuseLedger(
        max_records=settings.ledger_max_records,
        retention_seconds=settings.ledger_retention_seconds,
    )


__all__ = [
    "AbuseRecord",
    "AbuseLedger",
    "InMemoryAbuseLedger",
    "RedisAbuseLedger",
    "build_abuse_ledger",
]
