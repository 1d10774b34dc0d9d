from .store import InMemoryRecordStore, LedgerUnavailableError, RecordStore, utcnow
from .redis_store import RedisRecordStore, create_redis_client
from .abuse import (
    AbuseLedger,
    AbuseRecord,
    InMemoryAbuseLedger,
    RedisAbuseLedger,
    build_abuse_ledger,
)

__all__ = [
    "AbuseLedger",
    "AbuseRecord",
    "InMemoryAbuseLedger",
    "InMemoryRecordStore",
    "LedgerUnavailableError",
    "RecordStore",
    "RedisAbuseLedger",
    "RedisRecordStore",
    "build_abuse_ledger",
    "create_redis_client",
    "utcnow",
]
