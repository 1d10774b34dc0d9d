"""
Keyed record stores.

A store holds one pydantic record per key and offers atomic per-key
read-modify-write through `mutate`. Backends: in-process (a dict behind a
lock) and Redis (see redis_store). Backend failures surface as
LedgerUnavailableError so callers can tell "store down" from "no record".
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Generic, List, Optional, Tuple, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class LedgerUnavailableError(Exception):
    """Raised when the backing store cannot be read or written."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordStore(ABC, Generic[ModelT]):
    key_field: str = "key"

    def key_of(self, record: ModelT) -> str:
        return str(getattr(record, self.key_field))

    @abstractmethod
    def get(self, key: str) -> Optional[ModelT]:
        ...

    @abstractmethod
    def create_if_absent(self, record: ModelT) -> Tuple[ModelT, bool]:
        """Store `record` unless its key exists. Returns (stored_record, created)."""

    @abstractmethod
    def mutate(self, key: str, fn: Callable[[ModelT], ModelT]) -> Optional[ModelT]:
        """Atomically replace the record at `key` with fn(record). None when absent."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    def list_records(self) -> List[ModelT]:
        ...

    def create(self, record: ModelT) -> ModelT:
        stored, _ = self.create_if_absent(record)
        return stored

    def update(self, key: str, **fields: Any) -> Optional[ModelT]:
        return self.mutate(key, lambda record: record.model_copy(update=fields))

    def count(self) -> int:
        return len(self.list_records())

    def prune(self, now: Optional[datetime] = None) -> int:
        """Drop records past retention. Backends with native expiry return 0."""
        return 0

    # Retention hooks, overridden per record type.
    def last_seen(self, record: ModelT) -> Optional[datetime]:
        return None

    def is_evictable(self, record: ModelT) -> bool:
        return True


class InMemoryRecordStore(RecordStore[ModelT]):
    """Process-local store. One lock guards every read-modify-write."""

    def __init__(self, max_records: int = 10_000, retention_seconds: Optional[int] = None) -> None:
        self._records: dict[str, ModelT] = {}
        self._lock = threading.RLock()
        self._max_records = max_records
        self._retention_seconds = retention_seconds

    def get(self, key: str) -> Optional[ModelT]:
        with self._lock:
            return self._records.get(key)

    def create_if_absent(self, record: ModelT) -> Tuple[ModelT, bool]:
        key = self.key_of(record)
        with self._lock:
            existing = self._records.get(key)
            if existing is not None:
                return existing, False
            self._records[key] = record
            self.prune()
            self._evict_if_needed()
            return record, True

    def mutate(self, key: str, fn: Callable[[ModelT], ModelT]) -> Optional[ModelT]:
        with self._lock:
            current = self._records.get(key)
            if current is None:
                return None
            updated = fn(current)
            self._records[key] = updated
            return updated

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._records.pop(key, None) is not None

    def list_records(self) -> List[ModelT]:
        with self._lock:
            return list(self._records.values())

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def prune(self, now: Optional[datetime] = None) -> int:
        if not self._retention_seconds:
            return 0
        now = now or utcnow()
        removed = 0
        with self._lock:
            for key, record in list(self._records.items()):
                seen = self.last_seen(record)
                if seen is None or not self.is_evictable(record):
                    continue
                if (now - seen).total_seconds() > self._retention_seconds:
                    del self._records[key]
                    removed += 1
        if removed:
            logger.info("[LEDGER] pruned expired records", extra={"removed": removed})
        return removed

    def _evict_if_needed(self) -> None:
        while len(self._records) > self._max_records:
            oldest_key = None
            oldest_ts = None
            for key, record in self._records.items():
                if not self.is_evictable(record):
                    continue
                ts = self.last_seen(record)
                if ts is None:
                    oldest_key = key
                    break
                if oldest_ts is None or ts < oldest_ts:
                    oldest_key = key
                    oldest_ts = ts
            if oldest_key is None:
                return
            self._records.pop(oldest_key, None)


__all__ = [
    "LedgerUnavailableError",
    "RecordStore",
    "InMemoryRecordStore",
    "utcnow",
]
