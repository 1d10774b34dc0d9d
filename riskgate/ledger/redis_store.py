"""Redis-backed record store: one JSON document per key, WATCH/MULTI for updates."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple, Type

import redis

from riskgate.ledger.store import LedgerUnavailableError, ModelT, RecordStore

logger = logging.getLogger(__name__)


def create_redis_client(url: str) -> redis.Redis:
    return redis.Redis.from_url(url, socket_timeout=2.0, socket_connect_timeout=2.0)


class RedisRecordStore(RecordStore[ModelT]):
    def __init__(
        self,
        client: redis.Redis,
        model: Type[ModelT],
        prefix: str,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self._client = client
        self._model = model
        self._prefix = prefix
        self._ttl_seconds = ttl_seconds or None

    def _redis_key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def _decode(self, raw) -> Optional[ModelT]:
        if raw is None:
            return None
        return self._model.model_validate_json(raw)

    def _ttl_for(self, record: ModelT) -> Optional[int]:
        if self._ttl_seconds and self.is_evictable(record):
            return self._ttl_seconds
        return None

    def _write(self, target, key: str, record: ModelT) -> None:
        # SET without EX clears any previous TTL, which pins non-evictable records.
        target.set(self._redis_key(key), record.model_dump_json(), ex=self._ttl_for(record))

    def get(self, key: str) -> Optional[ModelT]:
        try:
            raw = self._client.get(self._redis_key(key))
        except redis.RedisError as exc:
            logger.error("[LEDGER] redis get failed", extra={"prefix": self._prefix, "error": type(exc).__name__})
            raise LedgerUnavailableError("record store unavailable") from exc
        return self._decode(raw)

    def create_if_absent(self, record: ModelT) -> Tuple[ModelT, bool]:
        key = self.key_of(record)
        try:
            created = self._client.set(
                self._redis_key(key), record.model_dump_json(), nx=True, ex=self._ttl_for(record)
            )
            if created:
                return record, True
            existing = self._decode(self._client.get(self._redis_key(key)))
        except redis.RedisError as exc:
            logger.error("[LEDGER] redis create failed", extra={"prefix": self._prefix, "error": type(exc).__name__})
            raise LedgerUnavailableError("record store unavailable") from exc
        if existing is None:
            # Expired between SET NX and GET; retry once as a fresh create.
            return self.create_if_absent(record)
        return existing, False

    def mutate(self, key: str, fn: Callable[[ModelT], ModelT]) -> Optional[ModelT]:
        redis_key = self._redis_key(key)

        def _apply(pipe) -> Optional[ModelT]:
            current = self._decode(pipe.get(redis_key))
            if current is None:
                return None
            updated = fn(current)
            pipe.multi()
            self._write(pipe, key, updated)
            return updated

        try:
            return self._client.transaction(_apply, redis_key, value_from_callable=True)
        except redis.RedisError as exc:
            logger.error("[LEDGER] redis mutate failed", extra={"prefix": self._prefix, "error": type(exc).__name__})
            raise LedgerUnavailableError("record store unavailable") from exc

    def delete(self, key: str) -> bool:
        try:
            return bool(self._client.delete(self._redis_key(key)))
        except redis.RedisError as exc:
            raise LedgerUnavailableError("record store unavailable") from exc

    def list_records(self) -> List[ModelT]:
        try:
            keys = list(self._client.scan_iter(match=f"{self._prefix}:*", count=500))
            if not keys:
                return []
            raws = self._client.mget(keys)
        except redis.RedisError as exc:
            raise LedgerUnavailableError("record store unavailable") from exc
        return [record for record in (self._decode(raw) for raw in raws) if record is not None]


__all__ = ["RedisRecordStore", "create_redis_client"]
