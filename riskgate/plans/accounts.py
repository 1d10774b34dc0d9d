"""
Per-session business tier state.

One Account per anon_id cookie, stored with the same record-store backends as
the abuse ledger. Only the names of providers the session brought keys for
are kept; key material never reaches the store.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

import redis
from pydantic import BaseModel, Field

from riskgate.config import Settings
from riskgate.ledger.redis_store import RedisRecordStore, create_redis_client
from riskgate.ledger.store import InMemoryRecordStore, RecordStore, utcnow

logger = logging.getLogger(__name__)

ACCOUNT_KEY_PREFIX = "account"
API_KEY_PROVIDERS = ("openai", "gemini")


class TierState(BaseModel):
    credits: int = Field(0, ge=0)
    free_articles_used: int = Field(0, ge=0)
    has_own_api_key: bool = False


class Account(BaseModel):
    account_id: str
    credits: int = Field(0, ge=0)
    free_articles_used: int = Field(0, ge=0)
    has_own_api_key: bool = False
    api_key_providers: List[str] = Field(default_factory=list)
    address: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def tier(self) -> TierState:
        return TierState(
            credits=self.credits,
            free_articles_used=self.free_articles_used,
            has_own_api_key=self.has_own_api_key,
        )

    def public_view(self) -> dict:
        return {
            "credits": self.credits,
            "freeArticlesUsed": self.free_articles_used,
            "hasOwnApiKey": self.has_own_api_key,
            "apiKeyProviders": list(self.api_key_providers),
        }


AccountStore = RecordStore[Account]


class InMemoryAccountStore(InMemoryRecordStore[Account]):
    key_field = "account_id"

    def last_seen(self, record: Account) -> Optional[datetime]:
        return record.updated_at

    def is_evictable(self, record: Account) -> bool:
        # Paid balances are never dropped to make room.
        return record.credits == 0


class RedisAccountStore(RedisRecordStore[Account]):
    key_field = "account_id"

    def __init__(self, client: redis.Redis) -> None:
        super().__init__(client, Account, ACCOUNT_KEY_PREFIX)


def build_account_store(settings: Settings, client: Optional[redis.Redis] = None) -> AccountStore:
    if settings.ledger_backend == "redis":
        return RedisAccountStore(client or create_redis_client(settings.redis_url))
    return InMemoryAccountStore(max_records=settings.ledger_max_records)


def get_or_create_account(accounts: AccountStore, account_id: str, address: str = "") -> Account:
    return accounts.create(Account(account_id=account_id, address=address))


def register_api_keys(accounts: AccountStore, account_id: str, providers: List[str]) -> Optional[Account]:
    """Mark the session as owning provider keys. Never lowers free usage."""

    def _apply(account: Account) -> Account:
        merged = sorted(set(account.api_key_providers) | set(providers))
        return account.model_copy(
            update={"has_own_api_key": bool(merged), "api_key_providers": merged, "updated_at": utcnow()}
        )

    return accounts.mutate(account_id, _apply)


def grant_credits(accounts: AccountStore, account_id: str, amount: int) -> Optional[Account]:
    if amount <= 0:
        raise ValueError("credit grant must be positive")

    def _apply(account: Account) -> Account:
        return account.model_copy(update={"credits": account.credits + amount, "updated_at": utcnow()})

    updated = accounts.mutate(account_id, _apply)
    if updated is not None:
        logger.info("[GATE] credits granted", extra={"amount": amount, "credits": updated.credits})
    return updated


__all__ = [
    "Account",
    "AccountStore",
    "TierState",
    "InMemoryAccountStore",
    "RedisAccountStore",
    "API_KEY_PROVIDERS",
    "build_account_store",
    "get_or_create_account",
    "register_api_keys",
    "grant_credits",
]
