"""
Process-wide collaborators, built once from settings.

Routers receive a Services instance through `Depends(get_services)`; tests
swap it with `app.dependency_overrides[get_services]`.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Optional

import redis

from riskgate.config import Settings, get_settings
from riskgate.content.generator import ContentGenerator, create_generator
from riskgate.ledger import AbuseLedger, build_abuse_ledger, create_redis_client
from riskgate.plans.accounts import AccountStore, build_account_store
from riskgate.security.scoring import RiskScorer
from riskgate.security.signals import ReverseDnsResolver


@dataclass
class Services:
    settings: Settings
    ledger: AbuseLedger
    accounts: AccountStore
    resolver: ReverseDnsResolver
    generator: ContentGenerator

    def scorer(self) -> RiskScorer:
        return RiskScorer.from_settings(self.ledger, self.resolver, self.settings)


def build_services(settings: Settings | None = None, client: Optional[redis.Redis] = None) -> Services:
    s = settings or get_settings()
    if s.ledger_backend == "redis" and client is None:
        client = create_redis_client(s.redis_url)
    return Services(
        settings=s,
        ledger=build_abuse_ledger(s, client),
        accounts=build_account_store(s, client),
        resolver=ReverseDnsResolver(timeout_seconds=s.reverse_dns_timeout_seconds),
        generator=create_generator(s),
    )


@functools.lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services()


__all__ = ["Services", "build_services", "get_services"]
