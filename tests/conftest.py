import socket
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from riskgate.config import Settings
from riskgate.content.generator import TemplateContentGenerator
from riskgate.deps.services import Services, get_services
from riskgate.ledger import InMemoryAbuseLedger
from riskgate.plans.accounts import InMemoryAccountStore
from riskgate.security.signals import ReverseDnsResolver

PUBLIC_IP = "203.0.113.5"
BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/124.0 Safari/537.36"
ADMIN_KEY = "test-admin-key"


class StaticResolver(ReverseDnsResolver):
    """Reverse DNS answered from a dict; unknown addresses behave like NXDOMAIN."""

    def __init__(self, hostnames: Optional[Dict[str, str]] = None, timeout_seconds: float = 0.5) -> None:
        super().__init__(timeout_seconds=timeout_seconds, lookup=self._lookup)
        self.hostnames = dict(hostnames or {})
        self.calls: List[str] = []

    def _lookup(self, address: str):
        self.calls.append(address)
        if address in self.hostnames:
            return self.hostnames[address], [], [address]
        raise socket.herror(1, "Unknown host")


def make_settings(**overrides) -> Settings:
    values = {
        "app_env": "test",
        "identity_hash_salt": "test-salt",
        "admin_key": ADMIN_KEY,
        "reverse_dns_timeout_seconds": 0.5,
        "content_provider": "none",
    }
    values.update(overrides)
    return Settings(**values)


def make_services(settings: Optional[Settings] = None, resolver: Optional[ReverseDnsResolver] = None) -> Services:
    s = settings or make_settings()
    return Services(
        settings=s,
        ledger=InMemoryAbuseLedger(max_records=s.ledger_max_records, retention_seconds=s.ledger_retention_seconds),
        accounts=InMemoryAccountStore(max_records=s.ledger_max_records),
        resolver=resolver or StaticResolver(),
        generator=TemplateContentGenerator(),
    )


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def resolver() -> StaticResolver:
    return StaticResolver()


@pytest.fixture
def services(settings: Settings, resolver: StaticResolver) -> Services:
    return make_services(settings, resolver)


@pytest.fixture
def app_with(services: Services):
    from riskgate.main import app

    app.dependency_overrides[get_services] = lambda: services
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app_with) -> TestClient:
    return TestClient(app_with, client=(PUBLIC_IP, 50000))
