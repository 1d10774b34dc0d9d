import asyncio
from datetime import datetime, timezone

import pytest

from conftest import BROWSER_UA, PUBLIC_IP, StaticResolver, make_settings
from riskgate.ledger import AbuseRecord, InMemoryAbuseLedger, LedgerUnavailableError
from riskgate.security.scoring import RiskDecision, RiskScorer, RiskThresholds
from riskgate.security.signals import SignalType


def _scorer(ledger=None, resolver=None, clock=None, **overrides) -> RiskScorer:
    kwargs = {"clock": clock} if clock else {}
    return RiskScorer.from_settings(
        ledger if ledger is not None else InMemoryAbuseLedger(),
        resolver or StaticResolver(),
        make_settings(**overrides),
        **kwargs,
    )


class _DownLedger(InMemoryAbuseLedger):
    def get(self, key):
        raise LedgerUnavailableError("redis down")


class _BrokenLedger(InMemoryAbuseLedger):
    def get(self, key):
        raise RuntimeError("corrupt record")


def test_threshold_partition():
    t = RiskThresholds()
    assert t.decide(0) is RiskDecision.ALLOW
    assert t.decide(49) is RiskDecision.ALLOW
    assert t.decide(50) is RiskDecision.VERIFY
    assert t.decide(74) is RiskDecision.VERIFY
    assert t.decide(75) is RiskDecision.BLOCK
    assert t.decide(100) is RiskDecision.BLOCK


def test_missing_fingerprint_scenario():
    ledger = InMemoryAbuseLedger()
    result = asyncio.run(_scorer(ledger).assess(PUBLIC_IP, BROWSER_UA, ""))
    assert result.risk_score == 20
    assert result.allowed is True
    assert result.requires_verification is False
    assert result.reason == "Missing browser fingerprint"
    stored = ledger.get(PUBLIC_IP)
    assert stored is not None
    assert stored.risk_score == 20
    assert stored.request_count == 1


def test_clean_request_is_low_risk():
    result = asyncio.run(_scorer().assess(PUBLIC_IP, BROWSER_UA, "fp-1"))
    assert result.risk_score == 0
    assert result.reason == "Low risk"
    assert result.decision is RiskDecision.ALLOW


def test_loopback_blocked():
    result = asyncio.run(_scorer().assess("127.0.0.1", BROWSER_UA, "fp-1"))
    assert result.risk_score >= 90
    assert result.allowed is False
    assert result.decision is RiskDecision.BLOCK
    assert "Private IP detected" in result.reason


def test_score_clamped_to_100():
    ledger = InMemoryAbuseLedger()
    ledger.create(AbuseRecord(key=PUBLIC_IP, address=PUBLIC_IP, is_banned=True, is_vpn=True, is_datacenter=True))
    result = asyncio.run(_scorer(ledger).assess(PUBLIC_IP, "bot", ""))
    assert result.risk_score == 100


def test_banned_always_blocked():
    ledger = InMemoryAbuseLedger()
    ledger.create(AbuseRecord(key=PUBLIC_IP, address=PUBLIC_IP, is_banned=True))
    for _ in range(3):
        result = asyncio.run(_scorer(ledger).assess(PUBLIC_IP, BROWSER_UA, "fp-1"))
        assert result.allowed is False
        assert result.decision is RiskDecision.BLOCK
        assert result.reason.startswith("IP is banned")


def test_datacenter_requires_verification_and_is_cached():
    resolver = StaticResolver({"198.51.100.9": "ec2-198-51-100-9.compute.amazonaws.com"})
    ledger = InMemoryAbuseLedger()
    scorer = _scorer(ledger, resolver)

    first = asyncio.run(scorer.assess("198.51.100.9", BROWSER_UA, "fp-1"))
    assert first.risk_score == 70
    assert first.requires_verification is True
    assert first.reason == "Data center IP detected"
    assert ledger.get("198.51.100.9").is_datacenter is True

    second = asyncio.run(scorer.assess("198.51.100.9", BROWSER_UA, "fp-1"))
    assert second.risk_score == 70
    assert second.reason == "Data center IP"
    assert resolver.calls == ["198.51.100.9"]


def test_repeated_assessment_non_decreasing():
    fixed = datetime(2026, 1, 1, tzinfo=timezone.utc)
    ledger = InMemoryAbuseLedger()
    scorer = _scorer(ledger, clock=lambda: fixed)
    scores = []
    seen = []
    for _ in range(4):
        scores.append(asyncio.run(scorer.assess(PUBLIC_IP, BROWSER_UA, "")).risk_score)
        seen.append(ledger.get(PUBLIC_IP).last_activity)
    assert scores == sorted(scores)
    assert all(a < b for a, b in zip(seen, seen[1:]))
    assert ledger.get(PUBLIC_IP).request_count == 4


def test_high_velocity_signal():
    ledger = InMemoryAbuseLedger()
    scorer = _scorer(ledger, velocity_limit=3)
    results = [asyncio.run(scorer.assess(PUBLIC_IP, BROWSER_UA, "fp-1")) for _ in range(4)]
    assert SignalType.HIGH_VELOCITY not in results[2].signals
    assert SignalType.HIGH_VELOCITY in results[3].signals
    assert results[3].risk_score == 30


def test_force_recheck_rewrites_network_flags_keeps_ban():
    ledger = InMemoryAbuseLedger()
    ledger.create(AbuseRecord(key=PUBLIC_IP, address=PUBLIC_IP, is_vpn=True, is_flagged=True))
    resolver = StaticResolver()
    scorer = _scorer(ledger, resolver)

    result = asyncio.run(scorer.assess(PUBLIC_IP, BROWSER_UA, "fp-1", force_recheck=True))
    record = ledger.get(PUBLIC_IP)
    assert record.is_vpn is False
    assert record.is_flagged is True
    assert result.risk_score == 50
    assert resolver.calls == [PUBLIC_IP]


def test_degraded_recheck_keeps_stored_network_flags():
    def broken_lookup(address):
        raise RuntimeError("resolver crashed")

    from riskgate.security.signals import ReverseDnsResolver

    ledger = InMemoryAbuseLedger()
    ledger.create(AbuseRecord(key=PUBLIC_IP, address=PUBLIC_IP, is_vpn=True))
    scorer = _scorer(ledger, ReverseDnsResolver(lookup=broken_lookup))

    result = asyncio.run(scorer.assess(PUBLIC_IP, BROWSER_UA, "fp-1", force_recheck=True))
    assert result.degraded is True
    assert result.risk_score == 100
    assert ledger.get(PUBLIC_IP).is_vpn is True

    later = asyncio.run(_scorer(ledger).assess(PUBLIC_IP, BROWSER_UA, "fp-1"))
    assert later.risk_score == 80
    assert later.decision is RiskDecision.BLOCK


def test_collector_error_is_degraded_not_fatal():
    def broken_lookup(address):
        raise RuntimeError("boom")

    from riskgate.security.signals import ReverseDnsResolver

    ledger = InMemoryAbuseLedger()
    result = asyncio.run(_scorer(ledger, ReverseDnsResolver(lookup=broken_lookup)).assess(PUBLIC_IP, BROWSER_UA, "fp"))
    assert result.degraded is True
    assert result.risk_score == 40
    assert "Detection error - proceed with caution" in result.reason
    assert ledger.get(PUBLIC_IP).detection_degraded is True


def test_unexpected_error_gives_fixed_moderate_score():
    result = asyncio.run(_scorer(_BrokenLedger()).assess(PUBLIC_IP, BROWSER_UA, "fp"))
    assert result.risk_score == 40
    assert result.degraded is True
    assert result.reason == "Detection error - proceed with caution"


def test_ledger_unavailable_raises_by_default():
    with pytest.raises(LedgerUnavailableError):
        asyncio.run(_scorer(_DownLedger()).assess(PUBLIC_IP, BROWSER_UA, "fp"))


def test_ledger_unavailable_fail_open():
    result = asyncio.run(_scorer(_DownLedger(), ledger_fail_open=True).assess(PUBLIC_IP, BROWSER_UA, "fp"))
    assert result.degraded is True
    assert result.risk_score == 40
    assert result.allowed is True


def test_custom_thresholds():
    result = asyncio.run(
        _scorer(risk_allow_threshold=10, risk_block_threshold=30).assess(PUBLIC_IP, BROWSER_UA, "")
    )
    assert result.risk_score == 20
    assert result.decision is RiskDecision.VERIFY
