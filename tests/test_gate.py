import pytest

from riskgate.ledger import AbuseRecord, InMemoryAbuseLedger
from riskgate.plans.accounts import (
    Account,
    InMemoryAccountStore,
    TierState,
    grant_credits,
    register_api_keys,
)
from riskgate.plans.gate import (
    FreeAllowanceSpentError,
    InsufficientCreditsError,
    UsageMethod,
    check_eligibility,
    record_free_usage,
    settle_usage,
)
from riskgate.security.scoring import RiskAssessment, RiskDecision


def _risk(decision: RiskDecision, score: int, reason: str = "Low risk") -> RiskAssessment:
    return RiskAssessment(
        allowed=decision is RiskDecision.ALLOW,
        decision=decision,
        reason=reason,
        risk_score=score,
        requires_verification=decision is RiskDecision.VERIFY,
    )


def _store(**fields) -> InMemoryAccountStore:
    accounts = InMemoryAccountStore()
    accounts.create(Account(account_id="acc", **fields))
    return accounts


def test_first_use_free():
    for tier in (TierState(), TierState(credits=50), TierState(has_own_api_key=True)):
        result = check_eligibility(tier)
        assert result.allowed is True
        assert result.method is UsageMethod.FREE
        assert result.price == 0


def test_risk_rejection_wins():
    result = check_eligibility(TierState(), _risk(RiskDecision.BLOCK, 90, "Private IP detected"))
    assert result.allowed is False
    assert result.method is UsageMethod.RISK
    assert result.message == "Private IP detected"
    assert check_eligibility(TierState(), _risk(RiskDecision.VERIFY, 60)).method is UsageMethod.RISK


def test_no_key_no_credits_requires_payment():
    standard = check_eligibility(TierState(credits=0, free_articles_used=1))
    assert standard.allowed is False
    assert standard.requires_payment is True
    assert standard.method is UsageMethod.PAYMENT
    assert standard.price == 3

    premium = check_eligibility(TierState(credits=0, free_articles_used=1), premium=True)
    assert premium.price == 10


def test_standard_and_premium_credit_costs():
    standard = check_eligibility(TierState(credits=3, free_articles_used=2))
    assert (standard.method, standard.price, standard.credit_cost) == (UsageMethod.CREDITS, 3, 3)

    premium_short = check_eligibility(TierState(credits=4, free_articles_used=2), premium=True)
    assert premium_short.allowed is False

    premium = check_eligibility(TierState(credits=5, free_articles_used=2), premium=True)
    assert (premium.method, premium.price, premium.credit_cost) == (UsageMethod.CREDITS, 10, 5)


def test_api_key_free_allowance():
    result = check_eligibility(TierState(free_articles_used=1, has_own_api_key=True))
    assert result.method is UsageMethod.FREE_API
    assert result.remaining == 3
    exhausted = check_eligibility(TierState(free_articles_used=4, has_own_api_key=True))
    assert exhausted.allowed is False
    assert exhausted.price == 1


def test_api_key_credits_scenario():
    accounts = _store(credits=5, free_articles_used=4, has_own_api_key=True)
    eligibility = check_eligibility(accounts.get("acc").tier())
    assert (eligibility.method, eligibility.price, eligibility.credit_cost) == (UsageMethod.CREDITS, 1, 1)
    settled = settle_usage(accounts, "acc", eligibility)
    assert settled.credits == 4
    assert settled.free_articles_used == 5


def test_adding_api_key_never_reduces_free_uses():
    for used in range(0, 6):
        before = check_eligibility(TierState(free_articles_used=used))
        after = check_eligibility(TierState(free_articles_used=used, has_own_api_key=True))
        free_before = before.method in (UsageMethod.FREE, UsageMethod.FREE_API)
        free_after = after.method in (UsageMethod.FREE, UsageMethod.FREE_API)
        assert free_after or not free_before


def test_free_settlement_increments_usage():
    accounts = _store()
    settled = settle_usage(accounts, "acc", check_eligibility(accounts.get("acc").tier()))
    assert settled.free_articles_used == 1
    assert settled.credits == 0


def test_concurrent_spend_detected():
    accounts = _store(credits=3, free_articles_used=1)
    eligibility = check_eligibility(accounts.get("acc").tier())
    settle_usage(accounts, "acc", eligibility)
    with pytest.raises(InsufficientCreditsError):
        settle_usage(accounts, "acc", eligibility)
    assert accounts.get("acc").credits == 0


def test_concurrent_free_use_settles_once():
    accounts = _store()
    first = check_eligibility(accounts.get("acc").tier())
    second = check_eligibility(accounts.get("acc").tier())
    assert first.method is second.method is UsageMethod.FREE
    settle_usage(accounts, "acc", first)
    with pytest.raises(FreeAllowanceSpentError):
        settle_usage(accounts, "acc", second)
    assert accounts.get("acc").free_articles_used == 1


def test_concurrent_free_api_use_stops_at_allowance():
    accounts = _store(has_own_api_key=True, api_key_providers=["openai"], free_articles_used=3)
    first = check_eligibility(accounts.get("acc").tier())
    second = check_eligibility(accounts.get("acc").tier())
    assert second.method is UsageMethod.FREE_API
    settle_usage(accounts, "acc", first)
    with pytest.raises(InsufficientCreditsError):
        settle_usage(accounts, "acc", second)
    assert accounts.get("acc").free_articles_used == 4


def test_rejected_eligibility_cannot_settle():
    accounts = _store(free_articles_used=1)
    with pytest.raises(ValueError):
        settle_usage(accounts, "acc", check_eligibility(accounts.get("acc").tier()))


def test_record_free_usage_on_ledger():
    ledger = InMemoryAbuseLedger()
    ledger.create(AbuseRecord(key="k", address="k"))
    record_free_usage(ledger, "k")
    assert ledger.get("k").free_usage_count == 1
    assert record_free_usage(ledger, "missing") is None


def test_register_api_keys_and_grant_credits():
    accounts = _store(free_articles_used=2)
    updated = register_api_keys(accounts, "acc", ["openai"])
    assert updated.has_own_api_key is True
    assert updated.free_articles_used == 2
    assert register_api_keys(accounts, "acc", ["gemini"]).api_key_providers == ["gemini", "openai"]

    assert grant_credits(accounts, "acc", 5).credits == 5
    assert grant_credits(accounts, "missing", 5) is None
    with pytest.raises(ValueError):
        grant_credits(accounts, "acc", 0)
