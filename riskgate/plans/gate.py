"""
Usage gate: who may run the gated operation, and what it costs.

The gate is subordinate to the risk decision. A request the scorer did not
allow never reaches the tier rules. Settlement happens only after the gated
operation succeeded and is atomic per account.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from riskgate.ledger import AbuseLedger, AbuseRecord
from riskgate.ledger.store import utcnow
from riskgate.plans.accounts import Account, AccountStore, TierState
from riskgate.security.scoring import RiskAssessment

logger = logging.getLogger(__name__)

FREE_API_ARTICLES = 4
API_KEY_PRICE = 1
API_KEY_CREDIT_COST = 1
STANDARD_PRICE = 3
STANDARD_CREDIT_COST = 3
PREMIUM_PRICE = 10
PREMIUM_CREDIT_COST = 5


class UsageMethod(str, Enum):
    FREE = "free"
    FREE_API = "free_api"
    CREDITS = "credits"
    PAYMENT = "payment"
    RISK = "risk"


@dataclass(frozen=True)
class Eligibility:
    allowed: bool
    method: UsageMethod
    price: int = 0
    credit_cost: int = 0
    message: str = ""
    requires_payment: bool = False
    remaining: Optional[int] = None

    def as_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "method": self.method.value,
            "price": self.price,
            "creditCost": self.credit_cost,
            "message": self.message,
            "requiresPayment": self.requires_payment,
            "remaining": self.remaining,
        }


class InsufficientCreditsError(Exception):
    """The balance was spent by a concurrent request before settlement."""


class FreeAllowanceSpentError(InsufficientCreditsError):
    """The free article was claimed by a concurrent request before settlement."""


class UnknownAccountError(Exception):
    pass


def check_eligibility(
    tier: TierState,
    risk: Optional[RiskAssessment] = None,
    premium: bool = False,
) -> Eligibility:
    """First matching rule wins."""
    if risk is not None and not risk.allowed:
        return Eligibility(allowed=False, method=UsageMethod.RISK, message=risk.reason)

    used = tier.free_articles_used
    if used == 0:
        return Eligibility(
            allowed=True,
            method=UsageMethod.FREE,
            message="First article free for all users",
            remaining=1,
        )

    if tier.has_own_api_key:
        if used < FREE_API_ARTICLES:
            return Eligibility(
                allowed=True,
                method=UsageMethod.FREE_API,
                remaining=FREE_API_ARTICLES - used,
            )
        if tier.credits > 0:
            return Eligibility(
                allowed=True,
                method=UsageMethod.CREDITS,
                price=API_KEY_PRICE,
                credit_cost=API_KEY_CREDIT_COST,
                remaining=tier.credits,
            )
        return Eligibility(
            allowed=False,
            method=UsageMethod.PAYMENT,
            price=API_KEY_PRICE,
            requires_payment=True,
            message=f"With your API key: ${API_KEY_PRICE} per article after {FREE_API_ARTICLES} free articles",
        )

    price, cost = (PREMIUM_PRICE, PREMIUM_CREDIT_COST) if premium else (STANDARD_PRICE, STANDARD_CREDIT_COST)
    if tier.credits >= cost:
        return Eligibility(
            allowed=True,
            method=UsageMethod.CREDITS,
            price=price,
            credit_cost=cost,
            remaining=tier.credits,
        )
    label = "Premium generation" if premium else "Bulk generation"
    return Eligibility(
        allowed=False,
        method=UsageMethod.PAYMENT,
        price=price,
        requires_payment=True,
        message=f"{label}: {cost} credits or ${price} direct payment",
    )


def settle_usage(accounts: AccountStore, account_id: str, eligibility: Eligibility) -> Account:
    """Charge one successful use against the account, atomically."""
    if not eligibility.allowed:
        raise ValueError("cannot settle a rejected eligibility")

    def _apply(account: Account) -> Account:
        update: dict = {"updated_at": utcnow()}
        used = account.free_articles_used
        if eligibility.method is UsageMethod.FREE and used != 0:
            raise FreeAllowanceSpentError("first free article already used")
        if eligibility.method is UsageMethod.FREE_API and (not account.has_own_api_key or used >= FREE_API_ARTICLES):
            raise FreeAllowanceSpentError(f"all {FREE_API_ARTICLES} free articles already used")
        if eligibility.method in (UsageMethod.FREE, UsageMethod.FREE_API):
            update["free_articles_used"] = used + 1
        elif eligibility.method is UsageMethod.CREDITS:
            if account.credits < eligibility.credit_cost:
                raise InsufficientCreditsError(
                    f"need {eligibility.credit_cost} credits, have {account.credits}"
                )
            update["credits"] = account.credits - eligibility.credit_cost
            if account.has_own_api_key:
                update["free_articles_used"] = account.free_articles_used + 1
        return account.model_copy(update=update)

    settled = accounts.mutate(account_id, _apply)
    if settled is None:
        raise UnknownAccountError(account_id)
    logger.info(
        "[GATE] usage settled",
        extra={"method": eligibility.method.value, "credit_cost": eligibility.credit_cost, "credits": settled.credits},
    )
    return settled


def record_free_usage(ledger: AbuseLedger, key: str) -> Optional[AbuseRecord]:
    """Count a free use against the identity's ledger record; surfaced to operators."""
    return ledger.mutate(key, lambda record: record.model_copy(update={"free_usage_count": record.free_usage_count + 1}))


__all__ = [
    "UsageMethod",
    "Eligibility",
    "InsufficientCreditsError",
    "FreeAllowanceSpentError",
    "UnknownAccountError",
    "check_eligibility",
    "settle_usage",
    "record_free_usage",
    "FREE_API_ARTICLES",
    "STANDARD_PRICE",
    "PREMIUM_PRICE",
]
