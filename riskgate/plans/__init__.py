from .accounts import Account, TierState, build_account_store, grant_credits
from .gate import (
    Eligibility,
    FreeAllowanceSpentError,
    InsufficientCreditsError,
    UsageMethod,
    check_eligibility,
    record_free_usage,
    settle_usage,
)

__all__ = [
    "Account",
    "TierState",
    "build_account_store",
    "grant_credits",
    "Eligibility",
    "FreeAllowanceSpentError",
    "InsufficientCreditsError",
    "UsageMethod",
    "check_eligibility",
    "record_free_usage",
    "settle_usage",
]
