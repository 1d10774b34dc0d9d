from .signals import ReverseDnsResolver, SignalCollectors, SignalOutcome, SignalType
from .scoring import RiskAssessment, RiskDecision, RiskScorer, RiskThresholds
from .admin import AdminAuthError, require_admin_key

__all__ = [
    "ReverseDnsResolver",
    "SignalCollectors",
    "SignalOutcome",
    "SignalType",
    "RiskAssessment",
    "RiskDecision",
    "RiskScorer",
    "RiskThresholds",
    "AdminAuthError",
    "require_admin_key",
]
