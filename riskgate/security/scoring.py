"""
Risk scorer.

Merges the stored per-identity flags from the abuse ledger with fresh signals
into a clamped 0-100 score and partitions it into ALLOW / VERIFY / BLOCK:

    allow  [0, allow_threshold)
    verify [allow_threshold, block_threshold)
    block  [block_threshold, 100]

Network collectors (reverse DNS, VPN ranges) only run the first time an
identity is seen, or on an explicit re-check; later requests reuse the flags
persisted in the ledger. Header checks and velocity run every time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from riskgate.auth.identity import Identity, resolve_identity
from riskgate.config import Settings, get_settings
from riskgate.ledger import AbuseLedger, AbuseRecord, LedgerUnavailableError, utcnow
from riskgate.observability.metrics import counter
from riskgate.security.signals import (
    NetworkFindings,
    ProviderLists,
    ReverseDnsResolver,
    SignalCollectors,
    SignalOutcome,
    SignalType,
    check_private_address,
    check_user_agent,
    check_velocity,
    stored_flag_outcome,
)

logger = logging.getLogger(__name__)

LOW_RISK_REASON = "Low risk"


class RiskDecision(str, Enum):
    ALLOW = "ALLOW"
    VERIFY = "VERIFY"
    BLOCK = "BLOCK"


@dataclass(frozen=True)
class RiskThresholds:
    allow: int = 50
    block: int = 75

    def decide(self, score: int) -> RiskDecision:
        if score >= self.block:
            return RiskDecision.BLOCK
        if score >= self.allow:
            return RiskDecision.VERIFY
        return RiskDecision.ALLOW


def clamp_score(raw: int) -> int:
    return max(0, min(int(raw), 100))


def _detection_errors(outcome: SignalOutcome) -> SignalOutcome:
    errors = tuple(s for s in outcome.signals if s.type is SignalType.DETECTION_ERROR)
    return SignalOutcome(signals=errors, degraded=True)


@dataclass(frozen=True)
class RiskAssessment:
    allowed: bool
    decision: RiskDecision
    reason: str
    risk_score: int
    requires_verification: bool
    signals: tuple[SignalType, ...] = ()
    degraded: bool = False

    @classmethod
    def from_outcome(cls, outcome: SignalOutcome, thresholds: RiskThresholds) -> "RiskAssessment":
        score = clamp_score(outcome.penalty)
        decision = thresholds.decide(score)
        return cls(
            allowed=decision is RiskDecision.ALLOW,
            decision=decision,
            reason=", ".join(outcome.reasons) or LOW_RISK_REASON,
            risk_score=score,
            requires_verification=decision is RiskDecision.VERIFY,
            signals=outcome.types,
            degraded=outcome.degraded,
        )

    def as_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "decision": self.decision.value,
            "reason": self.reason,
            "riskScore": self.risk_score,
            "requiresVerification": self.requires_verification,
            "signals": [s.value for s in self.signals],
            "degraded": self.degraded,
        }


class RiskScorer:
    def __init__(
        self,
        ledger: AbuseLedger,
        collectors: SignalCollectors,
        thresholds: RiskThresholds | None = None,
        *,
        velocity_limit: int = 20,
        velocity_window_seconds: int = 60,
        error_penalty: int = 40,
        fail_open: bool = False,
        clock: Callable[[], datetime] = utcnow,
        settings: Settings | None = None,
    ) -> None:
        self._ledger = ledger
        self._collectors = collectors
        self._thresholds = thresholds or RiskThresholds()
        self._velocity_limit = velocity_limit
        self._velocity_window = velocity_window_seconds
        self._error_penalty = error_penalty
        self._fail_open = fail_open
        self._clock = clock
        self._settings = settings

    @classmethod
    def from_settings(
        cls,
        ledger: AbuseLedger,
        resolver: ReverseDnsResolver,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "RiskScorer":
        s = settings or get_settings()
        collectors = SignalCollectors(
            resolver,
            ProviderLists(
                vpn=tuple(s.vpn_providers),
                datacenter=tuple(s.datacenter_providers),
                hosting=tuple(s.hosting_providers),
            ),
            vpn_prefixes=s.vpn_prefixes,
            error_penalty=s.detection_error_penalty,
        )
        return cls(
            ledger,
            collectors,
            RiskThresholds(allow=s.risk_allow_threshold, block=s.risk_block_threshold),
            velocity_limit=s.velocity_limit,
            velocity_window_seconds=s.velocity_window_seconds,
            error_penalty=s.detection_error_penalty,
            fail_open=s.ledger_fail_open,
            clock=clock,
            settings=s,
        )

    @property
    def thresholds(self) -> RiskThresholds:
        return self._thresholds

    async def assess(
        self,
        address: str,
        user_agent: str = "",
        fingerprint: str = "",
        *,
        identity: Identity | None = None,
        force_recheck: bool = False,
    ) -> RiskAssessment:
        """Score one request. Never raises, except LedgerUnavailableError when not failing open."""
        try:
            if identity is None:
                identity = resolve_identity(address, user_agent, fingerprint, settings=self._settings)
            return await self._assess(identity, force_recheck)
        except LedgerUnavailableError:
            if not self._fail_open:
                raise
            logger.error("[RISK] ledger unavailable, failing open")
            return self._degraded()
        except Exception:
            logger.exception("[RISK] scoring failed, returning degraded assessment")
            return self._degraded()

    def _degraded(self) -> RiskAssessment:
        assessment = RiskAssessment.from_outcome(SignalOutcome.detection_error(self._error_penalty), self._thresholds)
        counter("risk_degraded_total")
        return assessment

    async def _assess(self, identity: Identity, force_recheck: bool) -> RiskAssessment:
        base = check_private_address(identity.address)
        headers = check_user_agent(identity.user_agent, identity.fingerprint)
        now = self._clock()

        record = self._ledger.get(identity.key)
        if record is None:
            collected = await self._collectors.collect_network(identity.address)
            outcome = base + collected.outcome + headers
            fresh = self._new_record(identity, collected, now, outcome)
            _, created = self._ledger.create_if_absent(fresh)
            if created:
                return self._finish(identity, outcome, first_sighting=True)
            # A concurrent request created the record first; use its stored flags.

        findings: Optional[NetworkFindings] = None
        if force_recheck:
            findings = await self._collectors.collect_network(identity.address)

        def _touch(current: AbuseRecord) -> AbuseRecord:
            updated = current.touched(now, self._velocity_window)
            if findings is not None:
                # A failed collector proves nothing; keep what was stored and add what was found.
                keep = findings.outcome.degraded
                updated = updated.model_copy(
                    update={
                        "is_vpn": findings.is_vpn or (keep and current.is_vpn),
                        "is_proxy": findings.is_proxy or (keep and current.is_proxy),
                        "is_datacenter": findings.is_datacenter or (keep and current.is_datacenter),
                    }
                )
            scored = self._cached_outcome(updated, base, headers, findings)
            return updated.model_copy(
                update={"risk_score": clamp_score(scored.penalty), "detection_degraded": scored.degraded}
            )

        updated = self._ledger.mutate(identity.key, _touch)
        if updated is None:
            # Deleted between get and mutate (admin delete or retention); score what we read.
            current = record or self._ledger.get(identity.key)
            if current is None:
                return self._finish(identity, base + headers, first_sighting=False)
            updated = current.touched(now, self._velocity_window)
        outcome = self._cached_outcome(updated, base, headers, findings)
        return self._finish(identity, outcome, first_sighting=False)

    def _cached_outcome(
        self,
        record: AbuseRecord,
        base: SignalOutcome,
        headers: SignalOutcome,
        findings: Optional[NetworkFindings],
    ) -> SignalOutcome:
        if findings is None or findings.outcome.degraded:
            flags = stored_flag_outcome(
                is_banned=record.is_banned,
                is_vpn=record.is_vpn,
                is_proxy=record.is_proxy,
                is_datacenter=record.is_datacenter,
                is_flagged=record.is_flagged,
            )
            if findings is not None:
                flags = flags + _detection_errors(findings.outcome)
        else:
            flags = stored_flag_outcome(is_banned=record.is_banned, is_flagged=record.is_flagged) + findings.outcome
        velocity = check_velocity(record.window_request_count, self._velocity_limit)
        return base + flags + headers + velocity

    def _new_record(
        self, identity: Identity, findings: NetworkFindings, now: datetime, outcome: SignalOutcome
    ) -> AbuseRecord:
        return AbuseRecord(
            key=identity.key,
            address=identity.address,
            fingerprint=identity.fingerprint,
            user_agent=identity.user_agent[:512],
            request_count=1,
            window_started_at=now,
            window_request_count=1,
            is_vpn=findings.is_vpn,
            is_proxy=findings.is_proxy,
            is_datacenter=findings.is_datacenter,
            country_code=identity.country_hint,
            risk_score=clamp_score(outcome.penalty),
            detection_degraded=outcome.degraded,
            last_activity=now,
            created_at=now,
        )

    def _finish(self, identity: Identity, outcome: SignalOutcome, *, first_sighting: bool) -> RiskAssessment:
        assessment = RiskAssessment.from_outcome(outcome, self._thresholds)
        logger.info(
            "[RISK] assessed",
            extra={
                "ip_hash": identity.ip_hash,
                "risk_score": assessment.risk_score,
                "decision": assessment.decision.value,
                "signals": [s.value for s in assessment.signals],
                "degraded": assessment.degraded,
                "first_sighting": first_sighting,
            },
        )
        counter("risk_decisions_total", labels={"decision": assessment.decision.value})
        return assessment


__all__ = [
    "RiskDecision",
    "RiskThresholds",
    "RiskAssessment",
    "RiskScorer",
    "clamp_score",
    "LOW_RISK_REASON",
]
