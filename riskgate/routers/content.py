"""Gated content endpoints: risk check, then tier check, then generate and settle."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from riskgate.auth.identity import (
    Identity,
    identity_from_request,
    new_account_id,
    read_account_cookie,
    set_account_cookie,
)
from riskgate.deps.services import Services, get_services
from riskgate.ledger.store import utcnow
from riskgate.observability.logging import structured_log
from riskgate.observability.metrics import build_risk_summary_fields, counter, histogram
from riskgate.observability.request_id import get_request_id
from riskgate.plans.accounts import Account, get_or_create_account, register_api_keys
from riskgate.plans.gate import (
    Eligibility,
    FreeAllowanceSpentError,
    InsufficientCreditsError,
    UsageMethod,
    check_eligibility,
    record_free_usage,
    settle_usage,
)
from riskgate.schemas import ApiKeysRequest, ContentGenerationRequest
from riskgate.security.scoring import RiskAssessment, RiskDecision

router = APIRouter(prefix="/api/content", tags=["content"])
logger = logging.getLogger(__name__)


def _session_account(request: Request, services: Services, identity: Identity) -> tuple[Account, bool]:
    account_id = read_account_cookie(request)
    is_new = account_id is None
    if is_new:
        account_id = new_account_id()
    account = get_or_create_account(services.accounts, account_id, identity.address)
    if is_new:
        services.ledger.mutate(
            identity.key,
            lambda record: record.model_copy(update={"accounts_created": record.accounts_created + 1}),
        )
    return account, is_new


def _respond(
    services: Services,
    status_code: int,
    content: Dict[str, Any],
    account_id: Optional[str] = None,
) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=content)
    if account_id:
        set_account_cookie(response, account_id, services.settings)
    return response


def _emit_summary(
    request: Request,
    identity: Identity,
    assessment: RiskAssessment,
    status_code: int,
    eligibility: Optional[Eligibility] = None,
) -> None:
    structured_log(
        {
            "type": "gate_summary",
            **build_risk_summary_fields(
                request_id=get_request_id(request),
                ip_hash=identity.ip_hash,
                decision=assessment.decision.value,
                risk_score=assessment.risk_score,
                signals=[s.value for s in assessment.signals],
                degraded=assessment.degraded,
                method=eligibility.method.value if eligibility else None,
                status_code=status_code,
            ),
        }
    )


def _risk_rejection(assessment: RiskAssessment) -> Optional[tuple[int, Dict[str, Any]]]:
    if assessment.decision is RiskDecision.BLOCK:
        return 403, {"error": "Access denied", "reason": assessment.reason, "riskScore": assessment.risk_score}
    if assessment.decision is RiskDecision.VERIFY:
        return 429, {
            "error": "Suspicious activity detected",
            "reason": assessment.reason,
            "riskScore": assessment.risk_score,
        }
    return None


@router.post("/generate")
async def generate_content(
    body: ContentGenerationRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> JSONResponse:
    identity = identity_from_request(request, services.settings)
    assessment = await services.scorer().assess(identity.address, identity=identity)

    rejection = _risk_rejection(assessment)
    if rejection is not None:
        status_code, content = rejection
        counter("gate_rejections_total", labels={"reason": assessment.decision.value.lower()})
        _emit_summary(request, identity, assessment, status_code)
        return _respond(services, status_code, content)

    account, is_new = _session_account(request, services, identity)
    cookie = account.account_id if is_new else None
    eligibility = check_eligibility(account.tier(), assessment, premium=body.premium)
    if not eligibility.allowed:
        counter("gate_rejections_total", labels={"reason": "payment"})
        _emit_summary(request, identity, assessment, 402, eligibility)
        return _respond(
            services,
            402,
            {"error": "Payment required", "message": eligibility.message, "price": eligibility.price},
            cookie,
        )

    started = time.monotonic()
    generated = await services.generator.generate(body, has_own_api_key=account.has_own_api_key)
    elapsed_ms = (time.monotonic() - started) * 1000
    histogram("content_generation_ms", elapsed_ms, labels={"generator": services.generator.name})

    try:
        settled = settle_usage(services.accounts, account.account_id, eligibility)
    except InsufficientCreditsError as exc:
        logger.warning("[GATE] allowance spent concurrently", extra={"ip_hash": identity.ip_hash, "detail": str(exc)})
        message = "Free article already used" if isinstance(exc, FreeAllowanceSpentError) else "No credits remaining"
        _emit_summary(request, identity, assessment, 402, eligibility)
        return _respond(
            services,
            402,
            {"error": "Payment required", "message": message, "price": eligibility.price},
            cookie,
        )
    if eligibility.method in (UsageMethod.FREE, UsageMethod.FREE_API):
        record_free_usage(services.ledger, identity.key)

    article = {
        "id": uuid.uuid4().hex,
        "title": generated.title,
        "seoScore": generated.seo_score,
        "isPaid": eligibility.method is UsageMethod.CREDITS,
        "paymentMethod": eligibility.method.value,
        "price": eligibility.price,
        "createdAt": utcnow().isoformat(),
    }
    counter("gate_generations_total", labels={"method": eligibility.method.value})
    _emit_summary(request, identity, assessment, 200, eligibility)
    return _respond(
        services,
        200,
        {**generated.as_dict(), "article": article, "user": settled.public_view()},
        cookie,
    )


@router.post("/check-eligibility")
async def check_user_eligibility(
    request: Request,
    premium: bool = Query(False),
    services: Services = Depends(get_services),
) -> JSONResponse:
    identity = identity_from_request(request, services.settings)
    assessment = await services.scorer().assess(identity.address, identity=identity)
    account, is_new = _session_account(request, services, identity)
    eligibility = check_eligibility(account.tier(), assessment, premium=premium)
    _emit_summary(request, identity, assessment, 200, eligibility)
    return _respond(
        services,
        200,
        {
            "user": account.public_view(),
            "eligibility": eligibility.as_dict(),
            "risk": {
                "decision": assessment.decision.value,
                "riskScore": assessment.risk_score,
                "reason": assessment.reason,
                "requiresVerification": assessment.requires_verification,
            },
        },
        account.account_id if is_new else None,
    )


@router.post("/api-keys")
async def save_api_keys(
    body: ApiKeysRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> JSONResponse:
    providers = body.providers()
    if not providers:
        return _respond(services, 400, {"error": "At least one API key is required"})

    identity = identity_from_request(request, services.settings)
    account, is_new = _session_account(request, services, identity)
    updated = register_api_keys(services.accounts, account.account_id, providers) or account
    logger.info("[GATE] api keys registered", extra={"providers": providers, "ip_hash": identity.ip_hash})
    return _respond(
        services,
        200,
        {"success": True, "user": updated.public_view()},
        account.account_id if is_new else None,
    )


__all__ = ["router"]
