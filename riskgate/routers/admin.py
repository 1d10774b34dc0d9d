"""Operator endpoints over the abuse ledger and account store."""

from __future__ import annotations

import dataclasses
import logging
from datetime import timedelta
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from riskgate.auth.identity import resolve_identity
from riskgate.deps.services import Services, get_services
from riskgate.ledger import AbuseRecord
from riskgate.ledger.store import utcnow
from riskgate.observability.metrics import event
from riskgate.plans.accounts import grant_credits
from riskgate.schemas import AbusePatch, CreditGrant
from riskgate.security.admin import require_admin_key

logger = logging.getLogger(__name__)

_FLAG_FIELDS = ("is_banned", "is_flagged", "is_vpn", "is_proxy", "is_datacenter")


def admin_services(request: Request, services: Services = Depends(get_services)) -> Services:
    require_admin_key(request, services.settings)
    return services


router = APIRouter(prefix="/admin", tags=["admin"])


def _dump(record: AbuseRecord) -> Dict[str, Any]:
    return record.model_dump(mode="json")


def _not_found(what: str = "Record") -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": f"{what} not found"})


@router.get("/stats")
async def stats(services: Services = Depends(admin_services)) -> Dict[str, Any]:
    records = services.ledger.list_records()
    since = utcnow() - timedelta(hours=24)
    return {
        "totalRecords": len(records),
        "banned": sum(1 for r in records if r.is_banned),
        "vpn": sum(1 for r in records if r.is_vpn),
        "flagged": sum(1 for r in records if r.is_flagged),
        "degraded": sum(1 for r in records if r.detection_degraded),
        "activeLast24h": sum(1 for r in records if r.last_activity >= since),
        "accounts": services.accounts.count(),
        "ledgerBackend": services.settings.ledger_backend,
    }


@router.get("/fraud-detection")
async def fraud_detection(services: Services = Depends(admin_services)) -> Dict[str, Any]:
    records = sorted(services.ledger.list_records(), key=lambda r: r.risk_score, reverse=True)
    return {
        "suspicious": [_dump(r) for r in records if r.is_flagged or r.is_banned],
        "vpnUsers": [_dump(r) for r in records if r.is_vpn],
        # One identity behind several sessions or several free articles.
        "repeatIdentities": [_dump(r) for r in records if r.accounts_created > 1 or r.free_usage_count > 1],
    }


@router.get("/abuse/{key}")
async def get_abuse_record(key: str, services: Services = Depends(admin_services)):
    record = services.ledger.get(key)
    if record is None:
        return _not_found()
    return _dump(record)


@router.patch("/abuse/{key}")
async def patch_abuse_record(key: str, body: AbusePatch, services: Services = Depends(admin_services)):
    changes = body.changes()

    def _apply(record: AbuseRecord) -> AbuseRecord:
        update: Dict[str, Any] = {}
        if body.clear_flags:
            update.update({name: False for name in _FLAG_FIELDS})
        update.update(changes)
        return record.model_copy(update=update)

    updated = services.ledger.mutate(key, _apply)
    if updated is None:
        return _not_found()
    logger.info(
        "[ADMIN] abuse record updated",
        extra={"fields": sorted(changes), "clear_flags": body.clear_flags, "is_banned": updated.is_banned},
    )
    event("admin_abuse_patch", {"fields": sorted(changes), "clear_flags": body.clear_flags})
    return _dump(updated)


@router.post("/abuse/{key}/reset-usage")
async def reset_usage(key: str, services: Services = Depends(admin_services)):
    updated = services.ledger.update(key, free_usage_count=0)
    if updated is None:
        return _not_found()
    logger.info("[ADMIN] free usage reset")
    event("admin_reset_usage", {})
    return _dump(updated)


@router.post("/abuse/{key}/recheck")
async def recheck(key: str, services: Services = Depends(admin_services)):
    record = services.ledger.get(key)
    if record is None:
        return _not_found()
    identity = resolve_identity(
        record.address, record.user_agent, record.fingerprint, settings=services.settings
    )
    identity = dataclasses.replace(identity, key=key)
    assessment = await services.scorer().assess(record.address, identity=identity, force_recheck=True)
    refreshed = services.ledger.get(key) or record
    logger.info("[ADMIN] forced re-check", extra={"risk_score": assessment.risk_score})
    return {"assessment": assessment.as_dict(), "record": _dump(refreshed)}


@router.post("/accounts/{account_id}/credits")
async def add_credits(account_id: str, body: CreditGrant, services: Services = Depends(admin_services)):
    updated = grant_credits(services.accounts, account_id, body.amount)
    if updated is None:
        return _not_found("Account")
    event("admin_grant_credits", {"amount": body.amount})
    return {"account_id": updated.account_id, **updated.public_view()}


__all__ = ["router", "admin_services"]
