from __future__ import annotations

from typing import Any, Dict

from riskgate.observability.logging import safe_redact, structured_log


def counter(name: str, value: int = 1, labels: dict[str, str] | None = None) -> None:
    structured_log({"type": "metric", "metric_type": "counter", "name": name, "value": int(value), "labels": labels or {}})


def histogram(name: str, value: float, labels: dict[str, str] | None = None) -> None:
    structured_log(
        {"type": "metric", "metric_type": "histogram", "name": name, "value": float(value), "labels": labels or {}}
    )


def event(name: str, fields: Dict[str, Any]) -> None:
    structured_log({"type": "event", "name": name, "fields": safe_redact(fields)})


def build_risk_summary_fields(
    *,
    request_id: str,
    ip_hash: str,
    decision: str,
    risk_score: int,
    signals: list[str],
    degraded: bool,
    method: str | None = None,
    status_code: int | None = None,
) -> Dict[str, Any]:
    return {
        "request_id": request_id,
        "ip_hash": ip_hash,
        "decision": decision,
        "risk_score": int(risk_score),
        "signals": signals,
        "degraded": bool(degraded),
        "method": method or "none",
        "status_code": status_code,
    }


__all__ = ["counter", "histogram", "event", "build_risk_summary_fields"]
