from __future__ import annotations

from .request_id import get_request_id
from .logging import structured_log, safe_redact
from .metrics import counter, histogram, event, build_risk_summary_fields

__all__ = [
    "get_request_id",
    "structured_log",
    "safe_redact",
    "counter",
    "histogram",
    "event",
    "build_risk_summary_fields",
]
