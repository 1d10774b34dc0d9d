from __future__ import annotations

import logging
import time
from logging.config import dictConfig
from typing import Any, Dict

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from riskgate.config import get_settings, safe_error_detail, validate_for_env
from riskgate.content.generator import ContentGenerationError
from riskgate.deps.services import Services, get_services
from riskgate.ledger import LedgerUnavailableError
from riskgate.middleware.request_id import RequestIdMiddleware
from riskgate.observability.metrics import counter
from riskgate.plans.gate import UnknownAccountError
from riskgate.routers import admin, content
from riskgate.security.admin import AdminAuthError

_settings = get_settings()

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        }
    },
    "root": {
        "level": _settings.log_level.upper(),
        "handlers": ["console"],
    },
}


dictConfig(LOGGING_CONFIG)
logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"
_start_time = time.monotonic()

app = FastAPI(title="riskgate")
_settings_summary = validate_for_env(_settings)
logger.info(
    "[CFG] loaded",
    extra={
        "env": _settings_summary.get("env"),
        "ledger_backend": _settings_summary.get("ledger_backend"),
        "thresholds": _settings_summary.get("thresholds"),
        "content_provider": _settings_summary.get("content_provider"),
        "issues": _settings_summary.get("issues"),
    },
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)

app.include_router(content.router)
app.include_router(admin.router)


@app.get("/health")
async def health(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return {
        "status": "ok",
        "version": APP_VERSION,
        "uptime_seconds": int(time.monotonic() - _start_time),
        "ledger_backend": services.settings.ledger_backend,
    }


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    counter("validation_errors_total")
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid input",
            "message": "Request body failed validation",
            "details": jsonable_encoder(exc.errors(), exclude={"input", "ctx"}),
        },
    )


@app.exception_handler(LedgerUnavailableError)
async def handle_ledger_unavailable(request: Request, exc: LedgerUnavailableError) -> JSONResponse:
    logger.error("[LEDGER] unavailable during request", extra={"path": request.url.path})
    counter("ledger_unavailable_total")
    return JSONResponse(
        status_code=503,
        content={"error": "service_unavailable", "message": "Abuse ledger unavailable, try again later"},
    )


@app.exception_handler(AdminAuthError)
async def handle_admin_auth(request: Request, exc: AdminAuthError) -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "Unauthorized", "message": str(exc)})


@app.exception_handler(ContentGenerationError)
async def handle_generation_error(request: Request, exc: ContentGenerationError) -> JSONResponse:
    logger.error("[CONTENT] generation failed", extra={"provider": exc.provider, "detail": safe_error_detail(exc)})
    counter("content_generation_failures_total", labels={"provider": exc.provider})
    return JSONResponse(
        status_code=502,
        content={"error": "content_generation_failed", "message": "Failed to generate content"},
    )


@app.exception_handler(UnknownAccountError)
async def handle_unknown_account(request: Request, exc: UnknownAccountError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": "account_missing", "message": "Session account expired"})


@app.exception_handler(Exception)
async def handle_unhandled_exception(request: Request, exc: Exception) -> JSONResponse:  # noqa: BLE001
    logger.exception("Unhandled error in request")
    content = {"ok": False, "error_code": "internal_error", "message": "Internal server error"}
    if str(_settings.debug_errors) == "1":
        content["detail"] = safe_error_detail(exc)
    return JSONResponse(status_code=500, content=content)


def run() -> None:
    import uvicorn

    uvicorn.run("riskgate.main:app", host=_settings.api_host, port=_settings.api_port, log_level="info")


if __name__ == "__main__":
    run()
