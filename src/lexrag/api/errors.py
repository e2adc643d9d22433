"""Map lexrag exceptions to HTTP responses.

Rejections keep their machine-readable code. Hard failures are logged with
their detail and answered with a generic 500.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic.alias_generators import to_camel

from lexrag.config import ConfigError
from lexrag.errors import (
    ACCOUNT_INACTIVE,
    EMPTY_MESSAGE,
    TOKEN_LIMIT_EXCEEDED,
    TOKENS_REQUIRED,
    UNAUTHORIZED,
    URL_INVALID,
    USER_NOT_FOUND,
    FetchError,
    IngestionError,
    LexragError,
    RejectionError,
)

log = structlog.get_logger(__name__)

REJECTION_STATUS: dict[str, int] = {
    EMPTY_MESSAGE: 400,
    UNAUTHORIZED: 401,
    TOKENS_REQUIRED: 402,
    TOKEN_LIMIT_EXCEEDED: 402,
    ACCOUNT_INACTIVE: 403,
    USER_NOT_FOUND: 404,
    URL_INVALID: 422,
}

_INGESTION_STATUS: dict[str, int] = {
    "not_found": 404,
    "already_processed": 409,
    "storage_failed": 500,
}

INTERNAL_ERROR = {"error": "Internal server error", "code": "INTERNAL_ERROR"}


def _rejection(request: Request, exc: RejectionError) -> JSONResponse:
    body = {"error": exc.message, "code": exc.code}
    body.update({to_camel(k): v for k, v in exc.details.items()})
    return JSONResponse(status_code=REJECTION_STATUS.get(exc.code, 400), content=body)


def _fetch_error(request: Request, exc: FetchError) -> JSONResponse:
    log.warning("api.fetch_failed", url=exc.url, kind=exc.kind, error=str(exc))
    return JSONResponse(
        status_code=422,
        content={"error": str(exc), "code": f"FETCH_{exc.kind.upper()}", "transient": exc.transient},
    )


def _ingestion_error(request: Request, exc: IngestionError) -> JSONResponse:
    status = _INGESTION_STATUS.get(exc.reason, 422)
    if status == 500:
        log.error("api.ingestion_failed", reason=exc.reason, error=str(exc))
        return JSONResponse(status_code=500, content=INTERNAL_ERROR)
    return JSONResponse(
        status_code=status,
        content={"error": str(exc), "code": f"INGESTION_{exc.reason.upper()}"},
    )


def _config_error(request: Request, exc: ConfigError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc), "code": "INVALID_REQUEST"})


def _internal(request: Request, exc: Exception) -> JSONResponse:
    log.error(
        "api.internal_error",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return JSONResponse(status_code=500, content=INTERNAL_ERROR)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RejectionError, _rejection)
    app.add_exception_handler(FetchError, _fetch_error)
    app.add_exception_handler(IngestionError, _ingestion_error)
    app.add_exception_handler(ConfigError, _config_error)
    # GenerationError, EmbeddingError, SearchError and anything else.
    app.add_exception_handler(LexragError, _internal)
    app.add_exception_handler(Exception, _internal)
