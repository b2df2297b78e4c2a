"""FastAPI application factory."""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from . import __version__
from .api import router as inventory_router
from .config import Settings, get_settings
from .database import get_session_factory, init_database
from .exceptions import StockLedgerError, ValidationError
from .logging_config import bind_request_context, clear_request_context, configure_logging
from .operations import StockService
from .schemas import ErrorRead

logger = structlog.get_logger(__name__)

RETRY_AFTER_SECONDS = "1"


def _error_response(status_code: int, detail: str, code: str, retryable: bool = False, **extra) -> JSONResponse:
    body = ErrorRead(detail=detail, code=code, retryable=retryable).model_dump()
    body.update(extra)
    headers: dict[str, str] = {}
    if retryable:
        headers["Retry-After"] = RETRY_AFTER_SECONDS
    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(status_code=status_code, content=body, headers=headers or None)


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StockLedgerError)
    async def handle_ledger_error(request: Request, exc: StockLedgerError) -> JSONResponse:
        logger.info("request_rejected", code=exc.code, status=exc.status_code, detail=exc.message)
        return _error_response(exc.status_code, exc.message, exc.code, exc.retryable)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
            for error in exc.errors()
        ]
        summary = "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in errors)
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            summary or "Invalid request",
            ValidationError.code,
            errors=errors,
        )

    @app.exception_handler(SQLAlchemyError)
    async def handle_storage_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("storage_failure", error=str(exc))
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Storage failure", "STORAGE_ERROR")


def create_app(
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Without an explicit *session_factory* the configured database is used and
    its schema created on first start.
    """

    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_json)
    if session_factory is None:
        init_database()
        session_factory = get_session_factory()

    app = FastAPI(title=settings.app_name, version=__version__)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.stock_service = StockService.from_settings(settings, session_factory)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        clear_request_context()
        bind_request_context(
            request_id=request.headers.get("x-request-id") or uuid.uuid4().hex,
            method=request.method,
            path=request.url.path,
        )
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "request_completed",
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response

    @app.get("/health", tags=["system"])
    def health_check() -> dict[str, str]:
        return {
            "status": "healthy",
            "service": "inventory-ledger",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    _install_error_handlers(app)
    app.include_router(inventory_router, prefix=settings.api_prefix)
    return app
