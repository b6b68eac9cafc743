"""Billing reconciler: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# Logging is configured before any module below calls structlog.get_logger
from billing_reconciler.core.logging import configure_structlog
from billing_reconciler.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse

from billing_reconciler.api.routes import api_router
from billing_reconciler.core.config import get_settings
from billing_reconciler.db import init_db, close_db
from billing_reconciler.middleware.correlation import (
    setup_correlation_middleware,
    get_correlation_id,
)

logger = structlog.get_logger(__name__)


def validate_webhook_config() -> None:
    """Refuse to start in production without a webhook secret.

    Debug mode only warns, so local runs work without provider credentials.
    """
    settings = get_settings()
    missing = [
        name
        for name, value in (
            ("CREEM_WEBHOOK_SECRET", settings.creem_webhook_secret),
            ("CREEM_API_KEY", settings.creem_api_key),
        )
        if not value
    ]
    if not missing:
        return

    if settings.debug:
        logger.warning("provider_config_incomplete", missing=missing)
        return
    if "CREEM_WEBHOOK_SECRET" in missing:
        raise RuntimeError("Missing CREEM_WEBHOOK_SECRET at startup")
    # Webhooks still work without an API key; only admin cancellation needs it
    logger.warning("provider_config_incomplete", missing=missing)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.shutting_down = False

    def _on_sigterm(signum, frame):
        # /api/health answers 503 from here on so the balancer drains us
        app.state.shutting_down = True
        logger.info("sigterm_received", draining=True)

    signal.signal(signal.SIGTERM, _on_sigterm)

    settings = get_settings()
    logger.info("billing_reconciler_starting", app_name=settings.app_name)

    validate_webhook_config()
    await init_db()
    logger.info("billing_reconciler_ready")

    yield

    await close_db()
    logger.info("billing_reconciler_stopped")


def _error_response(status_code: int, detail: str, debug_id: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "debug_id": debug_id})


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Log the HTTPException with a debug_id the caller can quote back to us."""
    debug_id = str(uuid.uuid4())
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        method=request.method,
        path=request.url.path,
    )
    return _error_response(exc.status_code, exc.detail, debug_id)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: full traceback in the log, nothing internal in the response."""
    debug_id = str(uuid.uuid4())
    logger.error(
        "unhandled_exception",
        error_type=type(exc).__name__,
        error=str(exc),
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        method=request.method,
        path=request.url.path,
        exc_info=True,
    )
    return _error_response(500, "Internal server error", debug_id)


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Payment provider webhook reconciliation",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    setup_correlation_middleware(app)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)
    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("billing_reconciler.main:app", host="0.0.0.0", port=8000)
