"""Liveness and readiness probes for the load balancer."""

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from billing_reconciler.core.config import get_settings
from billing_reconciler.core.logging import SERVICE_NAME
from billing_reconciler.db.base import get_session_factory
from billing_reconciler.db.models import WebhookEventRecord

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Liveness. Answers 503 once SIGTERM arrives so traffic drains away."""
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(status_code=503, content={"status": "shutting_down", "service": SERVICE_NAME})
    return {"status": "healthy", "service": SERVICE_NAME}


async def _ledger_reachable() -> bool:
    try:
        async with get_session_factory()() as session:
            await session.execute(select(WebhookEventRecord.id).limit(1))
    except (SQLAlchemyError, OSError, RuntimeError) as exc:
        logger.error("readiness_database_failed", error=str(exc), error_type=type(exc).__name__)
        return False
    return True


@router.get("/ready")
async def readiness_check():
    """Ready when the ledger table answers and webhooks can be verified."""
    checks = {
        "database": await _ledger_reachable(),
        "webhook_secret": bool(get_settings().creem_webhook_secret),
    }
    ready = all(checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "degraded", "checks": checks},
    )
