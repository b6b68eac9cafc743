"""Payment provider webhook endpoint."""

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from billing_reconciler.billing.service import process_webhook
from billing_reconciler.core.exceptions import ReconciliationError, WebhookError

logger = structlog.get_logger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "creem-signature"


class WebhookResponse(BaseModel):
    received: bool
    message: str | None = None


@router.post("/webhooks/creem", response_model=WebhookResponse)
async def creem_webhook(request: Request):
    """Receive a Creem event.

    2xx tells the provider to stop retrying: returned for applied events,
    duplicates and ignored event types. Every failure returns a non-2xx
    status with ``received: false`` so the provider redelivers later.
    """
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        result = await process_webhook(body, signature)
    except WebhookError as exc:
        if isinstance(exc, ReconciliationError):
            logger.error(
                "webhook_reconciliation_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
        else:
            logger.warning("webhook_rejected", error=str(exc), error_type=type(exc).__name__)
        return JSONResponse(
            status_code=exc.status_code,
            content={"received": False, "message": str(exc)},
        )

    return WebhookResponse(received=result.received, message=result.message)
