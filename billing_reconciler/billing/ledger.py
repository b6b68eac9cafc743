"""Idempotency ledger: which event identities have already been applied.

Both operations run on the caller's session so the ledger row commits or
rolls back together with the domain changes it guards.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_reconciler.core.exceptions import ConcurrentDeliveryError
from billing_reconciler.db.models.webhook_event import WebhookEventRecord

logger = structlog.get_logger(__name__)

PROVIDER = "creem"


async def is_processed(session: AsyncSession, event_id: str) -> bool:
    """Return True if a ledger row exists for this event identity.

    Matches on ``event_id`` alone, the same key the UNIQUE constraint uses, so
    a row that blocks the insert is always found by this check.
    """
    result = await session.execute(
        select(WebhookEventRecord.id).where(WebhookEventRecord.event_id == event_id).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def record(
    session: AsyncSession,
    event_id: str,
    event_type: str,
    payload: str | None = None,
    provider: str = PROVIDER,
) -> WebhookEventRecord:
    """Insert the ledger row and flush so the UNIQUE constraint fires now.

    Raises ConcurrentDeliveryError if another transaction inserted the same
    identity first. The caller's transaction is unusable afterwards and must
    roll back.
    """
    row = WebhookEventRecord(
        event_id=event_id,
        event_type=event_type,
        provider=provider,
        payload=payload,
    )
    session.add(row)
    try:
        await session.flush()
    except IntegrityError as exc:
        logger.warning("webhook_ledger_insert_conflict", event_id=event_id)
        raise ConcurrentDeliveryError(event_id) from exc
    return row
