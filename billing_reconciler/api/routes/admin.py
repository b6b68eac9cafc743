"""Admin billing routes: subscription lookup, payment history and cancellation."""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from billing_reconciler.billing import repository
from billing_reconciler.billing.catalog import get_tier_by_id, get_tier_by_product_id
from billing_reconciler.billing.provider import PaymentProviderClient, get_provider_client
from billing_reconciler.core.auth import require_admin
from billing_reconciler.core.exceptions import ProviderAPIError
from billing_reconciler.db.base import get_session_factory

logger = structlog.get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


# ── Response schemas ────────────────────────────────────────────────


class SubscriptionResponse(BaseModel):
    subscription_id: str
    user_id: str
    customer_id: str
    status: str
    tier_id: str
    current_period_start: datetime | None
    current_period_end: datetime | None
    canceled_at: datetime | None


class PaymentResponse(BaseModel):
    payment_id: str
    subscription_id: str | None
    product_id: str
    tier_id: str
    tier_name: str
    amount: int  # minor units
    currency: str
    status: str
    payment_type: str
    created_at: datetime


class CancelResponse(BaseModel):
    message: str


# ── Endpoints ───────────────────────────────────────────────────────


@router.get("/users/{user_id}/subscription", response_model=SubscriptionResponse)
async def get_user_subscription(user_id: str):
    """Return the user's current subscription with its resolved tier."""
    factory = get_session_factory()
    async with factory() as session:
        subscription = await repository.get_user_subscription(session, user_id)

    if subscription is None:
        raise HTTPException(status_code=404, detail="Subscription not found")

    tier = get_tier_by_product_id(subscription.product_id)
    return SubscriptionResponse(
        subscription_id=subscription.subscription_id,
        user_id=subscription.user_id,
        customer_id=subscription.customer_id,
        status=subscription.status,
        tier_id=tier.id if tier else subscription.product_id,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        canceled_at=subscription.canceled_at,
    )


@router.get("/users/{user_id}/payments", response_model=list[PaymentResponse])
async def get_user_payments(user_id: str, limit: int = Query(default=10, ge=1, le=100)):
    """Return the user's most recent payments, newest first."""
    factory = get_session_factory()
    async with factory() as session:
        payments = await repository.get_user_payments(session, user_id, limit=limit)

    response = []
    for payment in payments:
        # Stored product ids are either provider ids or already-resolved tier ids
        tier = get_tier_by_product_id(payment.product_id) or get_tier_by_id(payment.product_id)
        response.append(
            PaymentResponse(
                payment_id=payment.payment_id,
                subscription_id=payment.subscription_id,
                product_id=payment.product_id,
                tier_id=tier.id if tier else payment.product_id,
                tier_name=tier.name if tier else "Unknown Product",
                amount=payment.amount,
                currency=payment.currency,
                status=payment.status,
                payment_type=payment.payment_type,
                created_at=payment.created_at,
            )
        )
    return response


@router.delete("/subscriptions/{subscription_id}", response_model=CancelResponse)
async def cancel_subscription(
    subscription_id: str,
    provider: PaymentProviderClient = Depends(get_provider_client),
):
    """Ask the provider to cancel; the resulting webhook updates the row."""
    factory = get_session_factory()
    async with factory() as session:
        subscription = await repository.get_subscription(session, subscription_id)

    if subscription is None:
        raise HTTPException(status_code=404, detail="Subscription not found")

    try:
        await provider.cancel_subscription(subscription.subscription_id)
    except ProviderAPIError as exc:
        logger.error("subscription_cancel_failed", subscription_id=subscription_id, error=str(exc))
        raise HTTPException(status_code=502, detail="Payment provider rejected the cancellation")

    logger.info("subscription_cancel_requested", subscription_id=subscription_id)
    return CancelResponse(message="Subscription cancellation initiated successfully.")
