"""Persistence helpers for subscriptions, payments and the user's customer id.

Upserts use the dialect's INSERT .. ON CONFLICT so two transactions touching
the same provider id cannot create duplicate rows.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from billing_reconciler.db.models.payment import Payment
from billing_reconciler.db.models.subscription import Subscription, SubscriptionStatus
from billing_reconciler.db.models.user import User

logger = structlog.get_logger(__name__)

_LIVE_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)


@dataclass
class SubscriptionUpsert:
    user_id: str
    customer_id: str
    subscription_id: str
    product_id: str
    status: str
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    canceled_at: datetime | None = None


@dataclass
class PaymentUpsert:
    user_id: str
    customer_id: str
    subscription_id: str | None
    product_id: str
    payment_id: str
    amount: int
    currency: str
    status: str
    payment_type: str


def _insert(session: AsyncSession, model):
    """Dialect-specific INSERT that supports ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Upsert not supported for dialect: {dialect}")


async def upsert_subscription(session: AsyncSession, data: SubscriptionUpsert) -> None:
    """Insert the subscription or overwrite its mutable fields (last write wins)."""
    now = datetime.now(UTC)
    stmt = _insert(session, Subscription).values(
        user_id=data.user_id,
        customer_id=data.customer_id,
        subscription_id=data.subscription_id,
        product_id=data.product_id,
        status=data.status,
        current_period_start=data.current_period_start,
        current_period_end=data.current_period_end,
        canceled_at=data.canceled_at,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["subscription_id"],
        set_={
            "status": data.status,
            "product_id": data.product_id,
            "current_period_start": data.current_period_start,
            "current_period_end": data.current_period_end,
            "canceled_at": data.canceled_at,
            "updated_at": now,
        },
    )
    await session.execute(stmt)
    logger.info(
        "subscription_upserted",
        subscription_id=data.subscription_id,
        status=data.status,
        product_id=data.product_id,
    )


async def upsert_payment(session: AsyncSession, data: PaymentUpsert) -> None:
    """Insert the payment; a repeated payment id only refreshes its status."""
    now = datetime.now(UTC)
    stmt = _insert(session, Payment).values(
        user_id=data.user_id,
        customer_id=data.customer_id,
        subscription_id=data.subscription_id,
        product_id=data.product_id,
        payment_id=data.payment_id,
        amount=data.amount,
        currency=data.currency,
        status=data.status,
        payment_type=data.payment_type,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["payment_id"],
        set_={"status": data.status, "updated_at": now},
    )
    await session.execute(stmt)
    logger.info(
        "payment_upserted",
        payment_id=data.payment_id,
        payment_type=data.payment_type,
        amount=data.amount,
    )


async def set_user_customer_id(session: AsyncSession, user_id: str, customer_id: str) -> bool:
    """Bind the provider customer id to the user. Returns False if the user does not exist."""
    result = await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(payment_provider_customer_id=customer_id, updated_at=datetime.now(UTC))
    )
    return result.rowcount > 0


async def get_subscription(session: AsyncSession, subscription_id: str) -> Subscription | None:
    result = await session.execute(
        select(Subscription).where(Subscription.subscription_id == subscription_id)
    )
    return result.scalar_one_or_none()


async def get_user_subscription(session: AsyncSession, user_id: str) -> Subscription | None:
    """Most recent active/trialing subscription, else the most recent of any status."""
    result = await session.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
    )
    subscriptions = result.scalars().all()
    if not subscriptions:
        return None

    live = [s for s in subscriptions if s.status in _LIVE_STATUSES]
    if len(live) > 1:
        logger.warning(
            "multiple_live_subscriptions",
            user_id=user_id,
            subscription_ids=[s.subscription_id for s in live],
        )
    return live[0] if live else subscriptions[0]


async def get_user_payments(session: AsyncSession, user_id: str, limit: int = 10) -> list[Payment]:
    """Newest payments first."""
    result = await session.execute(
        select(Payment)
        .where(Payment.user_id == user_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
