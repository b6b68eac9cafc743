"""Customer resolver: provider customer id -> internal user."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_reconciler.db.models.user import User


async def find_user_by_customer_id(session: AsyncSession, customer_id: str) -> User | None:
    """Straight lookup on the stored provider customer id. No fallbacks."""
    result = await session.execute(
        select(User).where(User.payment_provider_customer_id == customer_id).limit(1)
    )
    return result.scalar_one_or_none()
