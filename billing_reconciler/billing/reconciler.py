"""Event handlers that reconcile subscriptions, payments and users.

Every handler runs inside the webhook transaction and raises a
ReconciliationError subclass when the event cannot be applied, which rolls
back the whole delivery (ledger row included) so the provider retries it.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from billing_reconciler.billing.catalog import resolve_product_id
from billing_reconciler.billing.customers import find_user_by_customer_id
from billing_reconciler.billing.events import (
    CheckoutObject,
    Metadata,
    PaymentObject,
    SubscriptionObject,
    extract_customer_id,
)
from billing_reconciler.billing.repository import (
    PaymentUpsert,
    SubscriptionUpsert,
    set_user_customer_id,
    upsert_payment,
    upsert_subscription,
)
from billing_reconciler.core.exceptions import (
    MissingRequiredFieldError,
    UnresolvablePeriodError,
    UnsupportedPaymentModeError,
    UserNotFoundError,
)
from billing_reconciler.db.models.user import User

logger = structlog.get_logger(__name__)

PAYMENT_MODE_SUBSCRIPTION = "subscription"
PAYMENT_MODE_ONE_TIME = "one_time"


@dataclass
class RenewalSource:
    """A renewal trigger viewed as a payment, a subscription, or both.

    The same raw object can pass both probes; each view is set when its
    probe matched.
    """

    payment: PaymentObject | None = None
    subscription: SubscriptionObject | None = None

    @property
    def object_id(self) -> str:
        source = self.payment or self.subscription
        return source.id


async def _require_user(session: AsyncSession, customer_id: str, context: str) -> User:
    user = await find_user_by_customer_id(session, customer_id)
    if user is None:
        raise UserNotFoundError(f"User not found for customer {customer_id} on {context}")
    return user


# ── checkout.completed ──────────────────────────────────────────────


async def handle_checkout_completed(session: AsyncSession, checkout: CheckoutObject) -> None:
    """Bind the customer to the user and record the purchase.

    This is the only event that creates the user <-> customer binding, so
    ``metadata.userId`` is mandatory.
    """
    context = f"checkout {checkout.id}"
    if not checkout.customer:
        raise MissingRequiredFieldError("customer", context)
    order = checkout.order
    if order is None:
        raise MissingRequiredFieldError("order", context)

    metadata = checkout.metadata or Metadata()
    user_id = metadata.user_id
    if not user_id:
        raise MissingRequiredFieldError("metadata.userId", context)

    customer_id = extract_customer_id(checkout.customer, context)
    if not await set_user_customer_id(session, user_id, customer_id):
        raise UserNotFoundError(f"User {user_id} from checkout metadata does not exist")

    payment_mode = metadata.payment_mode or PAYMENT_MODE_SUBSCRIPTION
    if payment_mode not in (PAYMENT_MODE_SUBSCRIPTION, PAYMENT_MODE_ONE_TIME):
        raise UnsupportedPaymentModeError(payment_mode)

    if not order.transaction:
        raise MissingRequiredFieldError("order.transaction", context)

    if payment_mode == PAYMENT_MODE_SUBSCRIPTION:
        subscription = checkout.subscription
        if subscription is None:
            raise MissingRequiredFieldError("subscription", context)
        raw_product_id = subscription.product_id
        if not raw_product_id:
            raise MissingRequiredFieldError("subscription.product", context)
        product_id = resolve_product_id(raw_product_id)

        await upsert_subscription(
            session,
            SubscriptionUpsert(
                user_id=user_id,
                customer_id=customer_id,
                subscription_id=subscription.id,
                product_id=product_id,
                status=subscription.status,
                current_period_start=subscription.current_period_start_date,
                current_period_end=subscription.current_period_end_date,
                canceled_at=subscription.canceled_at,
            ),
        )
        await upsert_payment(
            session,
            PaymentUpsert(
                user_id=user_id,
                customer_id=customer_id,
                subscription_id=subscription.id,
                product_id=product_id,
                payment_id=order.transaction,
                amount=order.amount_due,
                currency=order.currency,
                status="succeeded",
                payment_type=PAYMENT_MODE_SUBSCRIPTION,
            ),
        )
    else:
        raw_product_id = metadata.tier_id or order.id
        if not raw_product_id:
            raise MissingRequiredFieldError("metadata.tierId", context)

        await upsert_payment(
            session,
            PaymentUpsert(
                user_id=user_id,
                customer_id=customer_id,
                subscription_id=None,
                product_id=resolve_product_id(raw_product_id),
                payment_id=order.transaction,
                amount=order.amount_due,
                currency=order.currency,
                status="succeeded",
                payment_type=PAYMENT_MODE_ONE_TIME,
            ),
        )

    logger.info("checkout_completed_applied", user_id=user_id, payment_mode=payment_mode)


# ── subscription.* lifecycle ────────────────────────────────────────


async def handle_subscription_event(session: AsyncSession, subscription: SubscriptionObject) -> None:
    """Overwrite status, period bounds and canceled_at from the incoming object."""
    context = f"subscription {subscription.id}"
    customer_id = extract_customer_id(subscription.customer, context)
    user = await _require_user(session, customer_id, context)

    raw_product_id = subscription.product_id
    if not raw_product_id:
        raise MissingRequiredFieldError("product", context)

    await upsert_subscription(
        session,
        SubscriptionUpsert(
            user_id=user.id,
            customer_id=customer_id,
            subscription_id=subscription.id,
            product_id=resolve_product_id(raw_product_id),
            status=subscription.status,
            current_period_start=subscription.current_period_start_date,
            current_period_end=subscription.current_period_end_date,
            canceled_at=subscription.canceled_at,
        ),
    )


# ── renewal ─────────────────────────────────────────────────────────


def _renewal_period(renewal: RenewalSource) -> tuple[datetime, datetime]:
    """Line-item period (unix seconds) first, then the subscription's own period."""
    line = renewal.payment.first_line if renewal.payment else None
    if line is not None and line.period is not None:
        return (
            datetime.fromtimestamp(line.period.start, tz=UTC),
            datetime.fromtimestamp(line.period.end, tz=UTC),
        )

    subscription = renewal.subscription
    if (
        subscription is not None
        and subscription.current_period_start_date is not None
        and subscription.current_period_end_date is not None
    ):
        return subscription.current_period_start_date, subscription.current_period_end_date

    raise UnresolvablePeriodError(
        f"Could not determine the new billing period for renewal {renewal.object_id}"
    )


async def handle_subscription_renewal(session: AsyncSession, renewal: RenewalSource) -> None:
    """Advance the subscription's period and, for payment triggers, record the charge."""
    source = renewal.payment or renewal.subscription
    context = f"renewal {source.id}"
    customer_id = extract_customer_id(source.customer, context)

    subscription_id = source.id
    if renewal.payment is not None:
        # Same precedence as the payment row written below, so both rows agree
        subscription_id = renewal.payment.subscription_id or renewal.payment.subscription or source.id

    user = await _require_user(session, customer_id, context)
    period_start, period_end = _renewal_period(renewal)

    raw_product_id = renewal.payment.resolve_product_id() if renewal.payment else None
    if not raw_product_id and renewal.subscription is not None:
        raw_product_id = renewal.subscription.product_id
    if not raw_product_id:
        raise MissingRequiredFieldError("product_id", context)

    await upsert_subscription(
        session,
        SubscriptionUpsert(
            user_id=user.id,
            customer_id=customer_id,
            subscription_id=subscription_id,
            product_id=resolve_product_id(raw_product_id),
            status="active",
            current_period_start=period_start,
            current_period_end=period_end,
            canceled_at=None,
        ),
    )
    logger.info("subscription_renewed", subscription_id=subscription_id, period_end=period_end.isoformat())

    if renewal.payment is not None:
        await handle_payment_succeeded(session, renewal.payment, default_product_id=raw_product_id)


# ── payment.succeeded ───────────────────────────────────────────────


async def handle_payment_succeeded(
    session: AsyncSession,
    payment: PaymentObject,
    default_product_id: str | None = None,
) -> None:
    context = f"payment {payment.id}"
    customer_id = extract_customer_id(payment.customer, context)
    user = await _require_user(session, customer_id, context)

    raw_product_id = payment.resolve_product_id() or default_product_id
    if not raw_product_id:
        raise MissingRequiredFieldError("product_id", context)

    amount = payment.amount if payment.amount is not None else payment.amount_paid
    payment_mode = payment.metadata.payment_mode if payment.metadata else None

    await upsert_payment(
        session,
        PaymentUpsert(
            user_id=user.id,
            customer_id=customer_id,
            subscription_id=payment.subscription_id or payment.subscription,
            product_id=resolve_product_id(raw_product_id),
            payment_id=payment.id,
            amount=amount or 0,
            currency=payment.currency or "usd",
            status="succeeded",
            payment_type=payment_mode or PAYMENT_MODE_SUBSCRIPTION,
        ),
    )
