"""Handler-level tests for checkout validation and renewal period resolution."""

from datetime import UTC, datetime

import pytest

from billing_reconciler.billing.events import CheckoutObject, PaymentObject, SubscriptionObject
from billing_reconciler.billing.reconciler import (
    RenewalSource,
    _renewal_period,
    handle_checkout_completed,
)
from billing_reconciler.core.exceptions import (
    MissingRequiredFieldError,
    UnresolvablePeriodError,
    UnsupportedPaymentModeError,
)

pytestmark = pytest.mark.integration


def _checkout(**overrides) -> CheckoutObject:
    data = {
        "id": "ch_1",
        "customer": "cus_1",
        "order": {"transaction": "tx_1", "amount_due": 999},
        "metadata": {"userId": "u1", "paymentMode": "one_time", "tierId": "basic"},
    }
    data.update(overrides)
    return CheckoutObject.model_validate(data)


class TestCheckoutValidation:
    @pytest.fixture(autouse=True)
    async def _user(self, seed_user):
        await seed_user("u1")

    async def _apply(self, session_factory, checkout: CheckoutObject) -> None:
        async with session_factory() as session, session.begin():
            await handle_checkout_completed(session, checkout)

    async def test_missing_customer(self, session_factory):
        with pytest.raises(MissingRequiredFieldError) as exc_info:
            await self._apply(session_factory, _checkout(customer=None))
        assert exc_info.value.field == "customer"

    async def test_missing_order(self, session_factory):
        with pytest.raises(MissingRequiredFieldError) as exc_info:
            await self._apply(session_factory, _checkout(order=None))
        assert exc_info.value.field == "order"

    async def test_unsupported_payment_mode(self, session_factory):
        checkout = _checkout(metadata={"userId": "u1", "paymentMode": "installments"})
        with pytest.raises(UnsupportedPaymentModeError) as exc_info:
            await self._apply(session_factory, checkout)
        assert exc_info.value.payment_mode == "installments"

    async def test_missing_transaction(self, session_factory):
        with pytest.raises(MissingRequiredFieldError) as exc_info:
            await self._apply(session_factory, _checkout(order={"amount_due": 999}))
        assert exc_info.value.field == "order.transaction"

    async def test_subscription_mode_without_subscription(self, session_factory):
        checkout = _checkout(metadata={"userId": "u1", "paymentMode": "subscription"})
        with pytest.raises(MissingRequiredFieldError) as exc_info:
            await self._apply(session_factory, checkout)
        assert exc_info.value.field == "subscription"

    async def test_one_time_falls_back_to_order_id(self, session_factory):
        from sqlalchemy import select

        from billing_reconciler.db.models import Payment

        checkout = _checkout(
            order={"id": "prod_bulk_100_credits", "transaction": "tx_ord", "amount_due": 5999},
            metadata={"userId": "u1", "paymentMode": "one_time"},
        )
        await self._apply(session_factory, checkout)

        async with session_factory() as session:
            payment = (await session.execute(select(Payment))).scalar_one()
        assert payment.product_id == "credits_bulk"

    async def test_one_time_without_tier_or_order_id(self, session_factory):
        checkout = _checkout(metadata={"userId": "u1", "paymentMode": "one_time"})
        with pytest.raises(MissingRequiredFieldError) as exc_info:
            await self._apply(session_factory, checkout)
        assert exc_info.value.field == "metadata.tierId"


class TestRenewalPeriod:
    def test_line_period_wins(self):
        payment = PaymentObject.model_validate(
            {"id": "p", "amount": 1, "lines": {"data": [{"period": {"start": 1706745600, "end": 1709251200}}]}}
        )
        subscription = SubscriptionObject.model_validate(
            {
                "id": "s",
                "status": "active",
                "current_period_start_date": "2030-01-01T00:00:00Z",
                "current_period_end_date": "2030-02-01T00:00:00Z",
            }
        )

        start, end = _renewal_period(RenewalSource(payment=payment, subscription=subscription))

        assert start == datetime(2024, 2, 1, tzinfo=UTC)
        assert end == datetime(2024, 3, 1, tzinfo=UTC)

    def test_falls_back_to_subscription_dates(self):
        subscription = SubscriptionObject.model_validate(
            {
                "id": "s",
                "status": "active",
                "current_period_start_date": "2030-01-01T00:00:00Z",
                "current_period_end_date": "2030-02-01T00:00:00Z",
            }
        )

        start, end = _renewal_period(RenewalSource(subscription=subscription))

        assert end == datetime(2030, 2, 1, tzinfo=UTC)

    def test_no_period_raises(self):
        payment = PaymentObject.model_validate({"id": "p", "amount": 1})
        with pytest.raises(UnresolvablePeriodError):
            _renewal_period(RenewalSource(payment=payment))
