"""Event router: classify a decoded webhook and hand it to the right handler.

Classification is a pure function of the envelope (``route_event``) so it can
be tested without a database; ``dispatch`` runs the chosen handler on the
transaction session.
"""

import enum
from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_reconciler.billing import reconciler
from billing_reconciler.billing.events import (
    CheckoutObject,
    PaymentObject,
    SubscriptionObject,
    WebhookEnvelope,
    is_checkout_object,
    is_payment_object,
    is_subscription_object,
)
from billing_reconciler.billing.reconciler import RenewalSource
from billing_reconciler.core.exceptions import MalformedPayloadError

logger = structlog.get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.completed"
PAYMENT_SUCCEEDED = "payment.succeeded"
SUBSCRIPTION_PAID = "subscription.paid"
SUBSCRIPTION_LIFECYCLE_EVENTS = frozenset({
    "subscription.active",
    "subscription.updated",
    "subscription.canceled",
    "subscription.expired",
    "subscription.past_due",
})
RECOGNIZED_EVENT_TYPES = frozenset(
    {CHECKOUT_COMPLETED, PAYMENT_SUCCEEDED, SUBSCRIPTION_PAID} | SUBSCRIPTION_LIFECYCLE_EVENTS
)

RENEWAL_BILLING_REASON = "subscription_cycle"


class Route(str, enum.Enum):
    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_EVENT = "subscription_event"
    SUBSCRIPTION_RENEWAL = "subscription_renewal"
    PAYMENT_SUCCEEDED = "payment_succeeded"


@dataclass
class RoutedEvent:
    route: Route
    event_type: str
    payload: CheckoutObject | SubscriptionObject | PaymentObject | RenewalSource


def _parse(model: type[BaseModel], raw: dict[str, Any]) -> BaseModel:
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise MalformedPayloadError(
            f"Invalid {model.__name__} in webhook: {exc.error_count()} validation error(s)"
        ) from exc


def route_event(envelope: WebhookEnvelope) -> RoutedEvent | None:
    """Pick the handler for an event, or None if it should be skipped.

    Returns None for event types outside the recognized set and for
    recognized types whose object fails the structural probe.
    """
    event_type = envelope.event_type
    obj = envelope.object

    if event_type not in RECOGNIZED_EVENT_TYPES:
        logger.info("webhook_event_type_ignored", event_type=event_type)
        return None

    if event_type == CHECKOUT_COMPLETED:
        if is_checkout_object(obj):
            return RoutedEvent(Route.CHECKOUT_COMPLETED, event_type, _parse(CheckoutObject, obj))

    elif event_type == PAYMENT_SUCCEEDED:
        if is_payment_object(obj):
            payment = _parse(PaymentObject, obj)
            # A recurring charge must also roll the subscription period forward
            if payment.billing_reason == RENEWAL_BILLING_REASON:
                return RoutedEvent(Route.SUBSCRIPTION_RENEWAL, event_type, RenewalSource(payment=payment))
            return RoutedEvent(Route.PAYMENT_SUCCEEDED, event_type, payment)

    elif event_type in SUBSCRIPTION_LIFECYCLE_EVENTS:
        if is_subscription_object(obj):
            return RoutedEvent(Route.SUBSCRIPTION_EVENT, event_type, _parse(SubscriptionObject, obj))

    elif event_type == SUBSCRIPTION_PAID:
        payment = _parse(PaymentObject, obj) if is_payment_object(obj) else None
        subscription = _parse(SubscriptionObject, obj) if is_subscription_object(obj) else None
        if payment is not None or subscription is not None:
            return RoutedEvent(
                Route.SUBSCRIPTION_RENEWAL,
                event_type,
                RenewalSource(payment=payment, subscription=subscription),
            )

    logger.warning("webhook_event_shape_mismatch", event_type=event_type, object_id=envelope.object_id)
    return None


_HANDLERS = {
    Route.CHECKOUT_COMPLETED: reconciler.handle_checkout_completed,
    Route.SUBSCRIPTION_EVENT: reconciler.handle_subscription_event,
    Route.SUBSCRIPTION_RENEWAL: reconciler.handle_subscription_renewal,
    Route.PAYMENT_SUCCEEDED: reconciler.handle_payment_succeeded,
}


async def dispatch(session: AsyncSession, routed: RoutedEvent) -> None:
    """Run the handler for a routed event inside the caller's transaction."""
    handler = _HANDLERS[routed.route]
    logger.info("webhook_dispatch", route=routed.route.value, event_type=routed.event_type)
    await handler(session, routed.payload)
