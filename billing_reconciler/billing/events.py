"""Webhook payload models, structural probes and event identity.

The provider does not put a discriminant on the nested ``object``, so the
declared ``eventType`` chooses which variant to expect and the probe
functions below confirm it by key presence before the object is parsed.
"""

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from billing_reconciler.core.exceptions import MalformedPayloadError, MissingRequiredFieldError


class _ProviderModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, coerce_numbers_to_str=True)


# ── Shared pieces ───────────────────────────────────────────────────


class Metadata(_ProviderModel):
    """Checkout metadata we attach when creating the session. All keys optional."""

    user_id: str | None = Field(default=None, alias="userId")
    payment_mode: str | None = Field(default=None, alias="paymentMode")
    tier_id: str | None = Field(default=None, alias="tierId")
    billing_cycle: str | None = Field(default=None, alias="billingCycle")
    cancel_url: str | None = Field(default=None, alias="cancelUrl")
    failure_url: str | None = Field(default=None, alias="failureUrl")


class CustomerRef(_ProviderModel):
    id: str


class ProductRef(_ProviderModel):
    id: str


class Period(_ProviderModel):
    start: int  # unix seconds
    end: int


class Price(_ProviderModel):
    product: str | None = None


class LineItem(_ProviderModel):
    period: Period | None = None
    price: Price | None = None


class Lines(_ProviderModel):
    data: list[LineItem] = Field(default_factory=list)


class Order(_ProviderModel):
    id: str | None = None
    transaction: str | None = None
    amount_due: int = 0
    currency: str = "usd"


# ── Event object variants ───────────────────────────────────────────


class SubscriptionObject(_ProviderModel):
    id: str
    customer: str | CustomerRef | None = None
    product: str | ProductRef | None = None
    status: str
    current_period_start_date: datetime | None = None
    current_period_end_date: datetime | None = None
    canceled_at: datetime | None = None
    metadata: Metadata | None = None

    @property
    def product_id(self) -> str | None:
        if isinstance(self.product, ProductRef):
            return self.product.id
        return self.product


class PaymentObject(_ProviderModel):
    id: str
    customer: str | CustomerRef | None = None
    subscription_id: str | None = None
    subscription: str | None = None
    product_id: str | None = None
    amount: int | None = None
    amount_paid: int | None = None
    currency: str | None = None
    billing_reason: str | None = None
    lines: Lines | None = None
    metadata: Metadata | None = None

    @property
    def first_line(self) -> LineItem | None:
        if self.lines and self.lines.data:
            return self.lines.data[0]
        return None

    def resolve_product_id(self) -> str | None:
        """Direct ``product_id`` first, then the first line item's price product."""
        if self.product_id:
            return self.product_id
        line = self.first_line
        if line and line.price and line.price.product:
            return line.price.product
        return None


class CheckoutObject(_ProviderModel):
    id: str
    customer: str | CustomerRef | None = None
    order: Order | None = None
    subscription: SubscriptionObject | None = None
    metadata: Metadata | None = None


EventObject = CheckoutObject | SubscriptionObject | PaymentObject


# ── Envelope ────────────────────────────────────────────────────────


class WebhookEnvelope(_ProviderModel):
    """Top-level event: declared type plus the raw nested object."""

    id: str | None = None
    event_type: str = Field(alias="eventType")
    created_at: int | None = None
    object: dict[str, Any]

    @property
    def object_id(self) -> str:
        return str(self.object["id"])


def parse_envelope(payload: bytes | str) -> WebhookEnvelope:
    """Decode the raw body into an envelope.

    Raises MalformedPayloadError if the body is not JSON, or if it lacks
    ``eventType`` or an ``object`` with an ``id``.
    """
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedPayloadError("Webhook body is not valid JSON") from exc

    if not isinstance(data, dict):
        raise MalformedPayloadError("Webhook body must be a JSON object")

    try:
        envelope = WebhookEnvelope.model_validate(data)
    except ValidationError as exc:
        raise MalformedPayloadError(f"Invalid webhook envelope: {exc.error_count()} validation error(s)") from exc

    if not envelope.object.get("id"):
        raise MalformedPayloadError("Webhook event object has no id")
    return envelope


def build_event_id(envelope: WebhookEnvelope) -> str:
    """Deduplication identity: object id plus event type.

    The provider reuses object ids across event types (a subscription shows
    up in both ``subscription.updated`` and ``subscription.canceled``), so the
    object id alone would swallow distinct transitions.
    """
    return f"{envelope.object_id}_{envelope.event_type}"


# ── Structural probes (key presence on the raw object) ──────────────


def is_checkout_object(obj: Any) -> bool:
    return isinstance(obj, dict) and "order" in obj


def is_subscription_object(obj: Any) -> bool:
    return isinstance(obj, dict) and "current_period_end_date" in obj


def is_payment_object(obj: Any) -> bool:
    return isinstance(obj, dict) and ("amount" in obj or "amount_paid" in obj)


def extract_customer_id(customer: str | CustomerRef | dict | None, context: str) -> str:
    """Return the customer id whether the provider sent a bare id or an object."""
    if isinstance(customer, str) and customer:
        return customer
    if isinstance(customer, CustomerRef) and customer.id:
        return customer.id
    if isinstance(customer, dict) and customer.get("id"):
        return str(customer["id"])
    raise MissingRequiredFieldError("customer", context)
