"""Webhook processing: verify, parse, then apply exactly once in one transaction."""

from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billing_reconciler.billing import ledger
from billing_reconciler.billing.dispatch import dispatch, route_event
from billing_reconciler.billing.events import build_event_id, parse_envelope
from billing_reconciler.billing.signature import verify_signature
from billing_reconciler.core.config import Settings, get_settings
from billing_reconciler.core.exceptions import ConfigurationMissingError, SignatureInvalidError
from billing_reconciler.db.base import get_session_factory

logger = structlog.get_logger(__name__)


@dataclass
class WebhookResult:
    received: bool
    message: str | None = None


async def process_webhook(
    payload: bytes | str,
    signature: str | None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    settings: Settings | None = None,
) -> WebhookResult:
    """Authenticate a delivery and apply it to domain state at most once.

    The ledger check, ledger insert and all handler writes share one
    transaction. Any exception rolls all of it back, so a failed delivery is
    never marked processed and the provider's retry starts fresh.

    Raises:
        ConfigurationMissingError: webhook secret is not set
        SignatureInvalidError: signature header missing or wrong
        MalformedPayloadError: body is not a valid event
        ConcurrentDeliveryError: a parallel delivery of the same event won the ledger insert
        ReconciliationError: the event could not be applied
    """
    settings = settings or get_settings()
    secret = settings.creem_webhook_secret
    if not secret:
        logger.error("webhook_secret_missing")
        raise ConfigurationMissingError("Webhook secret not configured")

    if not signature or not verify_signature(payload, signature, secret):
        logger.warning("webhook_signature_invalid")
        raise SignatureInvalidError("Invalid signature")

    envelope = parse_envelope(payload)
    event_id = build_event_id(envelope)
    raw_payload = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload

    log = logger.bind(event_id=event_id, event_type=envelope.event_type)
    log.info("webhook_received")

    factory = session_factory or get_session_factory()
    async with factory() as session, session.begin():
        if await ledger.is_processed(session, event_id):
            log.info("webhook_duplicate_ignored")
            return WebhookResult(received=True, message="duplicate")

        # Ledger row goes in before any domain write; it only survives if they all do
        await ledger.record(session, event_id, envelope.event_type, payload=raw_payload)

        routed = route_event(envelope)
        if routed is None:
            return WebhookResult(received=True, message="ignored")

        await dispatch(session, routed)

    log.info("webhook_applied")
    return WebhookResult(received=True)
