class BillingReconcilerError(Exception):
    """Base exception for the billing reconciler."""

    pass


class WebhookError(BillingReconcilerError):
    """Raised when a webhook delivery cannot be applied.

    ``status_code`` is the HTTP status returned to the provider. Anything
    outside 2xx makes the provider redeliver the event later.
    """

    status_code: int = 500


class SignatureInvalidError(WebhookError):
    """Raised when the signature header is missing or does not match the body."""

    status_code = 400


class ConfigurationMissingError(WebhookError):
    """Raised when the webhook secret is not configured."""

    status_code = 503


class MalformedPayloadError(WebhookError):
    """Raised when the body is not JSON or lacks the event envelope."""

    status_code = 400


class ConcurrentDeliveryError(WebhookError):
    """Raised when another delivery of the same event won the ledger insert."""

    status_code = 409

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event {event_id} is being processed by a concurrent delivery")


class ReconciliationError(WebhookError):
    """Raised when a recognized event cannot be applied to domain state."""

    status_code = 500


class MissingRequiredFieldError(ReconciliationError):
    """Raised when a field the handler depends on is absent from the event object."""

    def __init__(self, field: str, context: str):
        self.field = field
        self.context = context
        super().__init__(f"Missing required field '{field}' in {context}")


class UnresolvablePeriodError(ReconciliationError):
    """Raised when a renewal carries neither line-item nor subscription period data."""

    pass


class UnsupportedPaymentModeError(ReconciliationError):
    """Raised when checkout metadata declares a payment mode we do not handle."""

    def __init__(self, payment_mode: str):
        self.payment_mode = payment_mode
        super().__init__(f"Unsupported payment mode: {payment_mode}")


class UserNotFoundError(ReconciliationError):
    """Raised when no internal user matches the event."""

    pass


class ProviderAPIError(BillingReconcilerError):
    """Raised when an outbound call to the payment provider fails."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
