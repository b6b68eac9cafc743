"""Re-export all models so Base.metadata sees them."""

from billing_reconciler.db.models.payment import Payment
from billing_reconciler.db.models.subscription import Subscription, SubscriptionStatus
from billing_reconciler.db.models.user import User
from billing_reconciler.db.models.webhook_event import WebhookEventRecord

__all__ = [
    "Payment",
    "Subscription",
    "SubscriptionStatus",
    "User",
    "WebhookEventRecord",
]
