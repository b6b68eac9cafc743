"""Outbound calls to the payment provider (Creem).

Handlers that need the provider receive a PaymentProviderClient through
FastAPI's dependency injection (``get_provider_client``), so tests can swap
in a fake or an httpx MockTransport.
"""

from typing import Protocol

import httpx
import structlog

from billing_reconciler.core.config import Settings, get_settings
from billing_reconciler.core.exceptions import ProviderAPIError

logger = structlog.get_logger(__name__)


class PaymentProviderClient(Protocol):
    async def cancel_subscription(self, subscription_id: str) -> dict: ...


class CreemClient:
    """Minimal Creem REST client."""

    LIVE_BASE_URL = "https://api.creem.io"
    TEST_BASE_URL = "https://test-api.creem.io"

    def __init__(
        self,
        api_key: str,
        environment: str = "test_mode",
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ):
        self.api_key = api_key
        self.base_url = self.LIVE_BASE_URL if environment == "live_mode" else self.TEST_BASE_URL
        self._transport = transport
        self._timeout = timeout

    async def _request(self, method: str, endpoint: str, json: dict | None = None) -> dict:
        """Make an authenticated request to the Creem API."""
        if not self.api_key:
            raise ProviderAPIError("Creem API key not configured")

        headers = {"x-api-key": self.api_key, "Accept": "application/json"}

        async with httpx.AsyncClient(
            base_url=self.base_url,
            transport=self._transport,
            timeout=self._timeout,
        ) as client:
            try:
                response = await client.request(method, endpoint, headers=headers, json=json)
            except httpx.HTTPError as exc:
                logger.error("creem_request_failed", endpoint=endpoint, error_type=type(exc).__name__)
                raise ProviderAPIError(f"Creem request failed: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            logger.error("creem_error_response", endpoint=endpoint, status_code=response.status_code)
            raise ProviderAPIError(
                f"Creem API returned {response.status_code} for {endpoint}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        return response.json()

    async def cancel_subscription(self, subscription_id: str) -> dict:
        """Ask Creem to cancel a subscription.

        The local row is not touched here; the ``subscription.canceled``
        webhook that follows updates it.
        """
        logger.info("creem_cancel_subscription", subscription_id=subscription_id)
        return await self._request("POST", f"/v1/subscriptions/{subscription_id}/cancel")


def build_provider_client(settings: Settings | None = None) -> CreemClient:
    settings = settings or get_settings()
    return CreemClient(api_key=settings.creem_api_key, environment=settings.creem_environment)


def get_provider_client() -> PaymentProviderClient:
    """FastAPI dependency returning the provider client."""
    return build_provider_client()
