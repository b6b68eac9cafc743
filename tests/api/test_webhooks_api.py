"""Integration tests for POST /api/webhooks/creem: status codes and response body."""

import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from billing_reconciler.billing.signature import compute_signature

pytestmark = pytest.mark.integration

WEBHOOK_URL = "/api/webhooks/creem"
WEBHOOK_SECRET = "whsec_api_secret"


def _make_creem_event(event_type: str, obj: dict) -> bytes:
    """Build a minimal Creem-style event body."""
    return json.dumps({"id": f"evt_{obj['id']}", "eventType": event_type, "object": obj}).encode()


def _post(client: TestClient, body: bytes, signature: str | None = None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["creem-signature"] = signature
    return client.post(WEBHOOK_URL, content=body, headers=headers)


def _post_signed(client: TestClient, event_type: str, obj: dict):
    body = _make_creem_event(event_type, obj)
    return _post(client, body, compute_signature(body, WEBHOOK_SECRET))


ONE_TIME_CHECKOUT = {
    "id": "ch_api_1",
    "customer": "cus_1",
    "order": {"transaction": "ord_api_1", "amount_due": 1999, "currency": "usd"},
    "metadata": {"userId": "u1", "paymentMode": "one_time", "tierId": "credits_starter"},
}


class TestWebhookAuthentication:
    def test_missing_signature_returns_400(self, api_client: TestClient):
        response = _post(api_client, _make_creem_event("checkout.completed", ONE_TIME_CHECKOUT))

        assert response.status_code == 400
        assert response.json() == {"received": False, "message": "Invalid signature"}

    def test_bad_signature_returns_400(self, api_client: TestClient):
        body = _make_creem_event("checkout.completed", ONE_TIME_CHECKOUT)
        response = _post(api_client, body, compute_signature(body, "whsec_wrong"))

        assert response.status_code == 400
        assert response.json()["received"] is False

    def test_missing_secret_returns_503(self, api_client: TestClient, monkeypatch):
        from billing_reconciler.core.config import get_settings

        monkeypatch.setenv("CREEM_WEBHOOK_SECRET", "")
        get_settings.cache_clear()

        response = _post_signed(api_client, "checkout.completed", ONE_TIME_CHECKOUT)

        assert response.status_code == 503
        body = response.json()
        assert body["received"] is False
        assert "not configured" in body["message"].lower()

    def test_signed_non_json_returns_400(self, api_client: TestClient):
        body = b"<xml/>"
        response = _post(api_client, body, compute_signature(body, WEBHOOK_SECRET))

        assert response.status_code == 400
        assert response.json()["received"] is False


class TestWebhookProcessing:
    def test_checkout_returns_received(self, api_client: TestClient):
        response = _post_signed(api_client, "checkout.completed", ONE_TIME_CHECKOUT)

        assert response.status_code == 200
        assert response.json()["received"] is True

    def test_duplicate_returns_200(self, api_client: TestClient):
        first = _post_signed(api_client, "checkout.completed", ONE_TIME_CHECKOUT)
        second = _post_signed(api_client, "checkout.completed", ONE_TIME_CHECKOUT)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json() == {"received": True, "message": "duplicate"}

    def test_unrecognized_event_returns_200(self, api_client: TestClient):
        response = _post_signed(api_client, "dispute.created", {"id": "dp_1", "amount": 100})

        assert response.status_code == 200
        assert response.json() == {"received": True, "message": "ignored"}

    def test_reconciliation_failure_returns_500_and_retry_succeeds(self, api_client: TestClient):
        checkout = {**ONE_TIME_CHECKOUT, "id": "ch_api_retry", "metadata": {"paymentMode": "one_time"}}
        failed = _post_signed(api_client, "checkout.completed", checkout)

        assert failed.status_code == 500
        assert failed.json()["received"] is False
        assert "metadata.userId" in failed.json()["message"]

        # Not recorded as processed, so a corrected redelivery is applied
        fixed = {**checkout, "metadata": ONE_TIME_CHECKOUT["metadata"]}
        retried = _post_signed(api_client, "checkout.completed", fixed)
        assert retried.status_code == 200
        assert retried.json()["message"] is None

    def test_unknown_customer_returns_500(self, api_client: TestClient):
        response = _post_signed(
            api_client,
            "subscription.active",
            {
                "id": "sub_nobody",
                "customer": "cus_nobody",
                "product": "prod_premium_monthly_sub",
                "status": "active",
                "current_period_start_date": "2024-01-01T00:00:00Z",
                "current_period_end_date": "2024-02-01T00:00:00Z",
            },
        )

        assert response.status_code == 500
        assert response.json()["received"] is False

    def test_concurrent_delivery_returns_409(self, api_client: TestClient):
        from billing_reconciler.core.exceptions import ConcurrentDeliveryError

        with patch(
            "billing_reconciler.api.routes.webhooks.process_webhook",
            side_effect=ConcurrentDeliveryError("ch_api_1_checkout.completed"),
        ):
            response = _post_signed(api_client, "checkout.completed", ONE_TIME_CHECKOUT)

        assert response.status_code == 409
        assert response.json()["received"] is False

    def test_response_carries_request_id(self, api_client: TestClient):
        body = _make_creem_event("checkout.completed", ONE_TIME_CHECKOUT)
        response = api_client.post(
            WEBHOOK_URL,
            content=body,
            headers={"creem-signature": compute_signature(body, WEBHOOK_SECRET), "X-Request-ID": "req-abc"},
        )

        assert response.headers["X-Request-ID"] == "req-abc"
