"""Webhook reconciliation: signature check, idempotency ledger, routing and handlers."""
