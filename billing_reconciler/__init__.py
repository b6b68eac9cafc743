"""Payment provider webhook reconciliation service."""
