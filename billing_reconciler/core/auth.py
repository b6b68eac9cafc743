"""Admin token guard for the billing admin endpoints.

User authentication lives in the auth service; these endpoints only need a
shared operator token.
"""

import hmac

from fastapi import Header, HTTPException

from billing_reconciler.core.config import get_settings


async def require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    """Reject the request unless X-Admin-Token matches ADMIN_API_TOKEN."""
    expected = get_settings().admin_api_token
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API is not configured")
    if not x_admin_token or not hmac.compare_digest(x_admin_token.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid admin token")
