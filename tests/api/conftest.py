"""API-specific test fixtures."""

from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

WEBHOOK_SECRET = "whsec_api_secret"
ADMIN_TOKEN = "admin-api-token"


@pytest.fixture
def api_client(tmp_path, monkeypatch):
    """FastAPI test client backed by a fresh SQLite file.

    init_db runs inside the TestClient's own event loop so route handlers
    can use get_session_factory(). User ``u1`` is seeded without a customer
    binding and ``u2`` already bound to ``cus_2``.
    """
    from fastapi import HTTPException

    from billing_reconciler.api.routes import api_router
    from billing_reconciler.core.config import get_settings
    from billing_reconciler.db import close_db, init_db
    from billing_reconciler.main import generic_exception_handler, http_exception_handler
    from billing_reconciler.middleware.correlation import setup_correlation_middleware

    db_url = f"sqlite+aiosqlite:///{tmp_path / 'api.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("CREEM_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("CREEM_API_KEY", "creem_test_key")
    monkeypatch.setenv("ADMIN_API_TOKEN", ADMIN_TOKEN)
    monkeypatch.setenv("DEBUG", "false")
    get_settings.cache_clear()

    @asynccontextmanager
    async def test_lifespan(app: FastAPI):
        """Test lifespan - initialize DB in TestClient's event loop."""
        import billing_reconciler.db.base as db_mod
        from billing_reconciler.db.models import User

        # Reset global so init_db creates a fresh engine in THIS loop
        db_mod._engine = None
        db_mod._session_factory = None
        await init_db(db_url)

        async with db_mod.get_session_factory()() as session, session.begin():
            session.add(User(id="u1", email="u1@example.com"))
            session.add(User(id="u2", email="u2@example.com", payment_provider_customer_id="cus_2"))

        yield
        await close_db()

    app = FastAPI(title="Billing Reconciler - Test Client", lifespan=test_lifespan)

    setup_correlation_middleware(app)

    # Exception handlers (needed for debug_id testing)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
    get_settings.cache_clear()
