"""Shared test fixtures for all test groups."""

import json

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from billing_reconciler.billing.signature import compute_signature
from billing_reconciler.core.config import Settings
from billing_reconciler.db.base import Base

WEBHOOK_SECRET = "whsec_test_secret"
ADMIN_TOKEN = "admin-test-token"


@pytest.fixture
def settings() -> Settings:
    """Settings with a webhook secret, built directly so the environment is not read."""
    return Settings(
        debug=True,
        database_url="sqlite+aiosqlite://",
        creem_api_key="creem_test_key",
        creem_webhook_secret=WEBHOOK_SECRET,
        admin_api_token=ADMIN_TOKEN,
    )


@pytest.fixture
async def engine(tmp_path) -> AsyncEngine:
    """File-backed SQLite engine in the pytest-asyncio loop.

    A file (not ``:memory:``) so every connection in the pool sees the same
    tables.
    """
    import billing_reconciler.db.base as db_mod
    import billing_reconciler.db.models  # noqa: F401

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    db_mod._engine = engine
    db_mod._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    yield engine

    db_mod._engine = None
    db_mod._session_factory = None
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed_user(session_factory):
    """Factory: insert a user, optionally already bound to a provider customer."""
    from billing_reconciler.db.models import User

    async def _seed(user_id: str, customer_id: str | None = None) -> None:
        async with session_factory() as session, session.begin():
            session.add(
                User(
                    id=user_id,
                    email=f"{user_id}@example.com",
                    payment_provider_customer_id=customer_id,
                )
            )

    return _seed


def encode_event(event_type: str, obj: dict) -> bytes:
    """Serialize a provider-style envelope around ``obj``."""
    return json.dumps(
        {
            "id": f"evt_{obj.get('id', 'unknown')}",
            "eventType": event_type,
            "created_at": 1704067200000,
            "object": obj,
        }
    ).encode("utf-8")


@pytest.fixture
def make_delivery():
    """Factory: (event_type, object) -> (raw body, valid signature)."""

    def _make(event_type: str, obj: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
        body = encode_event(event_type, obj)
        return body, compute_signature(body, secret)

    return _make
