"""
Shared fixtures for the licensing test suite.

Every test gets a fresh in-memory SQLite database, a configured
environment (secrets, no Redis) and cleared process-wide caches.
"""

from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import adgenius.models  # noqa: F401  registers tables
from adgenius.config import LicensingConfig, get_config
from adgenius.database.session import get_db_session
from adgenius.db_base import Base
from adgenius.entitlements.cache import EntitlementCache
from adgenius.entitlements.resolver import get_entitlement_cache
from adgenius.integrations.jvzoo.ipn import sign_fields

JVZOO_SECRET = "test-jvzoo-secret"
JWT_SECRET = "test-jwt-secret"
LICENSE_SECRET = "test-license-secret"


@pytest.fixture(autouse=True)
def licensing_env(monkeypatch):
    """Configure secrets through the environment and reset cached singletons."""
    monkeypatch.setenv("JVZOO_SECRET_KEY", JVZOO_SECRET)
    monkeypatch.setenv("JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("LICENSE_SECRET", LICENSE_SECRET)
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("DEFAULT_CREDIT_ALLOWANCE", raising=False)
    get_config.cache_clear()
    get_entitlement_cache.cache_clear()
    yield
    get_config.cache_clear()
    get_entitlement_cache.cache_clear()


@pytest.fixture
def config() -> LicensingConfig:
    return get_config()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def cache() -> EntitlementCache:
    """In-memory cache, never shared between tests."""
    return EntitlementCache(ttl_seconds=60)


@pytest.fixture
def app(db_session):
    from adgenius.main import create_app

    app = create_app()

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db_session] = _override_db
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def make_ipn(
    transaction_type: str = "SALE",
    product_item: str = "427343",
    receipt: str = "TXN-1001",
    email: str = "buyer@example.com",
    name: Optional[str] = "Test Buyer",
    amount: str = "97.00",
    secret: str = JVZOO_SECRET,
    short: bool = True,
) -> dict:
    """A JVZoo form payload signed the way JVZoo signs it."""
    payload = {
        "ctransaction": transaction_type,
        "ctransreceipt": receipt,
        "cproditem": product_item,
        "ccustemail": email,
        "ccustname": name,
        "ccustcc": "US",
        "ctransaffiliate": "",
        "ctransamount": amount,
    }
    payload["cverify"] = sign_fields(payload, secret, short=short)
    return payload


@pytest.fixture
def ipn():
    return make_ipn
