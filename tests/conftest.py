"""
Shared fixtures: in-memory database, users and a fake Stripe gateway.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from membership_api.core.auth_dependency import get_db
from membership_api.core.cache import StatusCache
from membership_api.core.catalog import DEFAULT_PRODUCT_IDS, ProductCatalog
from membership_api.core.security import create_access_token
from membership_api.db.base import Base
from membership_api.db import models  # noqa: F401
from membership_api.db.models.user import User
from membership_api.main import app
from membership_api.services.status_service import SubscriptionStatusReader, get_status_reader
from membership_api.services.stripe_gateway import get_gateway_provider
from membership_api.services.webhook_service import WebhookReconciler, get_webhook_reconciler
from tests.stripe_fakes import FakeGateway


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function", autouse=True)
def setup_db():
    """Create and drop tables for each test."""
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def db_session():
    """Provide a database session for tests."""
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def test_user(db_session):
    user = User(full_name="Test Athlete", email="athlete@example.com")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def admin_user(db_session):
    user = User(full_name="Admin", email="admin@example.com", is_admin=True)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def auth_headers(test_user):
    return {"Authorization": f"Bearer {create_access_token({'sub': test_user.email})}"}


@pytest.fixture
def admin_headers(admin_user):
    return {"Authorization": f"Bearer {create_access_token({'sub': admin_user.email})}"}


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def catalog():
    return ProductCatalog(DEFAULT_PRODUCT_IDS)


@pytest.fixture
def status_reader(catalog):
    return SubscriptionStatusReader(cache=StatusCache(ttl_seconds=300), catalog=catalog)


@pytest.fixture
def reconciler(catalog, status_reader):
    return WebhookReconciler(catalog=catalog, cache=status_reader.cache)


@pytest.fixture
def client(gateway, status_reader, reconciler):
    """Test client with the database, Stripe gateway and shared services overridden."""
    def override_get_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    def gateway_for(environment):
        gateway.requested_environments.append(environment)
        return gateway

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_provider] = lambda: gateway_for
    app.dependency_overrides[get_status_reader] = lambda: status_reader
    app.dependency_overrides[get_webhook_reconciler] = lambda: reconciler
    yield TestClient(app)
    app.dependency_overrides.clear()
