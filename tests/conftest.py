"""
Pytest configuration and fixtures
"""
import pytest
import os
import sys
from pathlib import Path
from unittest.mock import Mock
from fastapi.testclient import TestClient

# Add src to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Set test environment variables before importing
TEST_ENCRYPTION_KEY = "3f1c9a7e5b2d4f6081a3c5e7092b4d6f8a1c3e5f7092b4d6e8a0c2e4f6081a3c"
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY
os.environ["MANAGED_OPENAI_API_KEY"] = "sk-managed-platform-key"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_dummy"
os.environ["APP_URL"] = "https://app.example.com"
os.environ["PRICE_PER_GENERATION_CENTS"] = "89"
os.environ["FREE_GENERATION_LIMIT"] = "5"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce log noise in tests

# Import after setting env vars
from cms_regen.app import create_app
from cms_regen.auth import CurrentUser, get_current_user
from cms_regen.billing_routes import get_gateway
from cms_regen.content_routes import get_content_store
from cms_regen.db import Base, SessionLocal, engine, get_db
from cms_regen.db.models import Site, Integration, Collection
from cms_regen.services.billing_gateway import BillingGateway
from cms_regen.services.content_store import WebflowClient
from cms_regen.services.credentials import encrypt_secret

TEST_USER_ID = "user-1"
TEST_USER_EMAIL = "owner@example.com"


@pytest.fixture(scope="function")
def db_session():
    """Fresh in-memory database per test"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_collection(db_session):
    """Create a collection with its site and integration"""

    def _make(
        user_id=TEST_USER_ID,
        store_key="wf-token-123",
        generation_key=None,
        base_url="https://www.example.com",
        slug="blog",
        external_collection_id="wf-collection-1",
    ):
        site = Site(
            user_id=user_id,
            external_site_id="wf-site-1",
            display_name="Example Site",
            base_url=base_url,
        )
        db_session.add(site)
        db_session.flush()

        db_session.add(Integration(
            site_id=site.id,
            encrypted_store_key=encrypt_secret(store_key, TEST_ENCRYPTION_KEY) if store_key else None,
            encrypted_generation_key=encrypt_secret(generation_key, TEST_ENCRYPTION_KEY) if generation_key else None,
        ))
        collection = Collection(
            user_id=user_id,
            site_id=site.id,
            external_collection_id=external_collection_id,
            display_name="Blog Posts",
            slug=slug,
        )
        db_session.add(collection)
        db_session.commit()
        db_session.refresh(collection)
        return collection

    return _make


@pytest.fixture
def mock_gateway():
    """Payment gateway double"""
    gateway = Mock(spec=BillingGateway)
    gateway.create_checkout_session.return_value = {
        "id": "cs_test_123",
        "url": "https://checkout.stripe.com/c/pay/cs_test_123",
    }
    return gateway


@pytest.fixture
def mock_store():
    """Content store double"""
    store = Mock(spec=WebflowClient)
    store.write_item.return_value = {"id": "item", "fieldData": {}}
    store.upload_asset.return_value = {"asset_id": "asset-1", "url": "https://cdn.example.com/asset-1.png"}
    return store


@pytest.fixture
def app(db_session, mock_gateway, mock_store):
    """Application with database, identity and providers overridden"""
    application = create_app()

    def override_get_db():
        yield db_session

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_current_user] = lambda: CurrentUser(id=TEST_USER_ID, email=TEST_USER_EMAIL)
    application.dependency_overrides[get_gateway] = lambda: mock_gateway
    application.dependency_overrides[get_content_store] = lambda: mock_store

    yield application

    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Create test client"""
    return TestClient(app)
