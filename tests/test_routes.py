"""
API route tests
"""
import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from cms_regen.app import create_app
from cms_regen.content_routes import get_generation_executor
from cms_regen.db import get_db
from cms_regen.db.models import Payment, UserAllowance
from cms_regen.exceptions import ContentStoreError, WebhookVerificationError
from cms_regen.progress_stream import decode_events
from cms_regen.services.free_tier_ledger import FreeTierLedger
from cms_regen.services.generation_executor import GenerationExecutor


class EchoGenerator:
    def generate(self, field_type, field_name, context, site_context=None):
        if field_type == "Image":
            return b"png"
        return f"{field_name}: {context.get('title', '')}"


def exhaust_allowance(db_session, user_id="user-1"):
    db_session.add(UserAllowance(user_id=user_id, free_generations_used=5, free_generation_limit=5))
    db_session.commit()


class TestAuth:

    def test_requests_without_user_rejected(self, db_session):
        """Test routes require an authenticated user"""
        app = create_app()
        app.dependency_overrides[get_db] = lambda: db_session

        response = TestClient(app).get("/v1/billing/payment-status", params={"session_id": "cs_1"})

        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_ERROR"
        assert "X-Request-ID" in response.headers

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestBillingRoutes:
    """Billing pre-flight, checkout and webhook endpoints"""

    def test_check_status_free_tier(self, client, make_collection):
        collection = make_collection()

        response = client.post("/v1/billing/check-status", json={"collection_id": collection.id, "field_count": 3})

        assert response.status_code == 200
        data = response.json()
        assert data["requires_payment"] is False
        assert data["reason"] == "free_tier"
        assert data["remaining_after_generation"] == 2

    def test_check_status_requires_payment(self, client, make_collection, db_session):
        collection = make_collection()
        exhaust_allowance(db_session)

        response = client.post("/v1/billing/check-status", json={"collection_id": collection.id, "field_count": 4})

        data = response.json()
        assert data["requires_payment"] is True
        assert data["items_to_charge"] == 4
        assert data["amount_cents"] == 356

    def test_check_status_own_key(self, client, make_collection):
        collection = make_collection(generation_key="sk-user-own")

        response = client.post("/v1/billing/check-status", json={"collection_id": collection.id, "field_count": 40})

        assert response.json()["reason"] == "own_api_key"

    def test_check_status_unknown_collection(self, client):
        response = client.post("/v1/billing/check-status", json={"collection_id": 404, "field_count": 1})

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_checkout(self, client, make_collection, mock_gateway):
        """Test checkout returns the provider session and redirect"""
        collection = make_collection()

        response = client.post("/v1/billing/checkout", json={
            "collection_id": collection.id,
            "item_ids": ["item-1", "item-2"],
        })

        assert response.status_code == 200
        assert response.json() == {
            "session_id": "cs_test_123",
            "url": "https://checkout.stripe.com/c/pay/cs_test_123",
        }
        kwargs = mock_gateway.create_checkout_session.call_args.kwargs
        assert kwargs["email"] == "owner@example.com"
        assert kwargs["quantity"] == 2
        assert kwargs["metadata"]["collection_name"] == "Blog Posts"

    def test_checkout_count_mismatch_rejected(self, client, make_collection, mock_gateway):
        collection = make_collection()

        response = client.post("/v1/billing/checkout", json={
            "collection_id": collection.id,
            "item_ids": ["item-1", "item-2"],
            "item_count": 3,
        })

        assert response.status_code == 422
        mock_gateway.create_checkout_session.assert_not_called()

    def test_webhook_bad_signature(self, client, mock_gateway):
        mock_gateway.verify_and_parse_webhook.side_effect = WebhookVerificationError("Invalid webhook signature")

        response = client.post("/v1/billing/webhooks/stripe", content=b"{}", headers={"stripe-signature": "bad"})

        assert response.status_code == 400
        assert "signature" in response.json()["message"]

    def test_webhook_acknowledges_other_events(self, client, mock_gateway):
        mock_gateway.verify_and_parse_webhook.return_value = {"id": "evt_9", "type": "charge.refunded"}

        response = client.post("/v1/billing/webhooks/stripe", content=b"{}", headers={"stripe-signature": "sig"})

        assert response.status_code == 200
        assert response.json()["handled"] is False

    def test_payment_status_pending_then_found(self, client, db_session):
        """Test polling before and after the webhook lands"""
        response = client.get("/v1/billing/payment-status", params={"session_id": "cs_poll"})
        assert response.json() == {"payment_id": None, "status": "pending"}

        db_session.add(Payment(
            user_id="user-1",
            provider_payment_intent_id="pi_poll",
            provider_checkout_session_id="cs_poll",
            amount_cents=89,
            item_ids=["item-1"],
            item_count=1,
        ))
        db_session.commit()

        data = client.get("/v1/billing/payment-status", params={"session_id": "cs_poll"}).json()
        assert data["payment_id"] is not None
        assert data["item_count"] == 1


class TestGenerateRoute:
    """Field generation with free-tier and paid batches"""

    @pytest.fixture
    def app_with_generator(self, app, db_session):
        app.dependency_overrides[get_generation_executor] = lambda: GenerationExecutor(
            db_session, generator_factory=lambda token: EchoGenerator()
        )
        return app

    def _body(self, collection_id, **extra):
        body = {
            "collection_id": collection_id,
            "items": [
                {"id": "item-1", "field_data": {"title": "First"}},
                {"id": "item-2", "field_data": {"title": "Second"}},
            ],
            "fields": ["summary"],
            "column_types": {"summary": "PlainText"},
        }
        body.update(extra)
        return body

    def test_payment_required_without_payment(self, app_with_generator, make_collection, db_session):
        """Test an exhausted allowance without payment is refused with 402"""
        collection = make_collection()
        exhaust_allowance(db_session)

        response = TestClient(app_with_generator).post("/v1/fields/generate", json=self._body(collection.id))

        assert response.status_code == 402
        data = response.json()
        assert data["code"] == "PAYMENT_REQUIRED"
        assert data["details"]["items_to_charge"] == 2

    def test_free_tier_generation(self, app_with_generator, make_collection, db_session):
        collection = make_collection()

        response = TestClient(app_with_generator).post("/v1/fields/generate", json=self._body(collection.id))

        assert response.status_code == 200
        data = response.json()
        assert [result["value"] for result in data["results"]] == ["summary: First", "summary: Second"]
        assert data["free_used"] == 2
        assert data["remaining_free_after"] == 3
        assert db_session.query(UserAllowance).filter_by(user_id="user-1").one().free_generations_used == 2

    def test_paid_generation_settles_payment(self, app_with_generator, make_collection, db_session):
        """Test a claimed payment is completed after generation"""
        collection = make_collection()
        exhaust_allowance(db_session)
        payment = Payment(
            user_id="user-1",
            provider_payment_intent_id="pi_gen",
            provider_checkout_session_id="cs_gen",
            amount_cents=178,
            item_ids=["item-1", "item-2"],
            item_count=2,
        )
        db_session.add(payment)
        db_session.commit()

        client = TestClient(app_with_generator)
        response = client.post("/v1/fields/generate", json=self._body(collection.id, payment_id=payment.id))

        assert response.status_code == 200
        assert response.json()["payment_status"] == "completed"

        reused = client.post("/v1/fields/generate", json=self._body(collection.id, payment_id=payment.id))
        assert reused.status_code == 402

    def test_failed_run_releases_payment(self, app_with_generator, make_collection, db_session):
        """Test a claimed payment is handed back when the run errors out"""
        collection = make_collection()
        db_session.add(UserAllowance(user_id="user-1", free_generations_used=4, free_generation_limit=5))
        payment = Payment(
            user_id="user-1",
            provider_payment_intent_id="pi_retry",
            provider_checkout_session_id="cs_retry",
            amount_cents=89,
            item_ids=["item-2"],
            item_count=1,
        )
        db_session.add(payment)
        db_session.commit()

        client = TestClient(app_with_generator, raise_server_exceptions=False)
        usage_error = OperationalError("UPDATE user_allowances", {}, Exception("database is locked"))
        with patch.object(FreeTierLedger, "increment_usage", side_effect=usage_error):
            failed = client.post("/v1/fields/generate", json=self._body(collection.id, payment_id=payment.id))

        assert failed.status_code == 500
        db_session.expire_all()
        released = db_session.get(Payment, payment.id)
        assert released.generation_started is False
        assert released.status == "pending"

        retried = client.post("/v1/fields/generate", json=self._body(collection.id, payment_id=payment.id))
        assert retried.status_code == 200
        assert retried.json()["payment_status"] == "completed"

    def test_unknown_column_type_rejected(self, client, make_collection):
        collection = make_collection()

        response = client.post(
            "/v1/fields/generate",
            json=self._body(collection.id, column_types={"summary": "Video"}),
        )

        assert response.status_code == 422


class TestCollectionItemsRoute:
    """Reading current items from the content store"""

    def test_lists_items(self, client, make_collection, mock_store):
        collection = make_collection()
        mock_store.read_items.return_value = [
            {"id": "item-1", "fieldData": {"title": "First"}},
            {"id": "item-2", "fieldData": {"title": "Second"}},
        ]

        response = client.get(f"/v1/collections/{collection.id}/items")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert data["items"][0]["fieldData"]["title"] == "First"
        mock_store.read_items.assert_called_once_with("wf-token-123", "wf-collection-1")

    def test_store_failure_is_bad_gateway(self, client, make_collection, mock_store):
        collection = make_collection()
        mock_store.read_items.side_effect = ContentStoreError("Webflow request failed: timed out")

        response = client.get(f"/v1/collections/{collection.id}/items")

        assert response.status_code == 502
        assert response.json()["code"] == "UPSTREAM_ERROR"

    def test_unknown_collection(self, client, mock_store):
        response = client.get("/v1/collections/404/items")

        assert response.status_code == 404
        mock_store.read_items.assert_not_called()


class TestPublishRoute:
    """Streaming publish and the audit trail"""

    def test_publish_streams_progress(self, client, make_collection, mock_store):
        """Test the NDJSON stream carries started, item and completed events"""
        collection = make_collection()
        mock_store.write_item.return_value = {"id": "item-1", "fieldData": {"slug": "first-post"}}

        response = client.post("/v1/items/publish", json={
            "collection_id": collection.id,
            "changes": {"item-1": {"title": {"kind": "text", "value": "First"}}},
        })

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        events = list(decode_events(response.text.splitlines()))
        assert [event["type"] for event in events] == ["started", "item", "completed"]
        assert events[-1]["links"] == [{"item_id": "item-1", "url": "https://www.example.com/blog/first-post"}]

        publication = client.get(f"/v1/publications/{events[0]['publication_id']}").json()
        assert publication["status"] == "completed"
        assert publication["items"][0]["slug"] == "first-post"

    def test_publish_empty_changes_rejected(self, client, make_collection):
        collection = make_collection()

        response = client.post("/v1/items/publish", json={"collection_id": collection.id, "changes": {}})

        assert response.status_code == 422

    def test_publish_without_store_key(self, client, make_collection):
        collection = make_collection(store_key=None)

        response = client.post("/v1/items/publish", json={
            "collection_id": collection.id,
            "changes": {"item-1": {"title": {"kind": "text", "value": "First"}}},
        })

        assert response.status_code == 400

    def test_unknown_publication(self, client):
        response = client.get("/v1/publications/999")

        assert response.status_code == 404
