"""
Tests for the webhook reconciler
"""
import hashlib
import hmac
import json
import time
import pytest
from unittest.mock import Mock, patch
from sqlalchemy.exc import OperationalError

from cms_regen.db.models import Payment, GenerationLog, UserAllowance
from cms_regen.exceptions import WebhookPayloadError, WebhookVerificationError
from cms_regen.services.billing_gateway import BillingGateway, StripeGateway
from cms_regen.services.checkout_service import encode_item_ids
from cms_regen.services.webhook_reconciler import WebhookReconciler

WEBHOOK_SECRET = "whsec_test_reconciler"


def checkout_completed_event(payment_intent="pi_123", item_ids=("item-1", "item-2"), metadata=None, customer="cus_42"):
    if metadata is None:
        metadata = {
            "user_id": "user-1",
            "collection_id": "wf-collection-1",
            "collection_db_id": "7",
            "item_count": str(len(item_ids)),
            "collection_name": "Blog Posts",
        }
        metadata.update(encode_item_ids(list(item_ids)))
    return {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_test_1",
                "payment_intent": payment_intent,
                "amount_total": 89 * len(item_ids),
                "customer": customer,
                "metadata": metadata,
            }
        },
    }


def sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Build a Stripe-Signature header for ``payload``"""
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


class TestWebhookReconciler:
    """Exactly-once reconciliation of checkout events"""

    @pytest.fixture
    def gateway(self):
        return Mock(spec=BillingGateway)

    @pytest.fixture
    def reconciler(self, db_session, gateway):
        return WebhookReconciler(db_session, gateway, unit_price_cents=89)

    def test_creates_payment_and_logs(self, reconciler, gateway, db_session):
        """Test a completed checkout creates one payment and one log per item"""
        gateway.verify_and_parse_webhook.return_value = checkout_completed_event()

        result = reconciler.handle_webhook(b"{}", "sig")

        assert result.handled is True
        assert result.already_processed is False
        assert result.generation_logs_created == 2

        payment = db_session.query(Payment).one()
        assert payment.provider_payment_intent_id == "pi_123"
        assert payment.provider_checkout_session_id == "cs_test_1"
        assert payment.status == "pending"
        assert payment.item_ids == ["item-1", "item-2"]
        assert payment.item_count == 2
        assert payment.collection_id == 7
        assert payment.generation_logs_count == 2
        assert payment.generation_started is False

        logs = db_session.query(GenerationLog).order_by(GenerationLog.id).all()
        assert [log.item_id for log in logs] == ["item-1", "item-2"]
        assert all(log.status == "pending" and not log.is_free_tier and log.cost_cents == 89 for log in logs)

    def test_duplicate_delivery_is_idempotent(self, reconciler, gateway, db_session):
        """Test redelivering the same event leaves one payment and one log set"""
        gateway.verify_and_parse_webhook.return_value = checkout_completed_event()

        first = reconciler.handle_webhook(b"{}", "sig")
        second = reconciler.handle_webhook(b"{}", "sig")

        assert second.already_processed is True
        assert second.payment_id == first.payment_id
        assert db_session.query(Payment).count() == 1
        assert db_session.query(GenerationLog).count() == 2

    def test_concurrent_duplicate_treated_as_processed(self, reconciler, gateway, db_session):
        """Test a unique-constraint race on insert counts as already processed"""
        gateway.verify_and_parse_webhook.return_value = checkout_completed_event()
        reconciler.handle_webhook(b"{}", "sig")

        # Simulate a delivery that passed the pre-check before the first insert landed
        with patch.object(reconciler, "_find_payment", side_effect=[None, db_session.query(Payment).one()]):
            result = reconciler.handle_webhook(b"{}", "sig")

        assert result.already_processed is True
        assert db_session.query(Payment).count() == 1

    def test_unrelated_event_ignored(self, reconciler, gateway, db_session):
        """Test other event types are acknowledged without side effects"""
        gateway.verify_and_parse_webhook.return_value = {"id": "evt_2", "type": "invoice.paid", "data": {"object": {}}}

        result = reconciler.handle_webhook(b"{}", "sig")

        assert result.received is True
        assert result.handled is False
        assert db_session.query(Payment).count() == 0

    def test_missing_payment_intent_rejected(self, reconciler, gateway):
        gateway.verify_and_parse_webhook.return_value = checkout_completed_event(payment_intent=None)

        with pytest.raises(WebhookPayloadError):
            reconciler.handle_webhook(b"{}", "sig")

    def test_unparseable_item_ids_still_records_payment(self, reconciler, gateway, db_session):
        """Test an item id parse failure degrades to an empty list"""
        metadata = {
            "user_id": "user-1",
            "collection_db_id": "7",
            "item_count": "3",
            "item_ids_chunks": "1",
            "item_ids_0": "[not json",
        }
        gateway.verify_and_parse_webhook.return_value = checkout_completed_event(metadata=metadata)

        result = reconciler.handle_webhook(b"{}", "sig")

        payment = db_session.query(Payment).one()
        assert result.handled is True
        assert payment.item_ids == []
        assert payment.item_count == 3
        assert payment.generation_logs_count == 0
        assert db_session.query(GenerationLog).count() == 0

    def test_missing_user_id_still_records_payment(self, reconciler, gateway, db_session):
        """Test a checkout without a user is recorded unowned and acknowledged"""
        metadata = {"collection_db_id": "7", "item_count": "2"}
        metadata.update(encode_item_ids(["item-1", "item-2"]))
        gateway.verify_and_parse_webhook.return_value = checkout_completed_event(metadata=metadata)

        result = reconciler.handle_webhook(b"{}", "sig")

        assert result.handled is True
        assert result.generation_logs_created == 0
        payment = db_session.query(Payment).one()
        assert result.payment_id == payment.id
        assert payment.user_id is None
        assert payment.provider_payment_intent_id == "pi_123"
        assert payment.item_ids == ["item-1", "item-2"]
        assert payment.generation_logs_count == 0
        assert db_session.query(GenerationLog).count() == 0
        assert db_session.query(UserAllowance).count() == 0

        redelivered = reconciler.handle_webhook(b"{}", "sig")
        assert redelivered.already_processed is True

    def test_customer_id_stored(self, reconciler, gateway, db_session):
        """Test the provider customer is remembered for later checkouts"""
        gateway.verify_and_parse_webhook.return_value = checkout_completed_event(customer="cus_42")

        reconciler.handle_webhook(b"{}", "sig")

        allowance = db_session.query(UserAllowance).filter_by(user_id="user-1").one()
        assert allowance.provider_customer_id == "cus_42"
        assert allowance.free_generations_used == 0

    def test_log_seeding_failure_keeps_payment(self, reconciler, gateway, db_session):
        """Test log seeding errors are logged and the payment stays recorded"""
        gateway.verify_and_parse_webhook.return_value = checkout_completed_event()

        with patch.object(db_session, "add_all", side_effect=OperationalError("INSERT", {}, Exception("db down"))):
            result = reconciler.handle_webhook(b"{}", "sig")

        assert result.handled is True
        assert result.generation_logs_created == 0
        assert db_session.query(Payment).count() == 1

    def test_payment_status_poll(self, reconciler, gateway, db_session):
        """Test polling by checkout session id"""
        assert reconciler.get_payment_status("user-1", "cs_test_1")["payment_id"] is None

        gateway.verify_and_parse_webhook.return_value = checkout_completed_event()
        reconciler.handle_webhook(b"{}", "sig")

        status = reconciler.get_payment_status("user-1", "cs_test_1")
        assert status["payment_id"] is not None
        assert status["item_ids"] == ["item-1", "item-2"]
        assert status["generation_started"] is False
        assert reconciler.get_payment_status("someone-else", "cs_test_1")["payment_id"] is None


class TestStripeSignature:
    """Reconciliation through real Stripe signature verification"""

    @pytest.fixture
    def reconciler(self, db_session):
        return WebhookReconciler(db_session, StripeGateway("sk_test_dummy", WEBHOOK_SECRET), unit_price_cents=89)

    def test_signed_event_accepted(self, reconciler, db_session):
        payload = json.dumps(checkout_completed_event()).encode()

        result = reconciler.handle_webhook(payload, sign(payload))

        assert result.handled is True
        assert db_session.query(Payment).count() == 1

    def test_bad_signature_rejected(self, reconciler, db_session):
        payload = json.dumps(checkout_completed_event()).encode()

        with pytest.raises(WebhookVerificationError):
            reconciler.handle_webhook(payload, sign(payload, secret="whsec_wrong"))

        assert db_session.query(Payment).count() == 0

    def test_missing_signature_rejected(self, reconciler):
        with pytest.raises(WebhookVerificationError):
            reconciler.handle_webhook(b"{}", "")
