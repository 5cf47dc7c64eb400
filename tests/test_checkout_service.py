"""
Tests for the checkout session factory
"""
import pytest
from unittest.mock import Mock

from cms_regen.services.billing_gateway import BillingGateway
from cms_regen.services.checkout_service import (
    CheckoutRequest,
    CheckoutSessionFactory,
    decode_item_ids,
    encode_item_ids,
)


def _request(item_ids, item_count=None):
    return CheckoutRequest(
        user_id="user-1",
        email="owner@example.com",
        collection_id=7,
        external_collection_id="wf-collection-1",
        item_ids=item_ids,
        item_count=len(item_ids) if item_count is None else item_count,
        collection_name="Blog Posts",
    )


class TestItemIdMetadata:
    """Chunked item id metadata"""

    def test_every_chunk_fits_provider_limit(self):
        """Test long id lists are split into values of at most 500 characters"""
        item_ids = [f"65f0c1d2e3a4b5c6d7e8f9{index:03d}" for index in range(60)]

        metadata = encode_item_ids(item_ids)

        assert int(metadata["item_ids_chunks"]) > 1
        assert all(len(value) <= 500 for value in metadata.values())
        assert decode_item_ids(metadata) == item_ids

    def test_order_preserved(self):
        item_ids = ["c", "a", "b"]

        assert decode_item_ids(encode_item_ids(item_ids)) == ["c", "a", "b"]

    def test_too_many_items_rejected(self):
        """Test lists beyond the metadata key budget are rejected"""
        item_ids = [f"item-{index:05d}-{'x' * 40}" for index in range(1000)]

        with pytest.raises(ValueError, match="Too many items"):
            encode_item_ids(item_ids)

    def test_decode_missing_chunk_fails(self):
        metadata = encode_item_ids(["a", "b"])
        del metadata["item_ids_0"]

        with pytest.raises(KeyError):
            decode_item_ids(metadata)

    def test_decode_non_list_fails(self):
        with pytest.raises(ValueError):
            decode_item_ids({"item_ids_chunks": "1", "item_ids_0": '{"a": 1}'})


class TestCheckoutSessionFactory:
    """Checkout session creation"""

    @pytest.fixture
    def gateway(self):
        gateway = Mock(spec=BillingGateway)
        gateway.create_checkout_session.return_value = {"id": "cs_test_1", "url": "https://checkout.stripe.com/cs_test_1"}
        return gateway

    @pytest.fixture
    def factory(self, gateway):
        return CheckoutSessionFactory(gateway, unit_price_cents=89, app_url="https://app.example.com/")

    def test_creates_session(self, factory, gateway):
        """Test the session carries price, quantity and round-trip metadata"""
        session = factory.create_checkout_session(_request(["item-1", "item-2", "item-3"]), customer_id="cus_1")

        assert session.session_id == "cs_test_1"
        assert session.redirect_url == "https://checkout.stripe.com/cs_test_1"

        kwargs = gateway.create_checkout_session.call_args.kwargs
        assert kwargs["unit_amount_cents"] == 89
        assert kwargs["quantity"] == 3
        assert kwargs["customer_id"] == "cus_1"
        assert kwargs["success_url"] == (
            "https://app.example.com/dashboard/payment/success?session_id={CHECKOUT_SESSION_ID}"
        )

        metadata = kwargs["metadata"]
        assert metadata["user_id"] == "user-1"
        assert metadata["collection_id"] == "wf-collection-1"
        assert metadata["collection_db_id"] == "7"
        assert metadata["item_count"] == "3"
        assert decode_item_ids(metadata) == ["item-1", "item-2", "item-3"]

    def test_count_mismatch_fails_before_provider_call(self, factory, gateway):
        """Test item_ids/item_count mismatch is rejected up front"""
        with pytest.raises(ValueError, match="does not match"):
            factory.create_checkout_session(_request(["item-1", "item-2"], item_count=3))

        gateway.create_checkout_session.assert_not_called()

    def test_empty_batch_rejected(self, factory, gateway):
        with pytest.raises(ValueError):
            factory.create_checkout_session(_request([]))

        gateway.create_checkout_session.assert_not_called()
