"""
Tests for the billing calculator
"""
import pytest

from cms_regen.services.billing_calculator import split_billing, check_billing_status
from cms_regen.services.credentials import OwnedCredential, ManagedCredential
from cms_regen.services.free_tier_ledger import AllowanceStatus


class TestSplitBilling:
    """Free/paid split of a request"""

    @pytest.mark.parametrize("requested,remaining,expected_free,expected_paid", [
        (0, 0, 0, 0),
        (0, 5, 0, 0),
        (3, 5, 3, 0),
        (5, 5, 5, 0),
        (6, 5, 5, 1),
        (4, 0, 0, 4),
    ])
    def test_boundaries(self, requested, remaining, expected_free, expected_paid):
        """Test zero, exact and overflow boundaries"""
        breakdown = split_billing(requested, remaining, unit_price_cents=89)

        assert breakdown.free_items == expected_free
        assert breakdown.paid_items == expected_paid
        assert breakdown.free_items + breakdown.paid_items == requested
        assert breakdown.total_cents == expected_paid * 89

    def test_ten_requested_three_free(self):
        """Test 10 requested with 3 free remaining"""
        breakdown = split_billing(10, 3, unit_price_cents=89)

        assert breakdown.free_items == 3
        assert breakdown.paid_items == 7
        assert breakdown.total_cents == 7 * 89
        assert breakdown.requires_payment is True

    def test_uses_configured_price(self):
        """Test default unit price comes from configuration"""
        breakdown = split_billing(2, 0)

        assert breakdown.total_cents == 2 * 89

    def test_negative_inputs_rejected(self):
        """Test negative counts are rejected"""
        with pytest.raises(ValueError):
            split_billing(-1, 3)
        with pytest.raises(ValueError):
            split_billing(1, -3)


class TestCheckBillingStatus:
    """Billing pre-flight answers"""

    def test_own_api_key_never_pays(self):
        """Test users with their own key are not billed"""
        result = check_billing_status(
            OwnedCredential(token="sk-own"),
            AllowanceStatus.from_counts(used=5, limit=5),
            requested_units=50,
        )

        assert result["requires_payment"] is False
        assert result["reason"] == "own_api_key"
        assert result["remaining_free_generations"] == 0

    def test_fits_free_tier(self):
        """Test batch fully covered by the free allowance"""
        result = check_billing_status(
            ManagedCredential(token="sk-managed"),
            AllowanceStatus.from_counts(used=1, limit=5),
            requested_units=3,
        )

        assert result["requires_payment"] is False
        assert result["reason"] == "free_tier"
        assert result["remaining_free_generations"] == 4
        assert result["remaining_after_generation"] == 1
        assert result["free_items_count"] == 3

    def test_requires_payment_beyond_allowance(self):
        """Test overflow past the allowance is charged"""
        result = check_billing_status(
            ManagedCredential(token="sk-managed"),
            AllowanceStatus.from_counts(used=2, limit=5),
            requested_units=10,
            unit_price_cents=89,
        )

        assert result["requires_payment"] is True
        assert result["free_items_count"] == 3
        assert result["items_to_charge"] == 7
        assert result["amount_cents"] == 623
        assert result["price_per_generation_cents"] == 89
