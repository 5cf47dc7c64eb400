"""
Billing calculator

Splits a generation request into free and paid units and answers the billing
pre-flight check the UI runs before starting a batch.
"""
from dataclasses import dataclass
from typing import Dict, Any, Optional

from ..config import config
from .credentials import ApiCredential, OwnedCredential
from .free_tier_ledger import AllowanceStatus


@dataclass(frozen=True)
class BillingBreakdown:
    """Free/paid split of a request"""
    free_items: int
    paid_items: int
    total_cents: int

    @property
    def requires_payment(self) -> bool:
        return self.paid_items > 0


def split_billing(
    requested_items: int,
    remaining_free: int,
    unit_price_cents: Optional[int] = None,
) -> BillingBreakdown:
    """
    Split ``requested_items`` into free and paid units

    Args:
        requested_items: Number of generations requested
        remaining_free: Free generations left for the user
        unit_price_cents: Price per paid generation (defaults to configured price)

    Returns:
        BillingBreakdown with free_items + paid_items == requested_items
    """
    if requested_items < 0:
        raise ValueError(f"requested_items must not be negative (got {requested_items})")
    if remaining_free < 0:
        raise ValueError(f"remaining_free must not be negative (got {remaining_free})")
    if unit_price_cents is None:
        unit_price_cents = config.PRICE_PER_GENERATION_CENTS

    free_items = min(requested_items, remaining_free)
    paid_items = requested_items - free_items
    return BillingBreakdown(
        free_items=free_items,
        paid_items=paid_items,
        total_cents=paid_items * unit_price_cents,
    )


def check_billing_status(
    credential: ApiCredential,
    allowance: AllowanceStatus,
    requested_units: int,
    unit_price_cents: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Pre-flight billing decision for a batch of generations

    Users generating with their own provider key are never charged. Everyone
    else consumes the free allowance first and pays for the rest.
    """
    if unit_price_cents is None:
        unit_price_cents = config.PRICE_PER_GENERATION_CENTS

    if isinstance(credential, OwnedCredential):
        return {
            "requires_payment": False,
            "reason": "own_api_key",
            "remaining_free_generations": 0,  # Not applicable
            "price_per_generation_cents": unit_price_cents,
        }

    breakdown = split_billing(requested_units, allowance.remaining, unit_price_cents)

    if not breakdown.requires_payment:
        return {
            "requires_payment": False,
            "reason": "free_tier",
            "remaining_free_generations": allowance.remaining,
            "remaining_after_generation": allowance.remaining - requested_units,
            "free_items_count": breakdown.free_items,
            "price_per_generation_cents": unit_price_cents,
        }

    return {
        "requires_payment": True,
        "remaining_free_generations": allowance.remaining,
        "free_items_count": breakdown.free_items,
        "items_to_charge": breakdown.paid_items,
        "amount_cents": breakdown.total_cents,
        "price_per_generation_cents": unit_price_cents,
    }
