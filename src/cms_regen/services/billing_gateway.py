"""
Billing Gateway - interface to the payment provider
Checkout sessions for pay-as-you-go generations and webhook verification
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
import json
import logging

import stripe

from ..exceptions import WebhookVerificationError

logger = logging.getLogger(__name__)


class BillingGateway(ABC):
    """Abstract base class for payment providers"""

    @abstractmethod
    def create_checkout_session(
        self,
        email: str,
        line_item_name: str,
        line_item_description: str,
        unit_amount_cents: int,
        quantity: int,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a one-off checkout session; returns {id, url}"""
        pass

    @abstractmethod
    def verify_and_parse_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """Verify the webhook signature and return the event as a dict"""
        pass


class StripeGateway(BillingGateway):
    """Stripe payment gateway"""

    def __init__(self, api_key: str, webhook_secret: str, currency: str = "usd"):
        """
        Initialize Stripe gateway

        Args:
            api_key: Stripe API key (test or live)
            webhook_secret: Stripe webhook signing secret
            currency: ISO currency for line items
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    def create_checkout_session(
        self,
        email: str,
        line_item_name: str,
        line_item_description: str,
        unit_amount_cents: int,
        quantity: int,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a Stripe Checkout session in payment mode"""
        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {
                            "name": line_item_name,
                            "description": line_item_description,
                        },
                        "unit_amount": unit_amount_cents,
                    },
                    "quantity": quantity,
                }
            ],
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if customer_id:
            params["customer"] = customer_id
        else:
            params["customer_email"] = email
            params["customer_creation"] = "always"

        try:
            session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session creation failed: {e}")
            raise

        return {"id": session.id, "url": session.url}

    def verify_and_parse_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """Verify Stripe webhook signature and return the event payload"""
        if not signature:
            raise WebhookVerificationError("Missing stripe-signature header")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(f"Invalid webhook signature: {e}") from e
        except ValueError as e:
            raise WebhookVerificationError(f"Invalid webhook payload: {e}") from e
        # Signature covers the raw body, so the plain JSON is trusted from here
        return json.loads(payload)


def parse_checkout_completed(event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Normalize a ``checkout.session.completed`` event

    Returns None for any other event type.
    """
    if event.get("type") != "checkout.session.completed":
        return None

    session = event.get("data", {}).get("object", {}) or {}
    payment_intent = session.get("payment_intent")
    # Expanded payment intents arrive as objects
    if isinstance(payment_intent, dict):
        payment_intent = payment_intent.get("id")

    return {
        "event_id": event.get("id", ""),
        "payment_intent_id": payment_intent or None,
        "checkout_session_id": session.get("id"),
        "amount_total": session.get("amount_total") or 0,
        "customer_id": session.get("customer"),
        "metadata": session.get("metadata") or {},
    }


def get_billing_gateway(config) -> BillingGateway:
    """
    Factory function for the configured billing gateway

    Args:
        config: Config object with payment provider settings
    """
    if not config.STRIPE_SECRET_KEY:
        raise ValueError("Stripe API key not configured")
    if not config.STRIPE_WEBHOOK_SECRET:
        raise ValueError("Stripe webhook secret not configured")
    return StripeGateway(config.STRIPE_SECRET_KEY, config.STRIPE_WEBHOOK_SECRET, currency=config.STRIPE_CURRENCY)

