"""
Webhook Reconciler

Turns a verified ``checkout.session.completed`` event into exactly one Payment
plus one pending GenerationLog per paid item. Delivery is at-least-once, so
every step after verification is idempotent per payment intent.
"""
from dataclasses import dataclass
from typing import Optional, Dict, Any, List
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from ..config import config
from ..db.models.billing import Payment, PaymentStatus, GenerationLog, GenerationLogStatus
from ..exceptions import WebhookPayloadError
from .billing_gateway import BillingGateway, parse_checkout_completed
from .checkout_service import decode_item_ids
from .free_tier_ledger import FreeTierLedger

logger = logging.getLogger(__name__)


@dataclass
class WebhookResult:
    """Outcome returned to the provider"""
    received: bool = True
    handled: bool = False
    already_processed: bool = False
    payment_id: Optional[int] = None
    generation_logs_created: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "received": self.received,
            "handled": self.handled,
            "already_processed": self.already_processed,
            "payment_id": self.payment_id,
            "generation_logs_created": self.generation_logs_created,
        }


class WebhookReconciler:
    """Reconciles payment-provider webhooks into payments and generation logs"""

    def __init__(self, db: Session, gateway: Optional[BillingGateway] = None, unit_price_cents: Optional[int] = None):
        self.db = db
        self.gateway = gateway
        self.unit_price_cents = unit_price_cents or config.PRICE_PER_GENERATION_CENTS

    def handle_webhook(self, raw_body: bytes, signature: str) -> WebhookResult:
        """
        Verify and reconcile one webhook delivery

        Raises:
            WebhookVerificationError: Signature check failed
            WebhookPayloadError: Completed checkout without a payment intent
            SQLAlchemyError: Payment insert failed for a reason other than a duplicate
        """
        event = self.gateway.verify_and_parse_webhook(raw_body, signature)

        completed = parse_checkout_completed(event)
        if completed is None:
            logger.info(f"Ignoring webhook event {event.get('id')} of type {event.get('type')}")
            return WebhookResult()

        payment_intent_id = completed["payment_intent_id"]
        if not payment_intent_id:
            raise WebhookPayloadError("No payment intent in checkout session")

        existing = self._find_payment(payment_intent_id)
        if existing is not None:
            logger.warning(f"Duplicate webhook for payment intent {payment_intent_id} - ignoring")
            return WebhookResult(handled=True, already_processed=True, payment_id=existing.id)

        metadata = completed["metadata"]
        user_id = metadata.get("user_id") or None
        if user_id is None:
            # Recorded without an owner so the charge can be matched by hand
            logger.error(f"No user_id in checkout metadata for payment intent {payment_intent_id}")

        item_ids = self._parse_item_ids(metadata, payment_intent_id)
        item_count = self._parse_item_count(metadata, item_ids)
        collection_id = self._parse_int(metadata.get("collection_db_id"))

        payment = Payment(
            user_id=user_id,
            provider_payment_intent_id=payment_intent_id,
            provider_checkout_session_id=completed["checkout_session_id"],
            amount_cents=completed["amount_total"],
            collection_id=collection_id,
            external_collection_id=metadata.get("collection_id"),
            collection_name=metadata.get("collection_name"),
            item_ids=item_ids,
            item_count=item_count,
            status=PaymentStatus.PENDING.value,
            generation_logs_count=len(item_ids) if user_id else 0,
            generation_started=False,
        )
        self.db.add(payment)
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent delivery inserted the same payment intent first
            self.db.rollback()
            existing = self._find_payment(payment_intent_id)
            logger.warning(f"Payment for intent {payment_intent_id} already recorded by a concurrent delivery")
            return WebhookResult(
                handled=True,
                already_processed=True,
                payment_id=existing.id if existing else None,
            )
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Failed to record payment for intent {payment_intent_id}", exc_info=True)
            raise

        self.db.refresh(payment)
        logger.info(
            f"Recorded payment {payment.id} for user {user_id}: "
            f"{item_count} items, {payment.amount_cents} cents"
        )

        logs_created = 0
        if user_id is not None:
            logs_created = self._seed_generation_logs(payment, item_ids)
            self._store_customer_id(user_id, completed["customer_id"])

        return WebhookResult(
            handled=True,
            payment_id=payment.id,
            generation_logs_created=logs_created,
        )

    def get_payment_status(self, user_id: str, checkout_session_id: str) -> Dict[str, Any]:
        """
        Look up the payment created for a checkout session

        Returns ``payment_id: None`` while the webhook has not landed yet.
        """
        payment = self.db.query(Payment).filter(
            Payment.provider_checkout_session_id == checkout_session_id,
            Payment.user_id == user_id,
        ).first()
        if payment is None:
            return {"payment_id": None, "status": "pending"}

        return {
            "payment_id": payment.id,
            "status": payment.status,
            "collection_id": payment.collection_id,
            "collection_name": payment.collection_name,
            "item_count": payment.item_count,
            "item_ids": payment.item_ids or [],
            "generation_started": payment.generation_started,
        }

    def _find_payment(self, payment_intent_id: str) -> Optional[Payment]:
        return self.db.query(Payment).filter(
            Payment.provider_payment_intent_id == payment_intent_id
        ).first()

    def _parse_item_ids(self, metadata: Dict[str, str], payment_intent_id: str) -> List[str]:
        try:
            return decode_item_ids(metadata)
        except (KeyError, ValueError, TypeError) as e:
            # Payment is still recorded so the charge is never lost
            logger.error(f"Could not parse item_ids for payment intent {payment_intent_id}: {e}")
            return []

    def _parse_item_count(self, metadata: Dict[str, str], item_ids: List[str]) -> int:
        item_count = self._parse_int(metadata.get("item_count"))
        return item_count if item_count is not None else len(item_ids)

    @staticmethod
    def _parse_int(value: Optional[str]) -> Optional[int]:
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    def _seed_generation_logs(self, payment: Payment, item_ids: List[str]) -> int:
        if not item_ids:
            return 0

        logs = [
            GenerationLog(
                user_id=payment.user_id,
                collection_id=payment.collection_id,
                item_id=item_id,
                payment_id=payment.id,
                status=GenerationLogStatus.PENDING.value,
                is_free_tier=False,
                cost_cents=self.unit_price_cents,
            )
            for item_id in item_ids
        ]
        try:
            self.db.add_all(logs)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create generation logs for payment {payment.id}: {e}", exc_info=True)
            return 0

        logger.info(f"Created {len(logs)} generation logs for payment {payment.id}")
        return len(logs)

    def _store_customer_id(self, user_id: str, customer_id: Optional[str]) -> None:
        if not customer_id:
            return
        try:
            FreeTierLedger(self.db).set_customer_id(user_id, customer_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to store customer {customer_id} for user {user_id}: {e}")
