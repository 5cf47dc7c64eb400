"""
Generation Executor

Runs per-field generation for a batch of items, meters free usage against the
ledger and settles paid batches against their payment record.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List, Callable
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import base64
import logging

from ..db.models.billing import Payment, PaymentStatus, GenerationLog, GenerationLogStatus
from ..exceptions import PaymentRequiredError
from .credentials import ApiCredential, OwnedCredential
from .free_tier_ledger import FreeTierLedger
from .generation_client import COLUMN_IMAGE, COLUMN_PLAIN_TEXT, ContentGenerationClient, FieldGenerator

logger = logging.getLogger(__name__)

KIND_TEXT = "text"
KIND_IMAGE = "image"


@dataclass
class GenerationItem:
    """An item to generate for and its current field values"""
    id: str
    field_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FieldResult:
    item_id: str
    field_name: str
    kind: str
    value: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        result = {"item_id": self.item_id, "field_name": self.field_name, "kind": self.kind}
        if self.error is None:
            result["value"] = self.value
        else:
            result["error"] = self.error
        return result


@dataclass
class GenerationOutcome:
    """Per-field results of a batch plus the free usage it consumed"""
    results: List[FieldResult]
    free_used: int
    remaining_free_after: Optional[int]
    total_requested_fields: int
    uses_own_api_key: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [result.to_dict() for result in self.results],
            "free_used": self.free_used,
            "remaining_free_after": self.remaining_free_after,
            "total_requested_fields": self.total_requested_fields,
            "uses_own_api_key": self.uses_own_api_key,
        }


def _default_generator_factory(token: str) -> FieldGenerator:
    return FieldGenerator(ContentGenerationClient(api_key=token))


class GenerationExecutor:
    """Executes (item x field) generations against the free allowance"""

    def __init__(
        self,
        db: Session,
        ledger: Optional[FreeTierLedger] = None,
        generator_factory: Callable[[str], FieldGenerator] = _default_generator_factory,
    ):
        self.db = db
        self.ledger = ledger or FreeTierLedger(db)
        self.generator_factory = generator_factory

    def generate(
        self,
        user_id: str,
        items: List[GenerationItem],
        fields: List[str],
        column_types: Dict[str, str],
        credential: ApiCredential,
        site_context: Optional[str] = None,
    ) -> GenerationOutcome:
        """
        Generate every requested field of every item

        Each (item, field) pair is independent: a failure is recorded in its
        result and the batch continues. Successful generations made with the
        managed credential consume free allowance until it runs out; the ledger
        is incremented once at the end.

        Raises:
            SQLAlchemyError: The free usage could not be recorded
        """
        uses_own_api_key = isinstance(credential, OwnedCredential)
        generator = self.generator_factory(credential.token)

        remaining_free: Optional[int] = None
        if not uses_own_api_key:
            remaining_free = self.ledger.read_allowance(user_id).remaining

        free_used = 0
        results: List[FieldResult] = []

        for item in items:
            for field_name in fields:
                column_type = column_types.get(field_name) or COLUMN_PLAIN_TEXT
                kind = KIND_IMAGE if column_type == COLUMN_IMAGE else KIND_TEXT
                context = {key: value for key, value in item.field_data.items() if key != field_name}

                try:
                    generated = generator.generate(column_type, field_name, context, site_context)
                except Exception as e:
                    logger.warning(f"Generation failed for item {item.id} field {field_name}: {e}")
                    results.append(FieldResult(item.id, field_name, kind, error=str(e) or "Generation failed"))
                    continue

                if kind == KIND_IMAGE:
                    value = "data:image/png;base64," + base64.b64encode(generated).decode("ascii")
                else:
                    value = str(generated)
                results.append(FieldResult(item.id, field_name, kind, value=value))

                if remaining_free is not None and remaining_free > 0:
                    remaining_free -= 1
                    free_used += 1

        if free_used > 0:
            self.ledger.increment_usage(user_id, free_used)

        succeeded = sum(1 for result in results if result.succeeded)
        logger.info(
            f"Generated {succeeded}/{len(results)} fields for user {user_id} "
            f"(free used: {free_used}, own key: {uses_own_api_key})"
        )

        return GenerationOutcome(
            results=results,
            free_used=free_used,
            remaining_free_after=remaining_free,
            total_requested_fields=len(items) * len(fields),
            uses_own_api_key=uses_own_api_key,
        )

    def claim_payment(self, user_id: str, payment_id: int, required_units: int) -> Payment:
        """
        Reserve a payment for one generation run

        Raises:
            LookupError: Payment does not exist or belongs to someone else
            PaymentRequiredError: Payment already used, in a terminal state, or too small
        """
        payment = self.db.query(Payment).filter(
            Payment.id == payment_id,
            Payment.user_id == user_id,
        ).first()
        if payment is None:
            raise LookupError("Payment not found")

        if payment.generation_started:
            raise PaymentRequiredError("This payment has already been used for generation")
        if payment.status not in (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value):
            raise PaymentRequiredError(f"Invalid payment status: {payment.status}")
        if payment.item_count < required_units:
            raise PaymentRequiredError(
                f"Payment covers {payment.item_count} generations but {required_units} are required"
            )

        payment.generation_started = True
        payment.status = PaymentStatus.PROCESSING.value
        payment.started_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(payment)

        logger.info(f"Claimed payment {payment.id} for user {user_id} ({required_units} units)")
        return payment

    def release_payment(self, payment: Payment) -> None:
        """
        Hand a claimed payment back after its generation run failed

        Rolls back the session before writing. If the release itself cannot
        be written it is logged and the payment stays claimed.
        """
        self.db.rollback()
        try:
            payment.generation_started = False
            payment.status = PaymentStatus.PENDING.value
            payment.started_at = None
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not release payment {payment.id}: {e}", exc_info=True)
            return
        logger.warning(f"Released payment {payment.id} after a failed generation run")

    def settle_payment(self, payment: Payment, outcome: GenerationOutcome) -> Payment:
        """Close out a claimed payment with per-item generation results"""
        first_error: Dict[str, Optional[str]] = {}
        for result in outcome.results:
            first_error.setdefault(result.item_id, None)
            if not result.succeeded and first_error[result.item_id] is None:
                first_error[result.item_id] = result.error

        now = datetime.utcnow()
        logs = self.db.query(GenerationLog).filter(
            GenerationLog.payment_id == payment.id,
            GenerationLog.status == GenerationLogStatus.PENDING.value,
        ).all()
        for log in logs:
            if log.item_id not in first_error:
                continue
            error = first_error[log.item_id]
            log.status = GenerationLogStatus.SUCCEEDED.value if error is None else GenerationLogStatus.FAILED.value
            log.error_message = error
            log.completed_at = now

        items_failed = sum(1 for error in first_error.values() if error is not None)
        payment.items_completed = len(first_error) - items_failed
        payment.items_failed = items_failed
        payment.status = PaymentStatus.COMPLETED.value
        payment.completed_at = now
        self.db.commit()
        self.db.refresh(payment)

        logger.info(
            f"Settled payment {payment.id}: {payment.items_completed} items completed, "
            f"{payment.items_failed} failed"
        )
        return payment
