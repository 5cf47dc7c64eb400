"""
Free-tier ledger

Tracks how many free generations each user has consumed. A missing row means
the full allowance is still available; rows are created lazily on the first
increment.
"""
from dataclasses import dataclass
from typing import Optional
from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from ..config import config
from ..db.models.billing import UserAllowance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllowanceStatus:
    """Snapshot of a user's free allowance"""
    used: int
    remaining: int
    limit: int

    @classmethod
    def from_counts(cls, used: int, limit: int) -> "AllowanceStatus":
        return cls(used=used, remaining=max(0, limit - used), limit=limit)


class FreeTierLedger:
    """Per-user free generation allowance"""

    def __init__(self, db: Session, default_limit: Optional[int] = None):
        self.db = db
        self.default_limit = config.FREE_GENERATION_LIMIT if default_limit is None else default_limit

    def read_allowance(self, user_id: str) -> AllowanceStatus:
        """Return used/remaining/limit; absence of a row means nothing used yet"""
        row = self.db.query(UserAllowance).filter(UserAllowance.user_id == user_id).first()
        if row is None:
            return AllowanceStatus.from_counts(0, self.default_limit)
        return AllowanceStatus.from_counts(row.free_generations_used, row.free_generation_limit)

    def increment_usage(self, user_id: str, count: int) -> AllowanceStatus:
        """
        Add ``count`` free generations, saturating at the limit

        The increment is a single capped UPDATE so concurrent batches cannot
        push ``used`` past ``limit``. Database errors are re-raised: callers
        must not report success without a durable increment.

        Args:
            user_id: User whose allowance is consumed
            count: Number of successful free generations

        Returns:
            Allowance status after the increment
        """
        if count < 0:
            raise ValueError(f"count must not be negative (got {count})")
        if count == 0:
            return self.read_allowance(user_id)

        try:
            if not self._capped_increment(user_id, count):
                try:
                    self._insert_allowance(user_id, count)
                except IntegrityError:
                    # Another batch created the row first
                    self.db.rollback()
                    if not self._capped_increment(user_id, count):
                        raise
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Failed to record {count} free generations for user {user_id}", exc_info=True)
            raise

        status = self.read_allowance(user_id)
        logger.info(f"Free tier usage for user {user_id}: +{count} -> {status.used}/{status.limit}")
        return status

    def _capped_increment(self, user_id: str, count: int) -> bool:
        new_used = UserAllowance.free_generations_used + count
        result = self.db.execute(
            update(UserAllowance)
            .where(UserAllowance.user_id == user_id)
            .values(
                free_generations_used=case(
                    (new_used > UserAllowance.free_generation_limit, UserAllowance.free_generation_limit),
                    else_=new_used,
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def _insert_allowance(self, user_id: str, count: int) -> None:
        self.db.add(UserAllowance(
            user_id=user_id,
            free_generations_used=min(count, self.default_limit),
            free_generation_limit=self.default_limit,
        ))
        self.db.flush()

    def set_customer_id(self, user_id: str, customer_id: str) -> None:
        """Remember the payment-provider customer for later checkouts"""
        row = self.db.query(UserAllowance).filter(UserAllowance.user_id == user_id).first()
        if row is None:
            row = UserAllowance(
                user_id=user_id,
                free_generations_used=0,
                free_generation_limit=self.default_limit,
            )
            self.db.add(row)
        row.provider_customer_id = customer_id
        self.db.commit()

    def get_customer_id(self, user_id: str) -> Optional[str]:
        row = self.db.query(UserAllowance).filter(UserAllowance.user_id == user_id).first()
        return row.provider_customer_id if row else None
