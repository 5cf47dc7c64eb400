"""
Free allowance, payment and generation log models
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON, Text, Index, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from ..base import Base


class PaymentStatus(str, enum.Enum):
    """Payment status enum"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationLogStatus(str, enum.Enum):
    """Generation log status enum"""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class UserAllowance(Base):
    """Per-user free generation allowance"""
    __tablename__ = "user_allowances"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, unique=True, index=True)
    free_generations_used = Column(Integer, default=0, nullable=False)
    free_generation_limit = Column(Integer, nullable=False)
    provider_customer_id = Column(String, nullable=True, index=True)  # Stripe customer, reused at checkout
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "free_generations_used >= 0 AND free_generations_used <= free_generation_limit",
            name="ck_user_allowances_used_within_limit",
        ),
    )


class Payment(Base):
    """One completed checkout, created exactly once per payment intent"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=True, index=True)
    provider_payment_intent_id = Column(String, nullable=False, unique=True, index=True)
    provider_checkout_session_id = Column(String, nullable=True, index=True)
    amount_cents = Column(Integer, nullable=False, default=0)
    collection_id = Column(Integer, nullable=True, index=True)  # Internal collection id
    external_collection_id = Column(String, nullable=True)
    collection_name = Column(String, nullable=True)
    item_ids = Column(JSON, nullable=False, default=list)
    item_count = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default=PaymentStatus.PENDING.value, index=True)
    generation_logs_count = Column(Integer, nullable=False, default=0)
    generation_started = Column(Boolean, nullable=False, default=False)
    items_completed = Column(Integer, nullable=False, default=0)
    items_failed = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    generation_logs = relationship("GenerationLog", back_populates="payment")

    __table_args__ = (
        UniqueConstraint("provider_payment_intent_id", name="uq_payments_provider_payment_intent_id"),
    )


class GenerationLog(Base):
    """One paid generation unit tied to a payment"""
    __tablename__ = "generation_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    collection_id = Column(Integer, nullable=True, index=True)
    item_id = Column(String, nullable=False)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True, index=True)
    status = Column(String, nullable=False, default=GenerationLogStatus.PENDING.value, index=True)
    is_free_tier = Column(Boolean, nullable=False, default=False)
    cost_cents = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    payment = relationship("Payment", back_populates="generation_logs")

    __table_args__ = (
        Index("idx_generation_logs_payment_item", "payment_id", "item_id"),
    )
