"""
Publication audit trail models
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from ..base import Base


class PublicationStatus(str, enum.Enum):
    """Publication status enum"""
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class PublicationItemStatus(str, enum.Enum):
    """Publication item status enum"""
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Publication(Base):
    """One publish invocation; root of the audit trail"""
    __tablename__ = "publications"

    id = Column(Integer, primary_key=True, index=True)
    collection_id = Column(Integer, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    total_items = Column(Integer, nullable=False, default=0)
    total_fields = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default=PublicationStatus.PROCESSING.value, index=True)
    items_succeeded = Column(Integer, nullable=False, default=0)
    items_failed = Column(Integer, nullable=False, default=0)
    fields_succeeded = Column(Integer, nullable=False, default=0)
    fields_failed = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)

    items = relationship(
        "PublicationItem",
        back_populates="publication",
        cascade="all, delete-orphan",
        order_by="PublicationItem.id",
    )


class PublicationItem(Base):
    """Outcome of publishing one item within a publication"""
    __tablename__ = "publication_items"

    id = Column(Integer, primary_key=True, index=True)
    publication_id = Column(Integer, ForeignKey("publications.id"), nullable=False, index=True)
    item_id = Column(String, nullable=False)
    slug = Column(String, nullable=True)
    published_url = Column(String, nullable=True)
    fields_total = Column(Integer, nullable=False, default=0)
    fields_succeeded = Column(Integer, nullable=False, default=0)
    fields_failed = Column(Integer, nullable=False, default=0)
    applied_fields = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default=PublicationItemStatus.PROCESSING.value, index=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    publication = relationship("Publication", back_populates="items")

    __table_args__ = (
        Index("idx_publication_items_publication_item", "publication_id", "item_id"),
    )
