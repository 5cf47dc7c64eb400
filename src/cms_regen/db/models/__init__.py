"""
Database models for CMS Regen
"""
from .collection import Site, Integration, Collection
from .billing import (
    UserAllowance,
    Payment,
    PaymentStatus,
    GenerationLog,
    GenerationLogStatus,
)
from .publication import (
    Publication,
    PublicationStatus,
    PublicationItem,
    PublicationItemStatus,
)

__all__ = [
    "Site",
    "Integration",
    "Collection",
    "UserAllowance",
    "Payment",
    "PaymentStatus",
    "GenerationLog",
    "GenerationLogStatus",
    "Publication",
    "PublicationStatus",
    "PublicationItem",
    "PublicationItemStatus",
]
