"""
Database module for CMS Regen
"""
from .engine import engine, SessionLocal, get_db
from .base import Base
from .models import (
    UserAllowance,
    Site,
    Integration,
    Collection,
    Payment,
    GenerationLog,
    Publication,
    PublicationItem,
)

__all__ = [
    "engine",
    "SessionLocal",
    "get_db",
    "Base",
    "UserAllowance",
    "Site",
    "Integration",
    "Collection",
    "Payment",
    "GenerationLog",
    "Publication",
    "PublicationItem",
]
