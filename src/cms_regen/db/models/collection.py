"""
Collection ownership chain: Collection -> Site -> Integration

These rows are owned by the connect/discovery flow; this service only reads them.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from datetime import datetime

from ..base import Base


class Site(Base):
    """External content-store site"""
    __tablename__ = "sites"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    external_site_id = Column(String, nullable=False, index=True)
    display_name = Column(String, nullable=True)
    base_url = Column(String, nullable=True)  # Public origin, e.g. custom domain
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    integration = relationship("Integration", back_populates="site", uselist=False)
    collections = relationship("Collection", back_populates="site")


class Integration(Base):
    """Encrypted provider credentials for a site"""
    __tablename__ = "integrations"

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(Integer, ForeignKey("sites.id"), nullable=False, unique=True, index=True)
    encrypted_store_key = Column(Text, nullable=True)  # Webflow API token
    encrypted_generation_key = Column(Text, nullable=True)  # OpenAI API key or placeholder
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    site = relationship("Site", back_populates="integration")


class Collection(Base):
    """External CMS collection registered by a user"""
    __tablename__ = "collections"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    site_id = Column(Integer, ForeignKey("sites.id"), nullable=False, index=True)
    external_collection_id = Column(String, nullable=False, index=True)
    display_name = Column(String, nullable=True)
    slug = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    site = relationship("Site", back_populates="collections")
