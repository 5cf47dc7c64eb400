"""
Declarative base for all CMS Regen models
"""
from sqlalchemy.orm import declarative_base

Base = declarative_base()
