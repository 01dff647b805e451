"""
SQLAlchemy declarative base for all models.

This module contains only the Base declarative base and must not import
from models or the job store to avoid circular dependencies.
"""

from sqlalchemy.orm import declarative_base

# Single source of truth for all SQLAlchemy models
Base = declarative_base()
