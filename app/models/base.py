"""
SQLAlchemy models for the fire detection store.

Layout:
- app/db/base.py      → declarative Base and mixins
- app/models/fire.py  → FireDetection, FireIncident

Dependencies:
    pip install sqlalchemy psycopg2-binary
"""

from app.db.base import Base, TimestampMixin, UUIDMixin

__all__ = ["Base", "TimestampMixin", "UUIDMixin"]
