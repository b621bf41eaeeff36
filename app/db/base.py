from uuid import uuid4

from sqlalchemy import Column, Uuid
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

from app.db.types import UtcDateTime

# 1. Declarative base shared by every model
Base = declarative_base()

# 2. Mixins


class UUIDMixin:
    """UUID primary key generated client-side."""

    id = Column(Uuid, primary_key=True, default=uuid4)


class TimestampMixin:
    """Automatic inserted_at / updated_at columns."""

    inserted_at = Column(UtcDateTime, nullable=False, server_default=func.now())
    updated_at = Column(
        UtcDateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )
