"""
Import every model in one place.

Usage:
    from app.models import FireDetection, FireIncident
"""

from .base import Base
from .fire import (
    INCIDENT_STATUS_ACTIVE,
    INCIDENT_STATUS_ENDED,
    INCIDENT_STATUSES,
    FireDetection,
    FireIncident,
)

__all__ = [
    # Base
    "Base",
    # Fire models
    "FireDetection",
    "FireIncident",
    # Incident statuses
    "INCIDENT_STATUS_ACTIVE",
    "INCIDENT_STATUS_ENDED",
    "INCIDENT_STATUSES",
]
