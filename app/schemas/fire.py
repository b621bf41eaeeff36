from datetime import date, datetime
from enum import Enum
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# ENUMS
# =============================================================================

class IncidentStatus(str, Enum):
    """Estados de un incidente."""
    ACTIVE = "active"
    ENDED = "ended"


class DetectionQuality(str, Enum):
    """Filtro de calidad para detecciones."""
    ALL = "all"
    HIGH = "high"


class DetectionFormat(str, Enum):
    """Formato de respuesta de /fires."""
    FULL = "full"
    COMPACT = "compact"


# =============================================================================
# DETECTIONS
# =============================================================================

class DetectionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    natural_key: str
    latitude: float
    longitude: float
    detected_at: datetime
    acquisition_date: Optional[date] = None
    acquisition_time: Optional[str] = None
    satellite: str
    instrument: Optional[str] = None
    version: Optional[str] = None
    confidence: str
    daynight: Optional[str] = None
    bright_ti4: Optional[float] = None
    bright_ti5: Optional[float] = None
    frp: Optional[float] = None
    scan: Optional[float] = None
    track: Optional[float] = None
    fire_incident_id: Optional[UUID] = None


class DetectionListResponse(BaseModel):
    count: int
    hours_back: int
    quality: DetectionQuality
    data: List[DetectionRead]


class CompactDetectionResponse(BaseModel):
    """[lat, lng, timestamp, confidence, frp, satellite] por fila."""
    format: str = "compact_v1"
    fields: List[str]
    count: int
    data: List[List[Any]]


# =============================================================================
# INCIDENTS
# =============================================================================

class IncidentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: IncidentStatus
    center_latitude: float
    center_longitude: float
    min_latitude: float
    max_latitude: float
    min_longitude: float
    max_longitude: float
    fire_count: int
    first_detected_at: datetime
    last_detected_at: datetime
    max_frp: Optional[float] = None
    min_frp: Optional[float] = None
    avg_frp: Optional[float] = None
    total_frp: Optional[float] = None
    ended_at: Optional[datetime] = None


class IncidentDetail(IncidentRead):
    detections: List[DetectionRead] = Field(default_factory=list)


class IncidentListResponse(BaseModel):
    count: int
    data: List[IncidentRead]
