"""
Incident endpoints (read-only): list and detail for dashboard and
notification consumers.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api import deps
from app.schemas.fire import (
    DetectionRead,
    IncidentDetail,
    IncidentListResponse,
    IncidentRead,
    IncidentStatus,
)
from app.services import fire_queries

router = APIRouter()


@router.get("", response_model=IncidentListResponse, summary="List incidents")
def list_incidents(
    status: Optional[IncidentStatus] = Query(None, description="active | ended"),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(deps.get_db),
):
    incidents = fire_queries.list_incidents(
        db, status=status.value if status else None, limit=limit
    )
    return IncidentListResponse(
        count=len(incidents),
        data=[IncidentRead.model_validate(incident) for incident in incidents],
    )


@router.get("/{incident_id}", response_model=IncidentDetail, summary="Incident detail")
def get_incident(incident_id: UUID, db: Session = Depends(deps.get_db)):
    incident = fire_queries.get_incident(db, incident_id)
    detections = sorted(incident.detections, key=lambda d: d.detected_at)
    return IncidentDetail(
        **IncidentRead.model_validate(incident).model_dump(),
        detections=[DetectionRead.model_validate(d) for d in detections],
    )
