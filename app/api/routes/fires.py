"""
Detection endpoints (read-only) for map rendering.
"""
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api import deps
from app.schemas.fire import (
    CompactDetectionResponse,
    DetectionFormat,
    DetectionListResponse,
    DetectionQuality,
    DetectionRead,
)
from app.services import fire_queries

router = APIRouter()


@router.get(
    "",
    response_model=Union[CompactDetectionResponse, DetectionListResponse],
    summary="Recent detections",
    description="""
    Detections from the last `hours_back` hours, newest first.

    - `quality=high` keeps confidence n/h with FRP >= 5 MW
    - `lat` + `lng` + `radius_meters` restrict to a monitored area
    - `format=compact` returns `compact_v1` arrays
    """,
)
def list_fires(
    hours_back: int = Query(24, ge=1, le=24 * 14),
    quality: DetectionQuality = Query(DetectionQuality.ALL),
    limit: Optional[int] = Query(None, ge=1, le=50000),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius_meters: float = Query(5000.0, gt=0, le=500000),
    format: DetectionFormat = Query(DetectionFormat.FULL),
    db: Session = Depends(deps.get_db),
):
    if (lat is None) != (lng is None):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="lat and lng must be provided together",
        )

    if lat is not None:
        detections = fire_queries.detections_near_locations(
            db,
            [fire_queries.MonitoredLocation(lat, lng, radius_meters)],
            hours_back,
            quality=quality.value,
            limit=limit,
        )
    else:
        detections = fire_queries.recent_detections(
            db, hours_back, quality=quality.value, limit=limit
        )

    if format == DetectionFormat.COMPACT:
        return CompactDetectionResponse(**fire_queries.to_compact_payload(detections))

    return DetectionListResponse(
        count=len(detections),
        hours_back=hours_back,
        quality=quality,
        data=[DetectionRead.model_validate(d) for d in detections],
    )
