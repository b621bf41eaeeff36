"""
Read-only projections over detections and incidents (dashboard, map and
notification consumers).
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from app.db.types import ensure_utc
from app.models.fire import INCIDENT_STATUSES, FireDetection, FireIncident
from app.services.spatial_clustering import bounding_box, haversine_many

HIGH_QUALITY_CONFIDENCE = ("n", "h")
HIGH_QUALITY_MIN_FRP = 5.0

COMPACT_FORMAT = "compact_v1"
COMPACT_FIELDS = ["lat", "lng", "timestamp", "confidence", "frp", "satellite"]


class IncidentNotFoundError(LookupError):
    def __init__(self, incident_id):
        super().__init__(f"Incident {incident_id} not found")
        self.incident_id = incident_id


@dataclass(frozen=True)
class MonitoredLocation:
    latitude: float
    longitude: float
    radius_meters: float


def _since(hours_back: float, now: Optional[datetime]) -> datetime:
    now = ensure_utc(now) if now else datetime.now(timezone.utc)
    return now - timedelta(hours=hours_back)


def _quality_filter(stmt, quality: str):
    if quality == "high":
        return stmt.where(
            FireDetection.confidence.in_(HIGH_QUALITY_CONFIDENCE),
            FireDetection.frp >= HIGH_QUALITY_MIN_FRP,
        )
    return stmt


def is_high_quality(detection) -> bool:
    return (
        detection.confidence in HIGH_QUALITY_CONFIDENCE
        and detection.frp is not None
        and detection.frp >= HIGH_QUALITY_MIN_FRP
    )


def recent_detections(
    db: Session,
    hours_back: float,
    quality: str = "all",
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[FireDetection]:
    """Detections from the last ``hours_back`` hours, newest first."""
    stmt = select(FireDetection).where(FireDetection.detected_at >= _since(hours_back, now))
    stmt = _quality_filter(stmt, quality).order_by(FireDetection.detected_at.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars().all())


def detections_near_locations(
    db: Session,
    locations: Sequence[MonitoredLocation],
    hours_back: float,
    quality: str = "all",
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[FireDetection]:
    """Recent detections inside any location's radius, newest first, without repeats."""
    if not locations:
        return []

    boxes = []
    for location in locations:
        box = bounding_box(location.latitude, location.longitude, location.radius_meters)
        boxes.append(
            and_(
                FireDetection.latitude.between(box.min_lat, box.max_lat),
                or_(
                    *[
                        FireDetection.longitude.between(low, high)
                        for low, high in box.lng_ranges
                    ]
                ),
            )
        )

    stmt = (
        select(FireDetection)
        .where(FireDetection.detected_at >= _since(hours_back, now))
        .where(or_(*boxes))
    )
    stmt = _quality_filter(stmt, quality).order_by(FireDetection.detected_at.desc())
    candidates = list(db.execute(stmt).scalars().all())
    if not candidates:
        return []

    lats = [d.latitude for d in candidates]
    lngs = [d.longitude for d in candidates]
    keep = [False] * len(candidates)
    for location in locations:
        distances = haversine_many(location.latitude, location.longitude, lats, lngs)
        for index, distance in enumerate(distances):
            if distance <= location.radius_meters:
                keep[index] = True

    matches = [detection for detection, hit in zip(candidates, keep) if hit]
    return matches[:limit] if limit is not None else matches


def detections_near(
    db: Session,
    latitude: float,
    longitude: float,
    radius_meters: float,
    hours_back: float,
    now: Optional[datetime] = None,
) -> List[FireDetection]:
    return detections_near_locations(
        db,
        [MonitoredLocation(latitude, longitude, radius_meters)],
        hours_back,
        now=now,
    )


def list_incidents(
    db: Session, status: Optional[str] = None, limit: int = 100
) -> List[FireIncident]:
    if status is not None and status not in INCIDENT_STATUSES:
        raise ValueError(f"unknown incident status: {status}")
    stmt = select(FireIncident).order_by(FireIncident.last_detected_at.desc()).limit(limit)
    if status is not None:
        stmt = stmt.where(FireIncident.status == status)
    return list(db.execute(stmt).scalars().all())


def get_incident(db: Session, incident_id: UUID) -> FireIncident:
    incident = db.get(FireIncident, incident_id)
    if incident is None:
        raise IncidentNotFoundError(incident_id)
    return incident


def incidents_for_detections(db: Session, detections: Iterable) -> List[FireIncident]:
    """Distinct incidents the given detections belong to."""
    incident_ids = {d.fire_incident_id for d in detections if d.fire_incident_id is not None}
    if not incident_ids:
        return []
    stmt = (
        select(FireIncident)
        .where(FireIncident.id.in_(incident_ids))
        .order_by(FireIncident.last_detected_at.desc())
    )
    return list(db.execute(stmt).scalars().all())


def to_compact_array(detection) -> list:
    """[lat, lng, unix_timestamp, confidence, frp, satellite]"""
    timestamp = calendar.timegm(ensure_utc(detection.detected_at).utctimetuple())
    return [
        detection.latitude,
        detection.longitude,
        timestamp,
        detection.confidence,
        detection.frp,
        detection.satellite,
    ]


def to_compact_payload(detections: Sequence) -> dict:
    return {
        "format": COMPACT_FORMAT,
        "fields": list(COMPACT_FIELDS),
        "count": len(detections),
        "data": [to_compact_array(d) for d in detections],
    }
