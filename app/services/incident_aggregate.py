"""
=============================================================================
FIREPING - INCIDENT AGGREGATE
=============================================================================
Pure functions that derive and maintain an incident's metrics from its
member detections. Nothing here touches the session; the assignment
orchestrator and lifecycle service own persistence.

Metrics:
- centroid: mean of member coordinates
- bounding box: tightest box containing every member
- fire_count, first/last detection timestamps
- FRP: min/max over members that report FRP, total of all members
  (missing FRP counts as 0), average over fire_count
=============================================================================
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Optional, Sequence

from app.db.types import ensure_utc
from app.models.fire import (
    INCIDENT_STATUS_ACTIVE,
    INCIDENT_STATUS_ENDED,
    INCIDENT_STATUSES,
    FireIncident,
)

# Floating point slack for centroid-inside-bbox checks
_COORDINATE_TOLERANCE = 1e-9


class IncidentAggregateError(Exception):
    """Base error for invalid aggregate operations."""


class IncidentValidationError(IncidentAggregateError):
    """Raised when a detection or incident breaks an aggregate invariant."""


class EmptyIncidentError(IncidentAggregateError):
    """Raised when recomputing an incident without member detections."""


def _validate_detection(detection) -> None:
    lat = detection.latitude
    lng = detection.longitude
    if lat is None or lng is None or not (math.isfinite(lat) and math.isfinite(lng)):
        raise IncidentValidationError("detection has invalid coordinates")
    if not -90.0 <= lat <= 90.0:
        raise IncidentValidationError(f"detection latitude out of range: {lat}")
    if not -180.0 <= lng <= 180.0:
        raise IncidentValidationError(f"detection longitude out of range: {lng}")
    if detection.detected_at is None:
        raise IncidentValidationError("detection has no acquisition time")
    if detection.frp is not None and (not math.isfinite(detection.frp) or detection.frp < 0):
        raise IncidentValidationError(f"detection frp is invalid: {detection.frp}")


def create_incident(detection) -> FireIncident:
    """Seed a new active incident from a single detection."""
    _validate_detection(detection)
    detected_at = ensure_utc(detection.detected_at)
    frp = detection.frp
    total = frp or 0.0

    return FireIncident(
        status=INCIDENT_STATUS_ACTIVE,
        center_latitude=detection.latitude,
        center_longitude=detection.longitude,
        min_latitude=detection.latitude,
        max_latitude=detection.latitude,
        min_longitude=detection.longitude,
        max_longitude=detection.longitude,
        fire_count=1,
        first_detected_at=detected_at,
        last_detected_at=detected_at,
        max_frp=frp,
        min_frp=frp,
        total_frp=total,
        avg_frp=total,
    )


def add_detection(incident: FireIncident, detection) -> FireIncident:
    """Fold one detection into the incident's metrics (incremental path)."""
    if incident.status != INCIDENT_STATUS_ACTIVE:
        raise IncidentAggregateError(f"incident {incident.id} is {incident.status}")
    _validate_detection(detection)

    old_count = incident.fire_count or 0
    new_count = old_count + 1
    detected_at = ensure_utc(detection.detected_at)
    frp = detection.frp

    center_lat = (incident.center_latitude * old_count + detection.latitude) / new_count
    center_lng = (incident.center_longitude * old_count + detection.longitude) / new_count
    total = (incident.total_frp or 0.0) + (frp or 0.0)

    incident.center_latitude = center_lat
    incident.center_longitude = center_lng
    incident.min_latitude = min(incident.min_latitude, detection.latitude)
    incident.max_latitude = max(incident.max_latitude, detection.latitude)
    incident.min_longitude = min(incident.min_longitude, detection.longitude)
    incident.max_longitude = max(incident.max_longitude, detection.longitude)
    incident.fire_count = new_count
    incident.first_detected_at = min(ensure_utc(incident.first_detected_at), detected_at)
    incident.last_detected_at = max(ensure_utc(incident.last_detected_at), detected_at)

    if frp is not None:
        incident.max_frp = frp if incident.max_frp is None else max(incident.max_frp, frp)
        incident.min_frp = frp if incident.min_frp is None else min(incident.min_frp, frp)
    incident.total_frp = total
    incident.avg_frp = total / new_count
    return incident


def recompute_incident(
    incident: FireIncident, members: Optional[Sequence] = None
) -> FireIncident:
    """Re-derive every metric from the member detections."""
    members = list(incident.detections if members is None else members)
    if not members:
        raise EmptyIncidentError(f"incident {incident.id} has no detections")
    for member in members:
        _validate_detection(member)

    lats = [m.latitude for m in members]
    lngs = [m.longitude for m in members]
    times = [ensure_utc(m.detected_at) for m in members]
    frps = [m.frp for m in members if m.frp is not None]
    count = len(members)
    total = float(sum(frps))

    incident.center_latitude = sum(lats) / count
    incident.center_longitude = sum(lngs) / count
    incident.min_latitude = min(lats)
    incident.max_latitude = max(lats)
    incident.min_longitude = min(lngs)
    incident.max_longitude = max(lngs)
    incident.fire_count = count
    incident.first_detected_at = min(times)
    incident.last_detected_at = max(times)
    incident.max_frp = max(frps) if frps else None
    incident.min_frp = min(frps) if frps else None
    incident.total_frp = total
    incident.avg_frp = total / count
    return incident


def _within(value: float, low: float, high: float) -> bool:
    return low - _COORDINATE_TOLERANCE <= value <= high + _COORDINATE_TOLERANCE


def validate_incident(incident: FireIncident) -> FireIncident:
    if incident.status not in INCIDENT_STATUSES:
        raise IncidentValidationError(f"unknown incident status: {incident.status}")
    if not incident.fire_count or incident.fire_count < 1:
        raise IncidentValidationError("incident must contain at least one detection")

    coordinates = (
        incident.center_latitude,
        incident.center_longitude,
        incident.min_latitude,
        incident.max_latitude,
        incident.min_longitude,
        incident.max_longitude,
    )
    if any(value is None or not math.isfinite(value) for value in coordinates):
        raise IncidentValidationError("incident has invalid coordinates")
    if incident.min_latitude > incident.max_latitude or incident.min_longitude > incident.max_longitude:
        raise IncidentValidationError("incident bounding box is inverted")
    if incident.min_latitude < -90.0 or incident.max_latitude > 90.0:
        raise IncidentValidationError("incident bounding box exceeds latitude range")
    if incident.min_longitude < -180.0 or incident.max_longitude > 180.0:
        raise IncidentValidationError("incident bounding box exceeds longitude range")
    if not (
        _within(incident.center_latitude, incident.min_latitude, incident.max_latitude)
        and _within(incident.center_longitude, incident.min_longitude, incident.max_longitude)
    ):
        raise IncidentValidationError("incident centroid lies outside its bounding box")

    if incident.first_detected_at is None or incident.last_detected_at is None:
        raise IncidentValidationError("incident is missing detection timestamps")
    if ensure_utc(incident.last_detected_at) < ensure_utc(incident.first_detected_at):
        raise IncidentValidationError("last_detected_at precedes first_detected_at")

    if (
        incident.min_frp is not None
        and incident.max_frp is not None
        and incident.min_frp > incident.max_frp
    ):
        raise IncidentValidationError("min_frp exceeds max_frp")
    if incident.status == INCIDENT_STATUS_ENDED and incident.ended_at is None:
        raise IncidentValidationError("ended incident has no ended_at")
    return incident


def mark_as_ended(incident: FireIncident, now: datetime) -> FireIncident:
    """active -> ended; irreversible."""
    if incident.status != INCIDENT_STATUS_ACTIVE:
        raise IncidentAggregateError(f"incident {incident.id} is already {incident.status}")
    incident.status = INCIDENT_STATUS_ENDED
    incident.ended_at = ensure_utc(now)
    return incident
