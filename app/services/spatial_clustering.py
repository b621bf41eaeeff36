from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from uuid import UUID

import numpy as np
from geoalchemy2 import Geography
from sqlalchemy import and_, cast, func, or_, select
from sqlalchemy.orm import Session

from app.db.types import WGS84_SRID, ensure_utc
from app.models.fire import INCIDENT_STATUS_ACTIVE, FireDetection, FireIncident
from app.services.params import DEFAULT_EXPIRY_HOURS, DEFAULT_RADIUS_METERS

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371000.0
METERS_PER_DEGREE = 111000.0

# Below this cos(lat) the longitude offset is meaningless; scan every meridian
_MIN_COS_LATITUDE = 1e-6


@dataclass(frozen=True)
class BoundingBox:
    """Lat/lng pre-filter; ``lng_ranges`` splits in two across the antimeridian."""
    min_lat: float
    max_lat: float
    lng_ranges: Tuple[Tuple[float, float], ...]


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_METERS * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_many(lat: float, lon: float, lats, lons) -> np.ndarray:
    """Vectorised haversine from one point to many, in meters."""
    phi1 = np.radians(lat)
    phi2 = np.radians(np.asarray(lats, dtype=float))
    dphi = phi2 - phi1
    dlambda = np.radians(np.asarray(lons, dtype=float) - lon)
    a = np.sin(dphi / 2) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(dlambda / 2) ** 2
    a = np.clip(a, 0.0, 1.0)
    return 2 * EARTH_RADIUS_METERS * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def bounding_box(lat: float, lng: float, radius_meters: float) -> BoundingBox:
    lat_offset = radius_meters / METERS_PER_DEGREE
    min_lat = max(-90.0, lat - lat_offset)
    max_lat = min(90.0, lat + lat_offset)

    cos_lat = math.cos(math.radians(lat))
    if cos_lat < _MIN_COS_LATITUDE or min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(min_lat, max_lat, ((-180.0, 180.0),))

    lng_offset = radius_meters / (METERS_PER_DEGREE * cos_lat)
    if lng_offset >= 180.0:
        return BoundingBox(min_lat, max_lat, ((-180.0, 180.0),))

    min_lng = lng - lng_offset
    max_lng = lng + lng_offset
    if min_lng < -180.0:
        ranges = ((min_lng + 360.0, 180.0), (-180.0, max_lng))
    elif max_lng > 180.0:
        ranges = ((min_lng, 180.0), (-180.0, max_lng - 360.0))
    else:
        ranges = ((min_lng, max_lng),)
    return BoundingBox(min_lat, max_lat, ranges)


class SpatialClusteringEngine:
    """Finds the active incident an incoming detection belongs to, if any."""
    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def reference_time(detection, now: Optional[datetime] = None) -> datetime:
        detected_at = getattr(detection, "detected_at", None)
        if detected_at is not None:
            return ensure_utc(detected_at)
        return ensure_utc(now) if now else datetime.now(timezone.utc)

    def candidate_query(
        self,
        detection,
        radius_meters: float,
        window_start: datetime,
        window_end: datetime,
        dialect: str,
    ):
        """
        Member detections of active incidents inside the time window and
        roughly inside the radius.

        PostgreSQL filters with ST_DWithin on the GIST-indexed geography
        column (sphere, to agree with the haversine pass); other backends
        use a lat/lng bounding box.
        """
        if dialect == "postgresql":
            origin = cast(
                func.ST_SetSRID(
                    func.ST_MakePoint(detection.longitude, detection.latitude), WGS84_SRID
                ),
                Geography(geometry_type="POINT", srid=WGS84_SRID),
            )
            spatial_filter = func.ST_DWithin(
                FireDetection.location, origin, radius_meters, False
            )
        else:
            box = bounding_box(detection.latitude, detection.longitude, radius_meters)
            spatial_filter = and_(
                FireDetection.latitude.between(box.min_lat, box.max_lat),
                or_(
                    *[
                        FireDetection.longitude.between(low, high)
                        for low, high in box.lng_ranges
                    ]
                ),
            )

        return (
            select(
                FireDetection.latitude,
                FireDetection.longitude,
                FireDetection.fire_incident_id,
            )
            .join(FireIncident, FireIncident.id == FireDetection.fire_incident_id)
            .where(
                and_(
                    FireIncident.status == INCIDENT_STATUS_ACTIVE,
                    FireDetection.detected_at >= window_start,
                    FireDetection.detected_at <= window_end,
                    spatial_filter,
                )
            )
        )

    def _candidates(
        self,
        detection,
        radius_meters: float,
        window_start: datetime,
        window_end: datetime,
    ) -> List[Tuple[float, float, UUID]]:
        stmt = self.candidate_query(
            detection,
            radius_meters,
            window_start,
            window_end,
            self.db.get_bind().dialect.name,
        )
        return [tuple(row) for row in self.db.execute(stmt).all()]

    def find_incident(
        self,
        detection,
        radius_meters: Optional[float] = None,
        expiry_hours: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Optional[UUID]:
        """
        Return the id of the nearest active incident with a member detection
        within ``radius_meters`` and at most ``expiry_hours`` either side of
        the detection, or None.
        """
        radius_meters = DEFAULT_RADIUS_METERS if radius_meters is None else radius_meters
        expiry_hours = DEFAULT_EXPIRY_HOURS if expiry_hours is None else expiry_hours

        # symmetric: assigning D1 then D2 or D2 then D1 gives the same incident
        reference = self.reference_time(detection, now)
        window = timedelta(hours=expiry_hours)
        window_start, window_end = reference - window, reference + window

        candidates = self._candidates(detection, radius_meters, window_start, window_end)
        if not candidates:
            return None

        lats, lons, incident_ids = zip(*candidates)
        distances = haversine_many(detection.latitude, detection.longitude, lats, lons)
        within = np.flatnonzero(distances <= radius_meters)
        if within.size == 0:
            logger.debug(
                "No incident within %sm (%s bbox candidates)", radius_meters, len(candidates)
            )
            return None

        nearest = within[np.argmin(distances[within])]
        return incident_ids[int(nearest)]
