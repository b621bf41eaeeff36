from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from uuid import UUID

import h3
from sqlalchemy import select, text
from sqlalchemy.orm import Session

from app.core.celery_runtime import is_timeout
from app.models.fire import FireDetection, FireIncident
from app.services.incident_aggregate import (
    add_detection,
    create_incident,
    recompute_incident,
    validate_incident,
)
from app.services.params import ClusteringParams
from app.services.spatial_clustering import SpatialClusteringEngine

logger = logging.getLogger(__name__)

GRID_LOCK_RING = 1


class AssignmentError(Exception):
    """A detection could not be linked; nothing from the attempt was persisted."""

    def __init__(self, reason: str, detection_id: Optional[UUID] = None):
        super().__init__(reason)
        self.reason = reason
        self.detection_id = detection_id


class DetectionAlreadyAssignedError(AssignmentError):
    """Detections never move between incidents."""


@dataclass(frozen=True)
class AssignmentOutcome:
    detection_id: UUID
    incident_id: UUID
    created: bool


@dataclass
class AssignmentSummary:
    processed: int = 0
    assigned: int = 0
    incidents_created: int = 0
    failures: List[Tuple[UUID, str]] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "assigned": self.assigned,
            "incidents_created": self.incidents_created,
            "failed": len(self.failures),
        }


def grid_lock_keys(lat: float, lng: float, resolution: int) -> List[int]:
    """Advisory lock keys: the H3 cell of the point plus its ring-1 neighbours."""
    cell = h3.latlng_to_cell(lat, lng, resolution)
    return sorted(int(neighbour, 16) for neighbour in h3.grid_disk(cell, GRID_LOCK_RING))


class IncidentAssignmentService:
    """
    Links detections to incidents, one committed transaction per detection.

    On PostgreSQL each transaction first takes transaction-scoped advisory
    locks on the coarse H3 cells around the detection, so two workers never
    both decide "no incident nearby" for neighbouring points.
    """
    def __init__(self, db: Session, params: Optional[ClusteringParams] = None):
        self.db = db
        self.params = params or ClusteringParams.from_settings()
        self.engine = SpatialClusteringEngine(db)

    def _is_postgres(self) -> bool:
        return self.db.get_bind().dialect.name == "postgresql"

    def _prepare_transaction(self, detection: FireDetection, params: ClusteringParams) -> None:
        if not self._is_postgres():
            return

        if params.timeout_seconds:
            self.db.execute(
                text("SELECT set_config('statement_timeout', :value, true)"),
                {"value": str(int(params.timeout_seconds * 1000))},
            )

        for key in grid_lock_keys(detection.latitude, detection.longitude, params.lock_resolution):
            self.db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})

    def _members(self, incident_id: UUID) -> List[FireDetection]:
        stmt = select(FireDetection).where(FireDetection.fire_incident_id == incident_id)
        return list(self.db.execute(stmt).scalars().all())

    def _lock_detection(self, detection_id: UUID) -> FireDetection:
        # re-read under the grid locks; a concurrent worker may have linked it
        detection = self.db.execute(
            select(FireDetection)
            .where(FireDetection.id == detection_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        if detection.fire_incident_id is not None:
            raise DetectionAlreadyAssignedError(
                f"detection already belongs to incident {detection.fire_incident_id}",
                detection_id,
            )
        return detection

    def assign_with_outcome(
        self,
        detection: FireDetection,
        radius_meters: Optional[float] = None,
        expiry_hours: Optional[float] = None,
    ) -> AssignmentOutcome:
        params = self.params.with_overrides(radius_meters, expiry_hours)
        detection_id = detection.id

        if detection.fire_incident_id is not None:
            raise DetectionAlreadyAssignedError(
                f"detection already belongs to incident {detection.fire_incident_id}",
                detection_id,
            )

        try:
            self._prepare_transaction(detection, params)
            detection = self._lock_detection(detection_id)
            incident_id = self.engine.find_incident(
                detection,
                radius_meters=params.radius_meters,
                expiry_hours=params.expiry_hours,
            )

            if incident_id is None:
                incident = create_incident(detection)
                self.db.add(incident)
                self.db.flush()
                detection.fire_incident_id = incident.id
                created = True
            else:
                incident = self.db.execute(
                    select(FireIncident)
                    .where(FireIncident.id == incident_id)
                    .with_for_update()
                ).scalar_one()
                add_detection(incident, detection)
                detection.fire_incident_id = incident.id
                self.db.flush()
                if params.recompute_on_assign:
                    recompute_incident(incident, self._members(incident.id))
                created = False

            validate_incident(incident)
            self.db.flush()
            outcome = AssignmentOutcome(detection_id, incident.id, created)
            self.db.commit()
        except AssignmentError:
            self.db.rollback()
            raise
        except Exception as exc:
            self.db.rollback()
            # timeouts fail the whole sweep so the task is retried
            if is_timeout(exc):
                raise
            raise AssignmentError(str(exc) or exc.__class__.__name__, detection_id) from exc

        return outcome

    def assign(
        self,
        detection: FireDetection,
        radius_meters: Optional[float] = None,
        expiry_hours: Optional[float] = None,
    ) -> FireDetection:
        """Link ``detection`` to a nearby active incident or a new one."""
        outcome = self.assign_with_outcome(detection, radius_meters, expiry_hours)
        return self.db.get(FireDetection, outcome.detection_id)

    def _unassigned_ids(self, max_detections: Optional[int]) -> List[UUID]:
        stmt = select(FireDetection.id, FireDetection.detected_at).where(
            FireDetection.fire_incident_id.is_(None)
        )
        if max_detections is not None:
            # most recently inserted first when the sweep is capped
            stmt = stmt.order_by(FireDetection.inserted_at.desc(), FireDetection.id).limit(
                max_detections
            )
        rows = self.db.execute(stmt).all()
        # oldest acquisition first keeps sequential assignment stable
        return [row.id for row in sorted(rows, key=lambda row: (row.detected_at, str(row.id)))]

    def process_unassigned(self, max_detections: Optional[int] = None) -> AssignmentSummary:
        """
        Assign every unlinked detection; per-detection failures are collected.

        A Celery soft time limit or a statement_timeout cancellation aborts
        the sweep instead, after rolling back the detection in flight.
        """
        summary = AssignmentSummary()
        detection_ids = self._unassigned_ids(max_detections)
        self.db.commit()

        for detection_id in detection_ids:
            detection = self.db.get(FireDetection, detection_id)
            if detection is None or detection.fire_incident_id is not None:
                continue

            summary.processed += 1
            try:
                outcome = self.assign_with_outcome(detection)
            except AssignmentError as exc:
                summary.failures.append((detection_id, exc.reason))
                continue

            summary.assigned += 1
            if outcome.created:
                summary.incidents_created += 1

        if summary.failures:
            logger.warning(
                "Failed to assign %s of %s detections: %s",
                len(summary.failures),
                summary.processed,
                summary.failures,
            )
        logger.info(
            "Assignment sweep: processed=%s assigned=%s incidents_created=%s",
            summary.processed,
            summary.assigned,
            summary.incidents_created,
        )
        return summary
