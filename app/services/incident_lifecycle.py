from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.core.celery_runtime import is_timeout
from app.db.types import ensure_utc
from app.models.fire import (
    INCIDENT_STATUS_ACTIVE,
    INCIDENT_STATUS_ENDED,
    FireDetection,
    FireIncident,
)
from app.services.incident_aggregate import mark_as_ended, validate_incident
from app.services.params import LifecycleParams

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    processed: int = 0
    ended: int = 0
    failures: List[Tuple[UUID, str]] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "ended": self.ended,
            "failed": len(self.failures),
        }


@dataclass
class DeletionResult:
    incidents_deleted: int = 0
    detections_deleted: int = 0

    def as_dict(self) -> dict:
        return {
            "incidents_deleted": self.incidents_deleted,
            "detections_deleted": self.detections_deleted,
        }


def _now(now: Optional[datetime]) -> datetime:
    return ensure_utc(now) if now else datetime.now(timezone.utc)


class IncidentLifecycleService:
    """active -> ended -> deleted transitions driven by elapsed time."""
    def __init__(self, db: Session, params: Optional[LifecycleParams] = None):
        self.db = db
        self.params = params or LifecycleParams.from_settings()

    def inactivity_cutoff(self, now: Optional[datetime] = None) -> datetime:
        return _now(now) - timedelta(hours=self.params.inactivity_hours)

    def retention_cutoff(self, now: Optional[datetime] = None) -> datetime:
        return _now(now) - timedelta(days=self.params.retention_days)

    def incidents_to_end(self, now: Optional[datetime] = None) -> List[FireIncident]:
        """Active incidents with no detection for longer than the inactivity threshold."""
        stmt = (
            select(FireIncident)
            .where(FireIncident.status == INCIDENT_STATUS_ACTIVE)
            .where(FireIncident.last_detected_at < self.inactivity_cutoff(now))
            .order_by(FireIncident.last_detected_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def _end_one(self, incident_id: UUID, now: datetime, cutoff: datetime) -> bool:
        incident = self.db.execute(
            select(FireIncident).where(FireIncident.id == incident_id).with_for_update()
        ).scalar_one_or_none()
        # a detection may have landed (or a concurrent sweep ended it) since the scan
        if (
            incident is None
            or incident.status != INCIDENT_STATUS_ACTIVE
            or incident.last_detected_at >= cutoff
        ):
            self.db.rollback()
            return False

        mark_as_ended(incident, now)
        validate_incident(incident)
        self.db.commit()
        return True

    def end_stale_incidents(self, now: Optional[datetime] = None) -> CleanupResult:
        now = _now(now)
        cutoff = self.inactivity_cutoff(now)
        incident_ids = [incident.id for incident in self.incidents_to_end(now)]
        self.db.commit()

        result = CleanupResult()
        for incident_id in incident_ids:
            result.processed += 1
            try:
                if self._end_one(incident_id, now, cutoff):
                    result.ended += 1
            except Exception as exc:
                self.db.rollback()
                if is_timeout(exc):
                    raise
                result.failures.append((incident_id, str(exc)))

        if result.failures:
            logger.warning(
                "Failed to end %s of %s incidents: %s",
                len(result.failures),
                result.processed,
                result.failures,
            )
        logger.info(
            "Incident cleanup: processed=%s ended=%s cutoff=%s",
            result.processed,
            result.ended,
            cutoff.isoformat(),
        )
        return result

    def delete_ended_incidents(self, now: Optional[datetime] = None) -> DeletionResult:
        """Delete ended incidents past retention; their detections go with them."""
        cutoff = self.retention_cutoff(now)
        result = DeletionResult()

        while True:
            incident_ids = list(
                self.db.execute(
                    select(FireIncident.id)
                    .where(FireIncident.status == INCIDENT_STATUS_ENDED)
                    .where(FireIncident.ended_at < cutoff)
                    .order_by(FireIncident.ended_at)
                    .limit(self.params.deletion_batch_size)
                ).scalars()
            )
            if not incident_ids:
                break

            detections = self.db.execute(
                select(func.count())
                .select_from(FireDetection)
                .where(FireDetection.fire_incident_id.in_(incident_ids))
            ).scalar_one()
            # detections are removed by ON DELETE CASCADE
            self.db.execute(
                delete(FireIncident)
                .where(FireIncident.id.in_(incident_ids))
                .execution_options(synchronize_session=False)
            )
            self.db.commit()

            result.incidents_deleted += len(incident_ids)
            result.detections_deleted += detections
            if len(incident_ids) < self.params.deletion_batch_size:
                break

        logger.info(
            "Incident deletion: incidents=%s detections=%s cutoff=%s",
            result.incidents_deleted,
            result.detections_deleted,
            cutoff.isoformat(),
        )
        return result

    def active_incidents_within_hours(
        self, hours: float, now: Optional[datetime] = None
    ) -> List[FireIncident]:
        since = _now(now) - timedelta(hours=hours)
        stmt = (
            select(FireIncident)
            .where(FireIncident.status == INCIDENT_STATUS_ACTIVE)
            .where(FireIncident.last_detected_at >= since)
            .order_by(FireIncident.last_detected_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())
