"""
Lifecycle Tasks: cierre de incidentes inactivos y borrado de incidentes
finalizados (con sus detecciones).
"""

import logging
import time
from datetime import datetime, timezone

from app.db.session import SessionLocal
from app.services.incident_lifecycle import IncidentLifecycleService
from app.services.params import LifecycleParams
from workers.celery_app import TASK_SOFT_TIME_LIMIT, TASK_TIME_LIMIT, UniqueTask, celery_app

logger = logging.getLogger(__name__)


def _duration(start: float) -> dict:
    duration_ms = int((time.monotonic() - start) * 1000)
    return {"duration_ms": duration_ms, "duration_seconds": round(duration_ms / 1000, 1)}


@celery_app.task(
    bind=True,
    name='workers.tasks.lifecycle.incident_deletion',
    queue='lifecycle',
    max_retries=3,
    soft_time_limit=TASK_SOFT_TIME_LIMIT,
    time_limit=TASK_TIME_LIMIT,
)
def incident_deletion(self, threshold_days: float | None = None):
    """Borra incidentes finalizados hace mas de ``threshold_days`` dias."""
    start = time.monotonic()
    params = LifecycleParams.from_settings()
    if threshold_days is not None:
        params = LifecycleParams(
            inactivity_hours=params.inactivity_hours,
            retention_days=threshold_days,
            deletion_batch_size=params.deletion_batch_size,
        )

    db = SessionLocal()
    try:
        result = IncidentLifecycleService(db, params).delete_ended_incidents()
    except Exception as exc:
        db.rollback()
        logger.exception("Error borrando incidentes: %s", exc)
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))
    finally:
        db.close()

    metadata = {
        "success": True,
        **result.as_dict(),
        "threshold_days": params.retention_days,
        **_duration(start),
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }
    logger.info("Borrado de incidentes completado: %s", metadata)
    return metadata


@celery_app.task(
    bind=True,
    base=UniqueTask,
    name='workers.tasks.lifecycle.incident_cleanup',
    queue='lifecycle',
    max_retries=3,
    soft_time_limit=TASK_SOFT_TIME_LIMIT,
    time_limit=TASK_TIME_LIMIT,
)
def incident_cleanup(self, threshold_hours: float | None = None):
    """
    Marca como 'ended' los incidentes sin detecciones en ``threshold_hours``
    horas y siempre encola el borrado a continuacion.
    """
    start = time.monotonic()
    params = LifecycleParams.from_settings()
    if threshold_hours is not None:
        params = LifecycleParams(
            inactivity_hours=threshold_hours,
            retention_days=params.retention_days,
            deletion_batch_size=params.deletion_batch_size,
        )

    db = SessionLocal()
    try:
        result = IncidentLifecycleService(db, params).end_stale_incidents()
    except Exception as exc:
        db.rollback()
        logger.exception("Error en limpieza de incidentes: %s", exc)
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))
    finally:
        db.close()

    metadata = {
        "success": True,
        "incidents_processed": result.processed,
        "incidents_successfully_ended": result.ended,
        "cleanup_errors": len(result.failures),
        "threshold_hours": params.inactivity_hours,
        **_duration(start),
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }
    logger.info("Limpieza de incidentes completada: %s", metadata)

    # siempre: barre incidentes finalizados en corridas anteriores
    incident_deletion.apply_async()
    return metadata
