"""
Clustering Task: asigna detecciones sin incidente al incidente activo cercano
(o crea uno nuevo), una transaccion por deteccion.
"""

import logging
import time
from datetime import datetime, timezone

from app.core.config import settings
from app.db.session import SessionLocal
from app.services.incident_assignment import IncidentAssignmentService
from app.services.params import ClusteringParams
from workers.celery_app import TASK_SOFT_TIME_LIMIT, TASK_TIME_LIMIT, UniqueTask, celery_app
from workers.tasks.lifecycle import incident_cleanup

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    base=UniqueTask,
    name='workers.tasks.clustering.cluster_detections',
    queue='clustering',
    max_retries=3,
    soft_time_limit=TASK_SOFT_TIME_LIMIT,
    time_limit=TASK_TIME_LIMIT,
)
def cluster_detections(
    self,
    clustering_distance: float | None = None,
    expiry_hours: float | None = None,
    max_detections: int | None = None,
):
    """
    Procesa detecciones pendientes en orden cronologico y encola la limpieza
    de incidentes al terminar.

    Args:
        clustering_distance: Radio en metros (default: settings)
        expiry_hours: Ventana temporal en horas (default: settings)
        max_detections: Limite opcional de detecciones a procesar

    Retorna:
        dict con metricas de clustering
    """
    start = time.monotonic()
    params = ClusteringParams.from_settings().with_overrides(clustering_distance, expiry_hours)
    if max_detections is None:
        max_detections = settings.CLUSTERING_MAX_DETECTIONS

    db = SessionLocal()
    try:
        summary = IncidentAssignmentService(db, params).process_unassigned(
            max_detections=max_detections
        )
    except Exception as exc:
        db.rollback()
        logger.exception("Error en clustering: %s", exc)
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))
    finally:
        db.close()

    duration_ms = int((time.monotonic() - start) * 1000)
    metadata = {
        "success": True,
        "fires_processed": summary.processed,
        "fires_successfully_clustered": summary.assigned,
        "incidents_created": summary.incidents_created,
        "clustering_errors": len(summary.failures),
        "errors": [
            {"detection_id": str(detection_id), "reason": reason}
            for detection_id, reason in summary.failures
        ],
        "duration_ms": duration_ms,
        "duration_seconds": round(duration_ms / 1000, 1),
        "clustering_distance_meters": params.radius_meters,
        "expiry_hours": params.expiry_hours,
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }
    logger.info("Clustering completado: %s", metadata)

    incident_cleanup.apply_async()
    return metadata
