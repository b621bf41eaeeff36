"""
Ingestion Task: Descargar y persistir detecciones de NASA FIRMS
"""

import logging
import time
from datetime import datetime, timezone

from app.core.config import settings
from app.db.session import SessionLocal
from app.services.firms_client import FirmsClient
from app.services.ingestion_service import IngestionService
from workers.celery_app import TASK_SOFT_TIME_LIMIT, TASK_TIME_LIMIT, celery_app
from workers.tasks.clustering import cluster_detections

logger = logging.getLogger(__name__)


class FirmsUnavailableError(RuntimeError):
    """Every configured FIRMS source failed."""


def _duration(start: float) -> dict:
    duration_ms = int((time.monotonic() - start) * 1000)
    return {"duration_ms": duration_ms, "duration_seconds": round(duration_ms / 1000, 1)}


@celery_app.task(
    bind=True,
    name='workers.tasks.ingestion.fetch_firms_detections',
    queue='ingestion',
    max_retries=3,
    soft_time_limit=TASK_SOFT_TIME_LIMIT,
    time_limit=TASK_TIME_LIMIT,
)
def fetch_firms_detections(self, days_back: int | None = None, sources: list | None = None):
    """
    Descarga las fuentes VIIRS de FIRMS, inserta detecciones nuevas y,
    si hubo inserciones, encola el clustering.

    Retorna:
        dict con metricas por fuente y totales
    """
    start = time.monotonic()
    days_back = days_back or settings.FIRMS_DAYS_BACK
    sources = list(sources or settings.FIRMS_SOURCES)

    db = SessionLocal()
    try:
        fetched = FirmsClient().fetch_all(sources, days_back=days_back)
        if fetched.all_failed:
            raise FirmsUnavailableError(f"all FIRMS sources failed: {fetched.errors}")

        result = IngestionService(db).ingest_rows(fetched.rows)
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.exception("Error en descarga FIRMS: %s", exc)
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))
    finally:
        db.close()

    metadata = {
        "success": True,
        **result.as_dict(),
        "rows_by_source": fetched.rows_by_source,
        "source_errors": fetched.errors,
        "days_back": days_back,
        **_duration(start),
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }
    logger.info("Descarga FIRMS completada: %s", metadata)

    if result.inserted > 0:
        cluster_detections.apply_async()
    return metadata


@celery_app.task(
    bind=True,
    name='workers.tasks.ingestion.purge_stale_detections',
    queue='ingestion',
    max_retries=3,
    soft_time_limit=TASK_SOFT_TIME_LIMIT,
    time_limit=TASK_TIME_LIMIT,
)
def purge_stale_detections(self, days: int | None = None):
    """Elimina detecciones sin incidente mas antiguas que la retencion."""
    start = time.monotonic()
    days = days or settings.DETECTION_RETENTION_DAYS
    db = SessionLocal()
    try:
        deleted = IngestionService(db).purge_stale_detections(days=days)
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.exception("Error purgando detecciones: %s", exc)
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))
    finally:
        db.close()

    return {
        "success": True,
        "detections_deleted": deleted,
        "retention_days": days,
        **_duration(start),
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }
