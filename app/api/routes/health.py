"""
Health check endpoints for FirePing API.

Provides:
- / - Full health check (database + Redis)
- /ready - Readiness probe (DB connectivity)
- /live - Liveness probe (service alive)
- /db - Database connectivity check
- /celery - Celery broker check
- /pipeline - Clustering backlog (unassigned detections, active incidents)
"""
import time
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

import redis
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api import deps
from app.core.celery_runtime import resolve_celery_broker_url
from app.core.config import settings
from app.models.fire import INCIDENT_STATUS_ACTIVE, FireDetection, FireIncident

router = APIRouter(tags=["health"])


class ServiceHealth(BaseModel):
    """Health status of an individual service."""

    status: Literal["healthy", "degraded", "unhealthy"]
    latency_ms: Optional[float] = None
    message: Optional[str] = None


class PipelineStatus(BaseModel):
    """Backlog of the ingestion -> clustering -> lifecycle chain."""

    unassigned_detections: int
    active_incidents: int
    oldest_unassigned_minutes: Optional[float] = None


class DetailedHealthResponse(BaseModel):
    """Comprehensive health check response."""

    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    environment: str
    timestamp: datetime
    services: Dict[str, ServiceHealth]
    pipeline: Optional[PipelineStatus] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "version": "1.0.0",
                "environment": "production",
                "timestamp": "2026-02-08T14:30:00Z",
                "services": {
                    "database": {"status": "healthy", "latency_ms": 5.2},
                    "redis": {"status": "healthy", "latency_ms": 1.1},
                },
                "pipeline": {
                    "unassigned_detections": 12,
                    "active_incidents": 340,
                    "oldest_unassigned_minutes": 4.5,
                },
            }
        }
    )


def check_database(db: Session) -> ServiceHealth:
    """Check database connectivity and latency."""
    try:
        start = time.perf_counter()
        db.execute(text("SELECT 1"))
        latency = (time.perf_counter() - start) * 1000
        return ServiceHealth(status="healthy", latency_ms=round(latency, 2))
    except SQLAlchemyError as e:
        return ServiceHealth(status="unhealthy", message=str(e)[:100])


def check_redis() -> ServiceHealth:
    """Check Redis connectivity."""
    try:
        start = time.perf_counter()
        client = redis.from_url(resolve_celery_broker_url(), socket_timeout=2)
        client.ping()
        latency = (time.perf_counter() - start) * 1000
        return ServiceHealth(status="healthy", latency_ms=round(latency, 2))
    except redis.RedisError as e:
        return ServiceHealth(
            status="degraded", message=f"Redis unavailable: {str(e)[:50]}"
        )


def pipeline_status(db: Session) -> PipelineStatus:
    """Unclustered detections and active incidents, read straight from the store."""
    unassigned, oldest = db.execute(
        select(func.count(FireDetection.id), func.min(FireDetection.inserted_at)).where(
            FireDetection.fire_incident_id.is_(None)
        )
    ).one()
    active = db.execute(
        select(func.count(FireIncident.id)).where(FireIncident.status == INCIDENT_STATUS_ACTIVE)
    ).scalar_one()

    age = None
    if oldest is not None:
        age = round((datetime.now(timezone.utc) - oldest).total_seconds() / 60, 1)
    return PipelineStatus(
        unassigned_detections=unassigned,
        active_incidents=active,
        oldest_unassigned_minutes=age,
    )


@router.get(
    "",
    response_model=DetailedHealthResponse,
    summary="Detailed health check",
    description="""
    Returns health status of the API and its dependencies.

    **Status levels:**
    - `healthy`: All services operational
    - `degraded`: Redis unavailable (ingestion and clustering jobs stall)
    - `unhealthy`: Database down
    """,
)
def detailed_health_check(
    db: Session = Depends(deps.get_db),
) -> DetailedHealthResponse:
    services = {
        "database": check_database(db),
        "redis": check_redis(),
    }

    statuses = [s.status for s in services.values()]
    if "unhealthy" in statuses:
        overall = "unhealthy"
    elif "degraded" in statuses:
        overall = "degraded"
    else:
        overall = "healthy"

    return DetailedHealthResponse(
        status=overall,
        version=settings.VERSION,
        environment=settings.ENVIRONMENT,
        timestamp=datetime.now(timezone.utc),
        services=services,
        pipeline=pipeline_status(db) if overall != "unhealthy" else None,
    )


@router.get("/ready", summary="Readiness probe")
def readiness_probe(db: Session = Depends(deps.get_db)) -> Dict[str, Any]:
    """Kubernetes-style readiness probe."""
    return {"ready": check_database(db).status == "healthy"}


@router.get("/live", summary="Liveness probe")
def liveness_probe() -> Dict[str, Any]:
    """Kubernetes-style liveness probe."""
    return {"alive": True, "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/db", summary="Database health check")
def db_health_check(db: Session = Depends(deps.get_db)):
    result = check_database(db)
    status_code = 200 if result.status == "healthy" else 503
    return JSONResponse(content=result.model_dump(), status_code=status_code)


@router.get("/celery", summary="Celery health check")
def celery_health_check():
    result = check_redis()
    status_code = 200 if result.status == "healthy" else 503
    return JSONResponse(content=result.model_dump(), status_code=status_code)


@router.get("/pipeline", response_model=PipelineStatus, summary="Clustering backlog")
def pipeline_health_check(db: Session = Depends(deps.get_db)) -> PipelineStatus:
    """A growing backlog means the clustering sweep is not keeping up."""
    return pipeline_status(db)
