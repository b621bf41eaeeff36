"""
Celery configuration for FirePing
Broker: Redis
Pipeline: FIRMS fetch -> clustering -> incident cleanup -> incident deletion
"""

import logging
from datetime import datetime, timezone
from pathlib import Path

import structlog
from celery import Celery, Task
from celery.exceptions import Ignore, Retry
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging, worker_ready
from dotenv import load_dotenv

from app.core.celery_runtime import (
    redact_url,
    resolve_celery_broker_url,
    resolve_celery_result_backend,
    resolve_coordination_redis_url,
    task_time_limits,
)
from app.core.config import settings
from app.workers import locks
from app.workers.dlq import enqueue_failure

# Load .env for local workers (pydantic only reads it for Settings)
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

logger = logging.getLogger(__name__)

TASK_SOFT_TIME_LIMIT, TASK_TIME_LIMIT = task_time_limits()


class DlqTask(Task):
    """Base task that sends terminal failures to the DLQ."""

    abstract = True

    def __call__(self, *args, **kwargs):
        structlog.contextvars.bind_contextvars(task_id=self.request.id, task_name=self.name)
        try:
            return self.run(*args, **kwargs)
        finally:
            structlog.contextvars.unbind_contextvars("task_id", "task_name")

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        if isinstance(exc, (Retry, Ignore)):
            return super().on_failure(exc, task_id, args, kwargs, einfo)

        max_retries = getattr(self, "max_retries", None)
        retries = getattr(self.request, "retries", 0)
        if max_retries is not None and retries < max_retries:
            return super().on_failure(exc, task_id, args, kwargs, einfo)

        delivery = getattr(self.request, "delivery_info", {}) or {}
        payload = {
            "task_id": task_id,
            "task_name": self.name,
            "queue": delivery.get("routing_key"),
            "args": args,
            "kwargs": kwargs,
            "retries": retries,
            "max_retries": max_retries,
            "error_type": type(exc).__name__,
            "error_message": str(exc),
            "traceback": getattr(einfo, "traceback", None),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "hostname": getattr(self.request, "hostname", None),
        }
        enqueue_failure(payload)

        return super().on_failure(exc, task_id, args, kwargs, einfo)


class UniqueTask(DlqTask):
    """
    At most one instance queued or running per task name.

    apply_async takes a Redis lock and skips the send while it is held;
    the lock is released once the task finishes (success or terminal
    failure). Retries reuse the lock taken by the first attempt.
    """

    abstract = True
    unique_lock_ttl = None

    def _lock(self) -> locks.TaskLock:
        ttl = self.unique_lock_ttl or settings.UNIQUE_TASK_LOCK_TTL_SECONDS
        return locks.TaskLock(locks.get_redis_client(), locks.unique_lock_key(self.name), ttl)

    def apply_async(self, args=None, kwargs=None, task_id=None, **options):
        if options.get("retries"):
            return super().apply_async(args, kwargs, task_id, **options)

        lock = self._lock()
        if not lock.acquire():
            logger.info("Skipping %s: an instance is already queued or running", self.name)
            return None
        try:
            return super().apply_async(args, kwargs, task_id, **options)
        except Exception:
            lock.release()
            raise

    def after_return(self, status, retval, task_id, args, kwargs, einfo):
        self._lock().release()
        return super().after_return(status, retval, task_id, args, kwargs, einfo)


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    # Keep Celery from installing its own root handlers
    from app.core.logging import setup_logging

    setup_logging()


@worker_ready.connect
def log_worker_runtime(**kwargs):
    logger.info(
        "Worker ready: broker=%s coordination=%s soft_limit=%ss hard_limit=%ss",
        redact_url(resolve_celery_broker_url()),
        redact_url(resolve_coordination_redis_url()),
        TASK_SOFT_TIME_LIMIT,
        TASK_TIME_LIMIT,
    )


# Inicializar app Celery
celery_app = Celery(
    'fireping',
    broker=resolve_celery_broker_url(),
    backend=resolve_celery_result_backend(),
    include=[
        'workers.tasks.ingestion',
        'workers.tasks.clustering',
        'workers.tasks.lifecycle',
    ]
)

celery_app.Task = DlqTask

# Configuración principal
celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    result_extended=True,
    timezone='UTC',
    enable_utc=True,

    # Routing
    task_routes={
        'workers.tasks.ingestion.fetch_firms_detections': {'queue': 'ingestion'},
        'workers.tasks.ingestion.purge_stale_detections': {'queue': 'ingestion'},
        'workers.tasks.clustering.cluster_detections': {'queue': 'clustering'},
        'workers.tasks.lifecycle.incident_cleanup': {'queue': 'lifecycle'},
        'workers.tasks.lifecycle.incident_deletion': {'queue': 'lifecycle'},
    },

    # Retry policy
    task_acks_late=True,
    worker_prefetch_multiplier=1,  # Procesa 1 task a la vez
    task_max_retries=3,
    task_default_retry_delay=60,
    task_soft_time_limit=TASK_SOFT_TIME_LIMIT,
    task_time_limit=TASK_TIME_LIMIT,

    # Beat schedule (tareas automáticas)
    beat_schedule={
        'fetch-firms-every-10-minutes': {
            'task': 'workers.tasks.ingestion.fetch_firms_detections',
            'schedule': crontab(minute='*/10'),
            'options': {'queue': 'ingestion'}
        },
        'incident-cleanup-hourly': {
            'task': 'workers.tasks.lifecycle.incident_cleanup',
            'schedule': crontab(minute=30),
            'options': {'queue': 'lifecycle'}
        },
        'purge-stale-detections-daily': {
            'task': 'workers.tasks.ingestion.purge_stale_detections',
            'schedule': crontab(hour=3, minute=0),  # 03:00 UTC
            'options': {'queue': 'ingestion'}
        },
    },

    # Worker settings
    worker_max_tasks_per_child=1000,
)

# Define default queue
celery_app.conf.task_default_queue = 'default'
