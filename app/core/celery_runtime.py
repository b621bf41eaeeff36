"""
Runtime wiring shared by the API and the workers.

Redis URLs are resolved per role from the environment first, then Settings.
Task time limits and timeout detection live here too.
"""
from __future__ import annotations

import os
from typing import Mapping, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from celery.exceptions import SoftTimeLimitExceeded
from psycopg2 import errorcodes
from sqlalchemy.exc import OperationalError

from app.core.config import settings

DEFAULT_REDIS_URL = "redis://localhost:6379/0"
HARD_LIMIT_GRACE_SECONDS = 60

# Setting names tried in order; each is read from the environment first,
# then from Settings.
_URL_SOURCES = {
    "broker": ("CELERY_BROKER_URL", "REDIS_URL"),
    "result_backend": ("CELERY_RESULT_BACKEND", "CELERY_BROKER_URL", "REDIS_URL"),
    # task locks and the dead-letter list
    "coordination": ("REDIS_URL", "CELERY_BROKER_URL"),
}


def _clean_url(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    candidate = value.strip()
    return candidate or None


def resolve_redis_url(role: str, environ: Optional[Mapping[str, str]] = None) -> str:
    try:
        names = _URL_SOURCES[role]
    except KeyError:
        raise ValueError(f"Unknown Redis role: {role!r}") from None

    env = environ if environ is not None else os.environ
    for name in names:
        for value in (env.get(name), getattr(settings, name, None)):
            cleaned = _clean_url(value)
            if cleaned is not None:
                return cleaned
    return DEFAULT_REDIS_URL


def resolve_celery_broker_url(environ: Optional[Mapping[str, str]] = None) -> str:
    return resolve_redis_url("broker", environ)


def resolve_celery_result_backend(environ: Optional[Mapping[str, str]] = None) -> str:
    return resolve_redis_url("result_backend", environ)


def resolve_coordination_redis_url(environ: Optional[Mapping[str, str]] = None) -> str:
    return resolve_redis_url("coordination", environ)


def redact_url(url: str) -> str:
    """Mask the password of a Redis URL before it is logged."""
    parts = urlsplit(url)
    if parts.password is None:
        return url

    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    if parts.port is not None:
        host = f"{host}:{parts.port}"
    return urlunsplit(parts._replace(netloc=f"{parts.username or ''}:***@{host}"))


def task_time_limits() -> Tuple[int, int]:
    """
    (soft, hard) limits in seconds for pipeline tasks.

    The soft limit raises SoftTimeLimitExceeded inside the task so the open
    transaction can be rolled back; the hard limit kills the worker process
    if the task still has not returned.
    """
    soft = settings.TASK_SOFT_TIME_LIMIT_SECONDS
    hard = settings.TASK_TIME_LIMIT_SECONDS or soft + HARD_LIMIT_GRACE_SECONDS
    if hard <= soft:
        raise ValueError(
            f"TASK_TIME_LIMIT_SECONDS ({hard}) must exceed "
            f"TASK_SOFT_TIME_LIMIT_SECONDS ({soft})"
        )
    return soft, hard


def is_timeout(exc: BaseException) -> bool:
    """True for a Celery soft time limit or a PostgreSQL statement_timeout cancel."""
    if isinstance(exc, SoftTimeLimitExceeded):
        return True
    if isinstance(exc, OperationalError):
        return getattr(exc.orig, "pgcode", None) == errorcodes.QUERY_CANCELED
    return False
