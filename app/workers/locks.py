from __future__ import annotations

import logging
from typing import Optional

import redis

from app.core.celery_runtime import resolve_coordination_redis_url

logger = logging.getLogger(__name__)

UNIQUE_LOCK_PREFIX = "fireping:unique"

_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """Shared client for task locks and the dead-letter list."""
    global _client
    if _client is None:
        _client = redis.from_url(
            resolve_coordination_redis_url(),
            decode_responses=True,
            socket_timeout=5,
        )
    return _client


def unique_lock_key(task_name: str) -> str:
    return f"{UNIQUE_LOCK_PREFIX}:{task_name}"


class TaskLock:
    """
    SET NX EX lock marking a task type as queued-or-running.

    The TTL bounds how long a crashed worker can block the next run.
    """

    def __init__(self, client: redis.Redis, key: str, ttl_seconds: int):
        self._redis = client
        self.key = key
        self.ttl_seconds = ttl_seconds

    def acquire(self, owner: str = "1") -> bool:
        return bool(self._redis.set(self.key, owner, nx=True, ex=self.ttl_seconds))

    def release(self) -> None:
        self._redis.delete(self.key)

    def is_held(self) -> bool:
        return bool(self._redis.exists(self.key))

    def owner(self) -> Optional[str]:
        return self._redis.get(self.key)
