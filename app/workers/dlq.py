from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import redis

from app.core.config import settings
from app.workers import locks

logger = logging.getLogger(__name__)


def _dlq_key() -> str:
    return settings.WORKERS_DLQ_KEY


def _dlq_max_length() -> int:
    return max(int(settings.WORKERS_DLQ_MAX_LENGTH), 0)


def enqueue_failure(payload: Dict[str, Any], client: Optional[redis.Redis] = None) -> None:
    """Push a terminal task failure onto the capped dead-letter list."""
    try:
        client = client or locks.get_redis_client()
        data = json.dumps(payload, default=str, ensure_ascii=True)
        key = _dlq_key()
        max_len = _dlq_max_length()
        pipe = client.pipeline()
        pipe.lpush(key, data)
        if max_len:
            pipe.ltrim(key, 0, max_len - 1)
        pipe.execute()
        logger.warning(
            "dlq_enqueued key=%s task=%s error=%s",
            key,
            payload.get("task_name"),
            payload.get("error_type"),
        )
    except redis.RedisError as exc:
        # the task already failed; losing the DLQ entry must not mask that error
        logger.exception("dlq_enqueue_failed error=%s", exc)


def read_failures(limit: int = 50, client: Optional[redis.Redis] = None) -> List[Dict[str, Any]]:
    """Most recent dead-lettered payloads, newest first."""
    client = client or locks.get_redis_client()
    return [json.loads(item) for item in client.lrange(_dlq_key(), 0, max(limit, 1) - 1)]
