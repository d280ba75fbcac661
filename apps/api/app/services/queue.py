from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from redis import Redis

from app.core.config import settings

logger = logging.getLogger("squadlink.api.queue")


@dataclass(frozen=True)
class JobEnvelope:
    id: str
    type: str
    payload: dict[str, Any]
    created_at: str


def _redis_client() -> Redis:
    return Redis.from_url(settings.redis_url, decode_responses=True, encoding="utf-8")


def encode_job(job: JobEnvelope) -> str:
    return json.dumps(asdict(job), ensure_ascii=True)


def decode_job(raw_job: str) -> JobEnvelope | None:
    try:
        data = json.loads(raw_job)
        return JobEnvelope(
            id=str(data["id"]),
            type=str(data["type"]),
            payload=dict(data.get("payload") or {}),
            created_at=str(data["created_at"]),
        )
    except (ValueError, KeyError, TypeError) as exc:
        logger.warning("queue.job.malformed", extra={"error": type(exc).__name__})
        return None


def enqueue_job(job_type: str, payload: dict[str, Any] | None = None, *, client: Redis | None = None) -> str:
    job = JobEnvelope(
        id=str(uuid4()),
        type=job_type,
        payload=payload or {},
        created_at=datetime.now(UTC).isoformat(),
    )
    redis = client or _redis_client()
    try:
        redis.rpush(settings.queue_name, encode_job(job))
    finally:
        if client is None:
            redis.close()
    logger.info("queue.job.enqueued", extra={"job_id": job.id, "job_type": job.type})
    return job.id


def dequeue_job(block_timeout_seconds: int = 5, *, client: Redis | None = None) -> JobEnvelope | None:
    redis = client or _redis_client()
    try:
        result = redis.blpop(settings.queue_name, timeout=block_timeout_seconds)
    finally:
        if client is None:
            redis.close()

    if result is None:
        return None
    _queue_name, raw_job = result
    return decode_job(raw_job)
