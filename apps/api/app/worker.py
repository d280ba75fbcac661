from __future__ import annotations

import logging
import sys
import threading
from collections.abc import Callable
from typing import Any

from app.core.logging import setup_json_logging
from app.jobs.enqueue import SESSION_LIFECYCLE_SWEEP_JOB
from app.jobs.session_lifecycle import run_lifecycle_timer, run_session_lifecycle_sweep
from app.services.queue import JobEnvelope, dequeue_job

setup_json_logging()
logger = logging.getLogger("squadlink.api.worker")


def _handle_session_lifecycle_sweep(_payload: dict[str, Any]) -> dict[str, Any]:
    result = run_session_lifecycle_sweep()
    return {
        "auto_completed_count": result.auto_completed_count,
        "archived_count": result.archived_count,
        "archive_mode": result.archive_mode,
    }


JOB_HANDLERS: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
    SESSION_LIFECYCLE_SWEEP_JOB: _handle_session_lifecycle_sweep,
}


def process_job(job: JobEnvelope) -> None:
    handler = JOB_HANDLERS.get(job.type)
    if handler is None:
        logger.warning(
            "worker.job.unknown",
            extra={"job_id": job.id, "job_type": job.type},
        )
        return

    result = handler(job.payload)
    logger.info(
        "worker.job.completed",
        extra={"job_id": job.id, "job_type": job.type, "result": result},
    )


def run_worker() -> None:
    logger.info("worker.started")
    while True:
        job = dequeue_job(block_timeout_seconds=5)
        if job is None:
            continue

        try:
            process_job(job)
        except Exception:
            logger.exception(
                "worker.job.failed",
                extra={"job_id": job.id, "job_type": job.type},
            )


def run_timer() -> None:
    stop_event = threading.Event()
    try:
        run_lifecycle_timer(stop_event)
    except KeyboardInterrupt:
        stop_event.set()


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "timer":
        run_timer()
    else:
        run_worker()
