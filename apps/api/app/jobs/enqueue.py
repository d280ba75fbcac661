from __future__ import annotations

from app.services.queue import enqueue_job

SESSION_LIFECYCLE_SWEEP_JOB = "sessions.lifecycle.sweep"


def enqueue_session_lifecycle_sweep() -> str:
    return enqueue_job(SESSION_LIFECYCLE_SWEEP_JOB, payload={})
