from __future__ import annotations

import logging
import threading

from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.db.session import SessionLocal
from app.services.sessions import SessionLifecycleSweeper, SessionStore, SweepResult

logger = logging.getLogger("squadlink.api.jobs.session_lifecycle")


def run_session_lifecycle_sweep(session_factory: sessionmaker[Session] | None = None) -> SweepResult:
    db = (session_factory or SessionLocal)()
    try:
        return SessionLifecycleSweeper(SessionStore(db)).run()
    finally:
        db.close()


def run_lifecycle_timer(
    stop_event: threading.Event,
    *,
    interval_seconds: int | None = None,
    session_factory: sessionmaker[Session] | None = None,
) -> int:
    """Sweep until ``stop_event`` is set; returns the number of runs."""
    interval = max(1, int(interval_seconds or settings.session_lifecycle_interval_seconds))
    runs = 0
    logger.info("sessions.lifecycle.timer_started", extra={"result": {"interval_seconds": interval}})
    while not stop_event.is_set():
        try:
            run_session_lifecycle_sweep(session_factory)
        except Exception:
            logger.exception("sessions.lifecycle.sweep_failed")
        runs += 1
        stop_event.wait(interval)
    logger.info("sessions.lifecycle.timer_stopped", extra={"result": {"runs": runs}})
    return runs
