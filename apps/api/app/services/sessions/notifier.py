from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger("squadlink.api.notifier")

# Same call shape as ``fastapi.BackgroundTasks.add_task``.
TaskScheduler = Callable[..., Any]


class InviteNotifier(Protocol):
    def notify(self, user_id: str, session_id: str, title: str, host_name: str) -> None:
        ...


@dataclass(slots=True)
class LoggingInviteNotifier:
    """Default notifier: records the invite instead of delivering a push."""

    def notify(self, user_id: str, session_id: str, title: str, host_name: str) -> None:
        logger.info(
            "session.invite.notify",
            extra={"user_id": user_id, "session_id": session_id},
        )


def run_detached(func: Callable[..., Any], *args: Any) -> None:
    threading.Thread(target=func, args=args, name="invite-notify", daemon=True).start()


def deliver_invites(
    notifier: InviteNotifier,
    user_ids: Sequence[str],
    session_id: str,
    title: str,
    host_name: str,
) -> list[str]:
    """Notify each user, logging and skipping failures; returns who was reached."""
    delivered: list[str] = []
    for user_id in user_ids:
        try:
            notifier.notify(user_id, session_id, title, host_name)
        except Exception as exc:
            logger.warning(
                "session.invite.notify_failed",
                extra={"session_id": session_id, "user_id": user_id, "error": type(exc).__name__},
            )
            continue
        delivered.append(user_id)
    return delivered
