"""Lazily discovered schema capabilities.

A rolling deploy can run this code against a database that has not received
the latest additive migration yet. Instead of requiring a deploy order, each
optional column is tracked by a :class:`ColumnCapability`: it starts out
assumed present, flips to missing the first time the driver reports the
column does not exist, and stays missing for the lifetime of the process.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

logger = logging.getLogger("squadlink.api.schema")

T = TypeVar("T")

_MISSING_COLUMN_PATTERNS = (
    r"column .*{column}.* does not exist",
    r"no such column: (?:\w+\.)?{column}\b",
    r"has no column named {column}\b",
    r"unknown column '?(?:\w+\.)?{column}'?",
    r"could not find the '{column}' column",
)


def is_missing_column_error(exc: BaseException, column: str) -> bool:
    original = getattr(exc, "orig", None) or exc
    message = str(original).lower()
    name = re.escape(column.lower())
    return any(re.search(pattern.format(column=name), message) for pattern in _MISSING_COLUMN_PATTERNS)


class ColumnCapability:
    def __init__(self, table: str, column: str) -> None:
        self.table = table
        self.column = column
        self._available = True
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        return self._available

    def mark_missing(self) -> None:
        with self._lock:
            if not self._available:
                return
            self._available = False
        logger.warning(
            "schema.column_missing",
            extra={"table": self.table, "column": self.column},
        )

    def reset(self) -> None:
        with self._lock:
            self._available = True

    def run(self, db: Session, operation: Callable[[bool], T]) -> T:
        """Run ``operation(with_column)``, falling back once if the column is absent.

        ``operation`` must be a complete unit of work: on a missing-column
        error the transaction is rolled back and the whole operation is
        replayed with ``with_column=False``.
        """
        if not self._available:
            return operation(False)
        try:
            return operation(True)
        except DBAPIError as exc:
            if not is_missing_column_error(exc, self.column):
                raise
            db.rollback()
            self.mark_missing()
        return operation(False)


PARTICIPANT_HANDOFF_STATE = ColumnCapability("session_participants", "handoff_state")
SESSION_ARCHIVED_AT = ColumnCapability("sessions", "archived_at")
