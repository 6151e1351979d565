"""
Structured Auth Audit Logging.

Provides a Pydantic-validated event model and a single function for
consistent audit trail entries of authentication state changes
(login, registration, logout, lockout).
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field

from stubly.database import LocalDatabase
from stubly.logger import StructuredLogger

__all__ = ["AuditEvent", "log_audit_event", "persist_audit_event"]

# Flat scalars only inside ``details``.  Never put secrets here.
DetailValue = Union[str, int, float, bool, None]


class AuditEvent(BaseModel):
    """Schema-validated representation of a single auth audit entry."""

    timestamp: str
    event: str
    username: Optional[str] = None
    mode: Optional[str] = None
    success: bool = True
    details: dict[str, DetailValue] = Field(default_factory=dict)


def log_audit_event(
    logger: StructuredLogger,
    event: str,
    username: Optional[str] = None,
    mode: Optional[str] = None,
    success: bool = True,
    details: Optional[dict[str, DetailValue]] = None,
    db: Optional[LocalDatabase] = None,
) -> AuditEvent:
    """Log a structured audit event, with optional SQLite persistence.

    Always emits a structured JSON log line via *logger* carrying
    ``extra={"event": event}``.  When *db* is provided the event is
    also written to the ``auth_events`` table.  Persistence errors are
    logged and never propagated.

    Args:
        logger: The logger instance to write to.
        event: Event name (``"LOGIN"``, ``"OFFLINE_LOGIN"``, ``"REGISTER"``...).
        username: Account the event concerns, when known.
        mode: Auth mode the event happened in (``"online"``/``"offline"``).
        success: Whether the attempt succeeded.
        details: Optional additional context.
        db: Optional initialised credential database.
    """
    audit = AuditEvent(
        timestamp=datetime.now(timezone.utc).isoformat(),
        event=event,
        username=username,
        mode=mode,
        success=success,
        details=details or {},
    )
    logger.info(
        "AUDIT: %s",
        json.dumps(audit.model_dump(), default=str),
        extra={"event": event},
    )

    if db is not None:
        try:
            persist_audit_event(db, audit)
        except sqlite3.Error as db_err:
            logger.warning("Failed to persist audit event to SQLite: %s", db_err)
    return audit


def persist_audit_event(db: LocalDatabase, audit: AuditEvent) -> None:
    """Write *audit* to the ``auth_events`` table.

    Runs inside :meth:`LocalDatabase.batch_write`, so it holds the write
    lock and joins a transaction already open on this thread.
    """
    with db.batch_write() as conn:
        conn.execute(
            """
            INSERT INTO auth_events (timestamp, event, username, mode, success, details)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                audit.timestamp,
                audit.event,
                audit.username,
                audit.mode,
                int(audit.success),
                json.dumps(audit.details, default=str),
            ),
        )
