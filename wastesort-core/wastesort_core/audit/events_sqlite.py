"""SQLite-backed log of operation lifecycle events.

Every session operation reports ``pending`` and then exactly one of ``success``
or ``failed``.  :class:`AuditLog` is an observer that persists those phases.
``(operation_id, event_type)`` is UNIQUE, so a phase reported twice for one
operation raises :class:`DuplicateLifecycleEventError` at INSERT time.

WAL journal mode is enabled so readers do not block the writer.
"""
import json
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

PHASE_PENDING = "pending"
PHASE_SUCCESS = "success"
PHASE_FAILED = "failed"


class DuplicateLifecycleEventError(RuntimeError):
    """Raised when an operation reports the same phase twice."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class AuditEvent:
    """One lifecycle phase of one operation."""

    event_type: str
    operation: str
    operation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp_utc: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    account: str | None = None
    record_id: str | None = None
    message: str = ""
    details: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_EVENTS = """
CREATE TABLE IF NOT EXISTS lifecycle_events (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type      TEXT NOT NULL,
    operation       TEXT NOT NULL,
    operation_id    TEXT NOT NULL,
    account         TEXT,
    record_id       TEXT,
    message         TEXT NOT NULL,
    timestamp_utc   TEXT NOT NULL,
    details_json    TEXT
);
"""

_CREATE_PHASE_IDX = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_operation_phase
    ON lifecycle_events (operation_id, event_type);
"""

_CREATE_RECORD_IDX = """
CREATE INDEX IF NOT EXISTS idx_record_ts
    ON lifecycle_events (record_id, timestamp_utc);
"""

_COLUMNS = [
    "id", "event_type", "operation", "operation_id", "account",
    "record_id", "message", "timestamp_utc", "details_json",
]


# ---------------------------------------------------------------------------
# AuditLog
# ---------------------------------------------------------------------------


class AuditLog:
    """Append-only SQLite lifecycle log.

    Each call to :meth:`emit` opens, uses, and closes a connection, which is
    safe for multi-process use.  Instances are callable, so one can be
    registered directly as a session observer.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_EVENTS)
            conn.execute(_CREATE_PHASE_IDX)
            conn.execute(_CREATE_RECORD_IDX)
            conn.commit()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def __call__(self, event: AuditEvent) -> None:
        self.emit(event)

    def emit(self, event: AuditEvent) -> None:
        """Insert *event* into the log.

        Raises
        ------
        DuplicateLifecycleEventError
            If this phase was already recorded for ``event.operation_id``.
        """
        details_json = json.dumps(event.details) if event.details is not None else None
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO lifecycle_events
                        (event_type, operation, operation_id, account,
                         record_id, message, timestamp_utc, details_json)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        event.event_type,
                        event.operation,
                        event.operation_id,
                        event.account,
                        event.record_id,
                        event.message,
                        event.timestamp_utc,
                        details_json,
                    ),
                )
                conn.commit()
        except sqlite3.IntegrityError as exc:
            raise DuplicateLifecycleEventError(
                f"Operation {event.operation_id!r} already reported {event.event_type!r}"
            ) from exc

    def phases(self, operation_id: str) -> list[str]:
        """Return the phases recorded for *operation_id*, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT event_type FROM lifecycle_events WHERE operation_id = ? ORDER BY id",
                (operation_id,),
            ).fetchall()
        return [row[0] for row in rows]

    def recent_events(self, limit: int = 100) -> list[dict[str, Any]]:
        """Return the most recent *limit* events as dicts, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM lifecycle_events ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [dict(zip(_COLUMNS, row)) for row in rows]
