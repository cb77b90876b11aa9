"""Audit logger: a PHI-free trail of deletions and remote mirrors.

Records when wellness data was deleted and every attempt to copy data off
the device. Entries carry entity types, ids, counts and outcomes only; notes,
journal text and images never reach the audit table.

* ``remote_disclosed``: True when a record actually left the device.
* ``status`` / ``error_type``: outcome of the action, so swallowed sync
  failures remain visible after the fact.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ppease.core.storage.database import WellnessDatabase

logger = logging.getLogger(__name__)


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'data_delete' | 'remote_sync'
    entity_type: str = ""
    entity_id: str | None = None
    remote_disclosed: bool = False
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure' | 'skipped'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    Every write is committed immediately. Call it only after the
    repository has committed, never while a unit of work is mid-flight.

    Usage::

        audit = AuditLogger(database)
        audit.log_sync("User", user.id, status="failure",
                       error_type="RemoteUnavailableError")
    """

    def __init__(self, database: WellnessDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID, or "" if it was lost."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()

        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"), sort_keys=True)
            if event.metadata
            else None
        )

        try:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO audit_log
                   (id, timestamp, action, entity_type, entity_id, remote_disclosed,
                    duration_ms, status, error_type, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.action,
                    event.entity_type or None,
                    event.entity_id,
                    1 if event.remote_disclosed else 0,
                    event.duration_ms,
                    event.status,
                    event.error_type,
                    metadata_json,
                ),
            )
            conn.commit()
        except Exception:
            logger.exception("Failed to write audit event; event lost")
            return ""

        return event_id

    def log_data_delete(
        self,
        entity_type: str,
        *,
        entity_id: str | None = None,
        count: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log a deletion, with the number of rows removed including cascades."""
        return self.log_event(AuditEvent(
            action="data_delete",
            entity_type=entity_type,
            entity_id=entity_id,
            metadata={**(metadata or {}), "records_deleted": count},
        ))

    def log_sync(
        self,
        record_type: str,
        record_name: str | None,
        *,
        status: str,
        remote_disclosed: bool = False,
        duration_ms: float | None = None,
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log one remote mirror attempt."""
        return self.log_event(AuditEvent(
            action="remote_sync",
            entity_type=record_type,
            entity_id=record_name,
            remote_disclosed=remote_disclosed,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        entity_type: str | None = None,
        status: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events with optional filters, newest first."""
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if entity_type:
            conditions.append("entity_type = ?")
            params.append(entity_type)
        if status:
            conditions.append("status = ?")
            params.append(status)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        events = []
        for row in rows:
            event = dict(row)
            event["metadata"] = json.loads(event.pop("metadata_json") or "{}")
            event["remote_disclosed"] = bool(event["remote_disclosed"])
            events.append(event)
        return events

    def count_events(self, *, since: str | None = None) -> int:
        """Count total audit events, optionally since a timestamp."""
        if since:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE timestamp >= ?", (since,)
            ).fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log"
            ).fetchone()
        return row[0]

    def count_disclosures(self, *, since: str | None = None) -> int:
        """Count mirrors that actually sent data off the device.

        This answers: "How many times has my profile left this device?"
        """
        if since:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE remote_disclosed = 1 AND timestamp >= ?",
                (since,),
            ).fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE remote_disclosed = 1"
            ).fetchone()
        return row[0]
