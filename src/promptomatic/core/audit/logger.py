"""Turn audit log: one row per interview turn or tool invocation.

Records which stage ran, for whom, how long it took and how it ended.
Teacher requests are never stored raw:

* ``input_hash``: SHA-256 of canonical JSON of the turn input.
* ``error_type``: the engine error category on failure.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from promptomatic.core.storage.database import PromptDatabase

logger = logging.getLogger(__name__)


def _hash_input(data: Any) -> str:
    """SHA-256 hash of canonical JSON, or empty string when not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


@dataclass
class TurnEvent:
    """A single audit log entry."""

    stage: str                           # 'analyze' | 'questions' | 'assemble' | 'refine' | tool name
    teacher_id: str | None = None
    language: str | None = None
    input_hash: str = ""
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class TurnAuditLogger:
    """Records turn events to the ``turn_log`` SQLite table.

    A failed write is logged and dropped; auditing never fails a turn.

    Usage::

        audit = TurnAuditLogger(prompt_db)
        audit.log_turn("analyze", {"text": text}, teacher_id="t1", language="fr")
    """

    def __init__(self, database: PromptDatabase) -> None:
        self._db = database

    def log_event(self, event: TurnEvent) -> str:
        """Insert an event and return its UUID, or ``""`` if the write failed."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()
        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"))
            if event.metadata
            else None
        )

        try:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO turn_log
                   (id, timestamp, stage, teacher_id, language, input_hash,
                    duration_ms, status, error_type, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.stage,
                    event.teacher_id,
                    event.language,
                    event.input_hash or None,
                    event.duration_ms,
                    event.status,
                    event.error_type,
                    metadata_json,
                ),
            )
            conn.commit()
        except Exception:
            logger.exception("Failed to write turn event for stage %s", event.stage)
            return ""

        return event_id

    def log_turn(
        self,
        stage: str,
        turn_input: Any = None,
        *,
        teacher_id: str | None = None,
        language: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Convenience wrapper: hashes ``turn_input`` and records the event."""
        return self.log_event(TurnEvent(
            stage=stage,
            teacher_id=teacher_id,
            language=language,
            input_hash=_hash_input(turn_input) if turn_input else "",
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def recent_turns(
        self,
        *,
        stage: str | None = None,
        status: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query events, newest first."""
        conditions: list[str] = []
        params: list[Any] = []
        if stage:
            conditions.append("stage = ?")
            params.append(stage)
        if status:
            conditions.append("status = ?")
            params.append(status)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM turn_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_by_status(self) -> dict[str, int]:
        rows = self._db.connection.execute(
            "SELECT status, COUNT(*) AS n FROM turn_log GROUP BY status"
        ).fetchall()
        return {row["status"]: row["n"] for row in rows}
