"""SQLite storage for saved prompts, teacher profiles and the turn log.

Schema changes are listed in ``_MIGRATIONS`` by version; opening a
database applies every step above the recorded version, in order.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS prompts (
    id                          TEXT PRIMARY KEY,
    teacher_id                  TEXT NOT NULL,
    name                        TEXT NOT NULL,
    language                    TEXT NOT NULL,
    source_type                 TEXT NOT NULL DEFAULT 'from_scratch',
    original_text               TEXT NOT NULL DEFAULT '',
    blocks_json                 TEXT NOT NULL,
    tips_json                   TEXT NOT NULL DEFAULT '[]',
    tags_json                   TEXT NOT NULL DEFAULT '[]',
    model_recommendation        TEXT,
    model_recommendation_reason TEXT,

    -- Template library: a prompt becomes a template once approved
    is_template                 INTEGER NOT NULL DEFAULT 0,
    template_id                 TEXT,
    template_kind               TEXT NOT NULL DEFAULT 'official',
    template_status             TEXT NOT NULL DEFAULT 'none',

    created_at                  TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at                  TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS teacher_profiles (
    teacher_id   TEXT PRIMARY KEY,
    profile_json TEXT NOT NULL,
    updated_at   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- One row per engine turn; request text is stored only as a hash
CREATE TABLE IF NOT EXISTS turn_log (
    id            TEXT PRIMARY KEY,
    timestamp     TEXT NOT NULL DEFAULT (datetime('now')),
    stage         TEXT NOT NULL,
    teacher_id    TEXT,
    language      TEXT,
    input_hash    TEXT,
    duration_ms   REAL,
    status        TEXT NOT NULL DEFAULT 'success',
    error_type    TEXT,
    metadata_json TEXT
);

CREATE INDEX IF NOT EXISTS idx_prompts_teacher   ON prompts(teacher_id);
CREATE INDEX IF NOT EXISTS idx_prompts_updated   ON prompts(updated_at);
CREATE INDEX IF NOT EXISTS idx_prompts_templates ON prompts(is_template, template_status);
CREATE INDEX IF NOT EXISTS idx_turn_timestamp    ON turn_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_turn_stage        ON turn_log(stage);
"""

_MIGRATIONS: tuple[tuple[int, str, str], ...] = (
    (1, "prompts, teacher profiles, turn log", _SCHEMA),
)

SCHEMA_VERSION = _MIGRATIONS[-1][0]


class DatabaseError(Exception):
    """Raised when database operations fail."""


class PromptDatabase:
    """Owns the SQLite connection for the prompt store.

    ``":memory:"`` gives a private in-memory database (used by tests).
    Usable as a context manager, which opens and closes the connection.
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def _connect(self) -> sqlite3.Connection:
        if self._db_path == ":memory:":
            return sqlite3.connect(":memory:")
        db_file = Path(self._db_path).expanduser()
        db_file.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(str(db_file))

    def initialize(self) -> None:
        """Open the connection and bring the schema up to date. Idempotent."""
        if self._conn is not None:
            return

        conn = self._connect()
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        self._conn = conn

        self._migrate()
        logger.info("Prompt database ready: %s (schema v%d)", self._db_path, SCHEMA_VERSION)

    def _migrate(self) -> None:
        conn = self.connection
        conn.execute(
            """CREATE TABLE IF NOT EXISTS schema_version (
                   version    INTEGER NOT NULL,
                   applied_at TEXT NOT NULL DEFAULT (datetime('now'))
               )"""
        )
        current = self.get_schema_version()
        for version, description, ddl in _MIGRATIONS:
            if version <= current:
                continue
            conn.executescript(ddl)
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
            conn.commit()
            logger.info("Applied schema v%d: %s", version, description)

    def get_schema_version(self) -> int:
        row = self.connection.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] if row[0] is not None else 0

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back if the block raises."""
        conn = self.connection
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Prompt database closed")

    def __enter__(self) -> PromptDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
