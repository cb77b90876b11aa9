"""SQLite database management for the wellness store.

Handles connection lifecycle, schema creation, and migrations.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

# Current schema version
SCHEMA_VERSION = 2

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

# Foreign keys are DEFERRABLE INITIALLY DEFERRED: a unit of work may insert a
# child before its owner, and the check runs at COMMIT.
_SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS users (
    id                TEXT PRIMARY KEY,
    name              TEXT NOT NULL,
    birth_date        TEXT NOT NULL,
    delivery_date     TEXT NOT NULL,
    delivery_type     TEXT,
    profile_image_enc TEXT,
    created_at        TEXT NOT NULL,
    last_modified     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS babies (
    id            TEXT PRIMARY KEY,
    name          TEXT NOT NULL,
    birth_date    TEXT NOT NULL,
    birth_weight  REAL,
    birth_length  REAL,
    gender        TEXT NOT NULL,
    created_at    TEXT NOT NULL,
    last_modified TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS mood_entries (
    id            TEXT PRIMARY KEY,
    user_id       TEXT REFERENCES users(id) DEFERRABLE INITIALLY DEFERRED,
    date          TEXT NOT NULL,
    mood_rating   INTEGER NOT NULL,
    symptoms_json TEXT NOT NULL DEFAULT '[]',
    anxiety       INTEGER,
    sleep_quality INTEGER,
    notes_enc     TEXT,
    created_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS recovery_entries (
    id               TEXT PRIMARY KEY,
    user_id          TEXT REFERENCES users(id) DEFERRABLE INITIALLY DEFERRED,
    date             TEXT NOT NULL,
    symptoms_json    TEXT NOT NULL DEFAULT '[]',
    pain_level       INTEGER,
    bleeding         TEXT,
    medications_json TEXT NOT NULL DEFAULT '[]',
    notes_enc        TEXT,
    created_at       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS self_care_activities (
    id            TEXT PRIMARY KEY,
    user_id       TEXT REFERENCES users(id) DEFERRABLE INITIALLY DEFERRED,
    activity_type TEXT NOT NULL,
    start_time    TEXT NOT NULL,
    duration      REAL NOT NULL,
    notes_enc     TEXT,
    mood          INTEGER,
    created_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS medications (
    id                TEXT PRIMARY KEY,
    user_id           TEXT REFERENCES users(id) DEFERRABLE INITIALLY DEFERRED,
    name              TEXT NOT NULL,
    dosage            TEXT NOT NULL,
    frequency         TEXT NOT NULL,
    time_of_day_json  TEXT NOT NULL DEFAULT '[]',
    notes_enc         TEXT,
    start_date        TEXT NOT NULL,
    end_date          TEXT,
    reminder_enabled  INTEGER NOT NULL DEFAULT 1,
    created_at        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS medication_logs (
    id             TEXT PRIMARY KEY,
    medication_id  TEXT NOT NULL REFERENCES medications(id) DEFERRABLE INITIALLY DEFERRED,
    position       INTEGER NOT NULL DEFAULT 0,
    taken          INTEGER NOT NULL DEFAULT 0,
    scheduled_time TEXT NOT NULL,
    taken_time     TEXT,
    skipped        INTEGER NOT NULL DEFAULT 0,
    notes_enc      TEXT,
    created_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS journal_entries (
    id            TEXT PRIMARY KEY,
    user_id       TEXT REFERENCES users(id) DEFERRABLE INITIALLY DEFERRED,
    date          TEXT NOT NULL,
    content_enc   TEXT NOT NULL,
    mood          INTEGER,
    tags_json     TEXT NOT NULL DEFAULT '[]',
    images_enc    TEXT,
    created_at    TEXT NOT NULL,
    last_modified TEXT NOT NULL
);

-- Single-row reference to the profile the app treats as current
CREATE TABLE IF NOT EXISTS active_profile (
    slot    INTEGER PRIMARY KEY CHECK (slot = 1),
    user_id TEXT NOT NULL REFERENCES users(id) DEFERRABLE INITIALLY DEFERRED
);

-- Process-wide flags (e.g. onboarding completed)
CREATE TABLE IF NOT EXISTS app_flags (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Indexes for "latest N" queries and cascade lookups
CREATE INDEX IF NOT EXISTS idx_users_created      ON users(created_at);
CREATE INDEX IF NOT EXISTS idx_mood_date          ON mood_entries(date);
CREATE INDEX IF NOT EXISTS idx_mood_user          ON mood_entries(user_id);
CREATE INDEX IF NOT EXISTS idx_recovery_date      ON recovery_entries(date);
CREATE INDEX IF NOT EXISTS idx_recovery_user      ON recovery_entries(user_id);
CREATE INDEX IF NOT EXISTS idx_selfcare_start     ON self_care_activities(start_time);
CREATE INDEX IF NOT EXISTS idx_selfcare_user      ON self_care_activities(user_id);
CREATE INDEX IF NOT EXISTS idx_medications_user   ON medications(user_id);
CREATE INDEX IF NOT EXISTS idx_medlogs_medication ON medication_logs(medication_id);
CREATE INDEX IF NOT EXISTS idx_journal_date       ON journal_entries(date);
CREATE INDEX IF NOT EXISTS idx_journal_user       ON journal_entries(user_id);
"""

# ---------------------------------------------------------------------------
# V2: Baby -> User link, audit log
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
ALTER TABLE babies ADD COLUMN user_id TEXT REFERENCES users(id) DEFERRABLE INITIALLY DEFERRED;

CREATE INDEX IF NOT EXISTS idx_babies_user ON babies(user_id);

CREATE TABLE IF NOT EXISTS audit_log (
    id               TEXT PRIMARY KEY,
    timestamp        TEXT NOT NULL DEFAULT (datetime('now')),
    action           TEXT NOT NULL,
    entity_type      TEXT,
    entity_id        TEXT,
    remote_disclosed INTEGER DEFAULT 0,
    duration_ms      REAL,
    status           TEXT NOT NULL DEFAULT 'success',
    error_type       TEXT,
    metadata_json    TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_action    ON audit_log(action);
"""


class DatabaseError(Exception):
    """Raised when the database is unavailable or cannot be opened."""


class WellnessDatabase:
    """SQLite database manager for the wellness store.

    Supports both file-based and in-memory (`:memory:`) databases.
    In-memory mode is used for testing only; the application factory
    always opens a file.

    Usage::

        db = WellnessDatabase("~/.ppease/wellness.db")
        db.initialize()
        conn = db.connection
        # ... use connection ...
        db.close()
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        """Initialize database manager.

        Args:
            db_path: Path to SQLite file, or ":memory:" for in-memory DB.
        """
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def is_in_memory(self) -> bool:
        return self._db_path == ":memory:"

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the active database connection.

        Raises:
            DatabaseError: If the database has not been initialized.
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Create the database connection and ensure schema exists.

        For file-based databases, creates parent directories if needed.
        Idempotent: safe to call multiple times.

        Raises:
            DatabaseError: If the file cannot be opened or migrated.
        """
        if self._conn is not None:
            return  # Already initialized

        try:
            if not self.is_in_memory:
                db_file = Path(self._db_path).expanduser()
                db_file.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(str(db_file))
            else:
                self._conn = sqlite3.connect(":memory:")

            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")

            self._ensure_schema()
        except (sqlite3.Error, OSError) as exc:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            raise DatabaseError(f"Failed to open wellness store at {self._db_path}: {exc}") from exc

        logger.info("Wellness database initialized: %s", self._db_path)

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist and apply migrations."""
        conn = self.connection

        # V1: Core tables (CREATE IF NOT EXISTS, safe to rerun)
        conn.executescript(_SCHEMA_V1)

        current_version = self.get_schema_version()

        # V2: Baby link + audit log
        if current_version < 2:
            conn.executescript(_SCHEMA_V2)
            logger.info("Applied schema migration V2: babies.user_id, audit_log table")

        if current_version < SCHEMA_VERSION:
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info(
                "Schema updated from version %d to %d", current_version, SCHEMA_VERSION
            )

    def get_schema_version(self) -> int:
        """Return the current schema version."""
        cursor = self.connection.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Wellness database closed")

    def __enter__(self) -> WellnessDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
