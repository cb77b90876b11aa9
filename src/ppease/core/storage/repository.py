"""Wellness repository, the device's single source of truth.

The repository mediates between the entity dataclasses and the SQLite
database. Writes are staged (``insert`` / ``update`` / ``delete`` /
``set_active_user``) and applied together by ``save()`` in one transaction,
including any cascades, so a unit of work either lands completely or not at
all. Sensitive columns go through :class:`FieldEncryptor`.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from ppease.core.events.bus import STORE_COMMITTED, EventBus
from ppease.core.storage.database import WellnessDatabase
from ppease.core.storage.encryption import FieldEncryptor
from ppease.core.storage.models import (
    USER_OWNED,
    Baby,
    ConstraintError,
    JournalEntry,
    Medication,
    MedicationLog,
    MoodEntry,
    RecoveryEntry,
    SelfCareActivity,
    User,
    as_utc,
    utcnow,
)
from ppease.core.storage.vocabulary import (
    ActivityType,
    BleedingLevel,
    DeliveryType,
    FrequencyType,
    Gender,
    JournalTag,
    PhysicalSymptom,
    TimeOfDay,
    UnknownVariantError,
    Vocabulary,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RepositoryError(Exception):
    """Raised when repository operations fail."""


class PersistenceError(RepositoryError):
    """Raised when a commit fails. Staged changes are kept for a retry."""


class QueryError(RepositoryError):
    """Raised for an unknown entity type, field or limit in a query."""


_TABLES: dict[type, str] = {
    User: "users",
    Baby: "babies",
    MoodEntry: "mood_entries",
    RecoveryEntry: "recovery_entries",
    SelfCareActivity: "self_care_activities",
    Medication: "medications",
    MedicationLog: "medication_logs",
    JournalEntry: "journal_entries",
}

# Attribute -> column for every field that can be sorted or filtered on.
# Encrypted and set-valued columns are deliberately absent.
_QUERYABLE: dict[type, dict[str, str]] = {
    User: {
        "id": "id", "name": "name", "birth_date": "birth_date",
        "delivery_date": "delivery_date", "delivery_type": "delivery_type",
        "created_at": "created_at", "last_modified": "last_modified",
    },
    Baby: {
        "id": "id", "name": "name", "birth_date": "birth_date",
        "birth_weight": "birth_weight", "birth_length": "birth_length",
        "gender": "gender", "user_id": "user_id",
        "created_at": "created_at", "last_modified": "last_modified",
    },
    MoodEntry: {
        "id": "id", "user_id": "user_id", "date": "date", "mood_rating": "mood_rating",
        "anxiety": "anxiety", "sleep_quality": "sleep_quality", "created_at": "created_at",
    },
    RecoveryEntry: {
        "id": "id", "user_id": "user_id", "date": "date", "pain_level": "pain_level",
        "bleeding": "bleeding", "created_at": "created_at",
    },
    SelfCareActivity: {
        "id": "id", "user_id": "user_id", "type": "activity_type", "start_time": "start_time",
        "duration": "duration", "mood": "mood", "created_at": "created_at",
    },
    Medication: {
        "id": "id", "user_id": "user_id", "name": "name", "dosage": "dosage",
        "frequency": "frequency", "start_date": "start_date", "end_date": "end_date",
        "reminder_enabled": "reminder_enabled", "created_at": "created_at",
    },
    MedicationLog: {
        "id": "id", "medication_id": "medication_id", "position": "position",
        "taken": "taken", "scheduled_time": "scheduled_time", "taken_time": "taken_time",
        "skipped": "skipped", "created_at": "created_at",
    },
    JournalEntry: {
        "id": "id", "user_id": "user_id", "date": "date", "mood": "mood",
        "created_at": "created_at", "last_modified": "last_modified",
    },
}

# Field that defines "most recent" for each entity type.
_LATEST_BY: dict[type, str] = {
    User: "created_at",
    Baby: "birth_date",
    MoodEntry: "date",
    RecoveryEntry: "date",
    SelfCareActivity: "start_time",
    Medication: "start_date",
    MedicationLog: "scheduled_time",
    JournalEntry: "date",
}

# Child tables removed with their owning user, children of children first.
_USER_CASCADE: tuple[tuple[type, str], ...] = (
    (MoodEntry, "mood_entries"),
    (RecoveryEntry, "recovery_entries"),
    (SelfCareActivity, "self_care_activities"),
    (Medication, "medications"),
    (JournalEntry, "journal_entries"),
)


@dataclass
class ChangeSet:
    """Per-entity-type counts of what one ``save()`` committed."""

    inserted: dict[str, int] = field(default_factory=dict)
    updated: dict[str, int] = field(default_factory=dict)
    deleted: dict[str, int] = field(default_factory=dict)
    active_user_id: str | None = None

    def record(self, bucket: str, entity_type: type, count: int = 1) -> None:
        if count <= 0:
            return
        counts = getattr(self, bucket)
        counts[entity_type.__name__] = counts.get(entity_type.__name__, 0) + count

    def touched(self, entity_type: type) -> bool:
        name = entity_type.__name__
        return name in self.inserted or name in self.updated or name in self.deleted

    @property
    def total(self) -> int:
        return sum(self.inserted.values()) + sum(self.updated.values()) + sum(self.deleted.values())

    @property
    def is_empty(self) -> bool:
        return self.total == 0 and self.active_user_id is None


@dataclass(frozen=True)
class _Op:
    kind: str  # 'insert' | 'update' | 'delete' | 'activate'
    entity: Any


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def _ts(value: datetime) -> str:
    """Fixed-width UTC ISO 8601, so textual order is chronological order."""
    return as_utc(value).isoformat(timespec="microseconds")


def _ts_opt(value: datetime | None) -> str | None:
    return _ts(value) if value is not None else None


def _parse_ts(text: str) -> datetime:
    return datetime.fromisoformat(text)


def _parse_ts_opt(text: str | None) -> datetime | None:
    return _parse_ts(text) if text else None


def _token(member: Vocabulary | None) -> str | None:
    return member.token if member is not None else None


def _dump_list(values: list[str]) -> str:
    return json.dumps(values, separators=(",", ":"))


def _sql_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return _ts(value)
    if isinstance(value, Vocabulary):
        return value.token
    if isinstance(value, bool):
        return int(value)
    return value


class WellnessRepository:
    """Staged CRUD over every wellness entity, with cascade on delete.

    Reads only see committed data. All staging and commits are serialized
    by one re-entrant lock; the underlying connection stays confined to the
    thread that opened it.

    Usage::

        db = WellnessDatabase(":memory:")
        db.initialize()
        repo = WellnessRepository(db, FieldEncryptor(key))

        repo.insert(MoodEntry(mood_rating=4))
        repo.save()
        latest = repo.latest(MoodEntry)
    """

    def __init__(
        self,
        database: WellnessDatabase,
        encryptor: FieldEncryptor,
        events: EventBus | None = None,
    ) -> None:
        self._db = database
        self._enc = encryptor
        self._events = events
        self._pending: list[_Op] = []
        self._lock = threading.RLock()

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def insert(self, entity: T) -> T:
        """Stage a new entity. Assigns an id when the entity has none.

        A ``Medication`` is staged together with its ``logs``.

        Raises:
            ConstraintError: On a bound violation, a duplicate id, or a
                reference to an owner that does not exist.
        """
        with self._lock:
            entity_type = self._table_type(entity)
            entity.validate()
            if not entity.id:
                entity.id = self._new_id()
            elif self._is_live(entity_type, entity.id):
                raise ConstraintError(f"{entity_type.__name__} {entity.id} already exists")
            self._check_references(entity)
            if isinstance(entity, Medication):
                self._adopt_logs(entity)
            self._pending.append(_Op("insert", entity))
            return entity

    def update(self, entity: T) -> T:
        """Stage changes to a persisted (or staged) entity.

        ``last_modified`` is refreshed on entities that carry it. Updating a
        ``Medication`` also brings its stored logs in line with ``logs``.
        """
        with self._lock:
            entity_type = self._table_type(entity)
            entity.validate()
            if not entity.id or not self._is_live(entity_type, entity.id):
                raise ConstraintError(f"Cannot update unsaved {entity_type.__name__}")
            self._check_references(entity)
            if hasattr(entity, "last_modified"):
                entity.last_modified = utcnow()
            if isinstance(entity, Medication):
                self._adopt_logs(entity)
            self._pending.append(_Op("update", entity))
            return entity

    def delete(self, entity: Any) -> None:
        """Stage removal. Owned entities are removed with it on ``save()``."""
        with self._lock:
            entity_type = self._table_type(entity)
            if not entity.id or not self._is_live(entity_type, entity.id):
                raise ConstraintError(f"Cannot delete unsaved {entity_type.__name__}")
            self._pending.append(_Op("delete", entity))

    def set_active_user(self, user: User) -> None:
        """Stage ``user`` as the profile the application treats as current."""
        with self._lock:
            if not user.id or not self._is_live(User, user.id):
                raise ConstraintError("Active user must be inserted first")
            self._pending.append(_Op("activate", user))

    @property
    def has_pending_changes(self) -> bool:
        return bool(self._pending)

    def discard_pending(self) -> int:
        """Drop all staged changes. Returns how many were dropped."""
        with self._lock:
            count = len(self._pending)
            self._pending.clear()
            if count:
                logger.info("Discarded %d staged change(s)", count)
            return count

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def save(self, *, discard_on_failure: bool = False) -> ChangeSet:
        """Apply every staged change in one transaction.

        Args:
            discard_on_failure: Drop the staged changes when the commit
                fails instead of keeping them for a retry.

        Returns:
            What was committed.

        Raises:
            ConstraintError: If a staged entity was changed after staging
                and now violates a bound. Nothing is written and the staged
                changes are kept.
            PersistenceError: If the commit fails. The transaction is rolled
                back and the staged changes are kept, so ``save()`` can be
                retried or the changes dropped with ``discard_pending()``.
        """
        with self._lock:
            changes = ChangeSet()
            if not self._pending:
                return changes

            self._validate_pending()
            conn = self._db.connection
            try:
                for op in self._pending:
                    self._apply(conn, op, changes)
                conn.commit()
            except Exception as exc:
                conn.rollback()
                logger.exception(
                    "Commit failed; %d staged change(s) %s",
                    len(self._pending),
                    "discarded" if discard_on_failure else "retained for retry",
                )
                if discard_on_failure:
                    self._pending.clear()
                raise PersistenceError(f"Failed to commit wellness data: {exc}") from exc

            self._pending.clear()

        logger.info(
            "Committed %d change(s) (inserted=%s, updated=%s, deleted=%s)",
            changes.total, changes.inserted, changes.updated, changes.deleted,
        )
        if self._events is not None:
            self._events.publish(STORE_COMMITTED, changes)
        return changes

    def _validate_pending(self) -> None:
        for op in self._pending:
            if op.kind not in ("insert", "update"):
                continue
            op.entity.validate()
            if isinstance(op.entity, Medication):
                for log in op.entity.logs:
                    log.validate()

    def _apply(self, conn: sqlite3.Connection, op: _Op, changes: ChangeSet) -> None:
        entity = op.entity
        entity_type = type(entity)

        if op.kind == "insert":
            if isinstance(entity, MedicationLog):
                position = self._next_log_position(conn, entity.medication_id)
                self._insert_row(conn, MedicationLog, self._log_row(entity, position))
            else:
                self._insert_row(conn, entity_type, self._to_row(entity))
            changes.record("inserted", entity_type)
            if isinstance(entity, Medication):
                for position, log in enumerate(entity.logs):
                    self._insert_row(conn, MedicationLog, self._log_row(log, position))
                changes.record("inserted", MedicationLog, len(entity.logs))

        elif op.kind == "update":
            if isinstance(entity, MedicationLog):
                row = self._log_row(entity, None)
            else:
                row = self._to_row(entity)
            self._update_row(conn, entity_type, row)
            changes.record("updated", entity_type)
            if isinstance(entity, Medication):
                self._replace_logs(conn, entity, changes)

        elif op.kind == "delete":
            self._delete_cascade(conn, entity, changes)

        elif op.kind == "activate":
            conn.execute(
                """INSERT INTO active_profile (slot, user_id) VALUES (1, ?)
                   ON CONFLICT(slot) DO UPDATE SET user_id = excluded.user_id""",
                (entity.id,),
            )
            changes.active_user_id = entity.id

    def _insert_row(self, conn: sqlite3.Connection, entity_type: type, row: dict[str, Any]) -> None:
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        conn.execute(
            f"INSERT INTO {_TABLES[entity_type]} ({columns}) VALUES ({placeholders})",
            list(row.values()),
        )

    def _update_row(self, conn: sqlite3.Connection, entity_type: type, row: dict[str, Any]) -> None:
        entity_id = row.pop("id")
        assignments = ", ".join(f"{col} = ?" for col in row)
        conn.execute(
            f"UPDATE {_TABLES[entity_type]} SET {assignments} WHERE id = ?",
            [*row.values(), entity_id],
        )

    def _replace_logs(self, conn: sqlite3.Connection, medication: Medication, changes: ChangeSet) -> None:
        """Make the stored logs of ``medication`` match its ``logs`` list."""
        keep = [log.id for log in medication.logs]
        placeholders = ", ".join("?" for _ in keep)
        query = "DELETE FROM medication_logs WHERE medication_id = ?"
        if keep:
            query += f" AND id NOT IN ({placeholders})"
        cursor = conn.execute(query, [medication.id, *keep])
        changes.record("deleted", MedicationLog, cursor.rowcount)

        for position, log in enumerate(medication.logs):
            row = self._log_row(log, position)
            columns = ", ".join(row)
            placeholders = ", ".join("?" for _ in row)
            updates = ", ".join(f"{col} = excluded.{col}" for col in row if col != "id")
            conn.execute(
                f"""INSERT INTO medication_logs ({columns}) VALUES ({placeholders})
                    ON CONFLICT(id) DO UPDATE SET {updates}""",
                list(row.values()),
            )

    def _next_log_position(self, conn: sqlite3.Connection, medication_id: str) -> int:
        row = conn.execute(
            "SELECT COALESCE(MAX(position) + 1, 0) FROM medication_logs WHERE medication_id = ?",
            (medication_id,),
        ).fetchone()
        return row[0]

    def _delete_cascade(self, conn: sqlite3.Connection, entity: Any, changes: ChangeSet) -> None:
        entity_type = type(entity)

        if isinstance(entity, User):
            cursor = conn.execute(
                """DELETE FROM medication_logs WHERE medication_id IN
                   (SELECT id FROM medications WHERE user_id = ?)""",
                (entity.id,),
            )
            changes.record("deleted", MedicationLog, cursor.rowcount)
            for child_type, table in _USER_CASCADE:
                cursor = conn.execute(f"DELETE FROM {table} WHERE user_id = ?", (entity.id,))
                changes.record("deleted", child_type, cursor.rowcount)
            # Babies outlive the profile; only the link is cleared.
            conn.execute("UPDATE babies SET user_id = NULL WHERE user_id = ?", (entity.id,))
            conn.execute("DELETE FROM active_profile WHERE user_id = ?", (entity.id,))

        elif isinstance(entity, Medication):
            cursor = conn.execute(
                "DELETE FROM medication_logs WHERE medication_id = ?", (entity.id,)
            )
            changes.record("deleted", MedicationLog, cursor.rowcount)

        cursor = conn.execute(f"DELETE FROM {_TABLES[entity_type]} WHERE id = ?", (entity.id,))
        changes.record("deleted", entity_type, cursor.rowcount)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def fetch(
        self,
        entity_type: type[T],
        *,
        sort_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        filters: dict[str, Any] | None = None,
    ) -> list[T]:
        """Query committed entities of one type.

        Args:
            entity_type: Entity class, e.g. ``MoodEntry``.
            sort_by: Attribute to order by. Without it no order is guaranteed.
            descending: Reverse the sort.
            limit: Maximum results.
            filters: Attribute equality filters; ``None`` matches NULL.

        Returns:
            Decoded entities. Rows whose required vocabulary token is unknown
            to this build are skipped.
        """
        table = self._table_name(entity_type)
        conditions: list[str] = []
        params: list[Any] = []

        for attr, value in (filters or {}).items():
            column = self._column(entity_type, attr)
            if value is None:
                conditions.append(f"{column} IS NULL")
            else:
                conditions.append(f"{column} = ?")
                params.append(_sql_value(value))

        query = f"SELECT * FROM {table}"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        if sort_by is not None:
            # Column name validated against the known set
            column = self._column(entity_type, sort_by)
            direction = "DESC" if descending else "ASC"
            query += f" ORDER BY {column} {direction}, created_at {direction}, rowid {direction}"
        if limit is not None:
            if limit < 0:
                raise QueryError(f"limit must not be negative, got {limit}")
            query += " LIMIT ?"
            params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        results = []
        for row in rows:
            entity = self._from_row(entity_type, row)
            if entity is not None:
                results.append(entity)
        return results

    def get(self, entity_type: type[T], entity_id: str) -> T | None:
        """Retrieve one entity by id, or None if not found."""
        results = self.fetch(entity_type, filters={"id": entity_id}, limit=1)
        return results[0] if results else None

    def latest(self, entity_type: type[T], *, filters: dict[str, Any] | None = None) -> T | None:
        """Most recent entity by the type's natural timestamp."""
        results = self.fetch(
            entity_type,
            sort_by=_LATEST_BY[entity_type],
            descending=True,
            limit=1,
            filters=filters,
        )
        return results[0] if results else None

    def count(self, entity_type: type, *, filters: dict[str, Any] | None = None) -> int:
        """Number of committed rows of one type."""
        table = self._table_name(entity_type)
        conditions: list[str] = []
        params: list[Any] = []
        for attr, value in (filters or {}).items():
            column = self._column(entity_type, attr)
            if value is None:
                conditions.append(f"{column} IS NULL")
            else:
                conditions.append(f"{column} = ?")
                params.append(_sql_value(value))
        query = f"SELECT COUNT(*) FROM {table}"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        row = self._db.connection.execute(query, params).fetchone()
        return row[0]

    def active_user(self) -> User | None:
        """The profile referenced by the active-profile slot, if any."""
        row = self._db.connection.execute(
            """SELECT u.* FROM active_profile a
               JOIN users u ON u.id = a.user_id
               WHERE a.slot = 1"""
        ).fetchone()
        if row is None:
            return None
        return self._from_row(User, row)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _table_type(entity: Any) -> type:
        entity_type = type(entity)
        if entity_type not in _TABLES:
            raise QueryError(f"Not a stored entity: {entity_type.__name__}")
        return entity_type

    @staticmethod
    def _table_name(entity_type: type) -> str:
        try:
            return _TABLES[entity_type]
        except KeyError:
            raise QueryError(f"Not a stored entity type: {entity_type!r}") from None

    @staticmethod
    def _column(entity_type: type, attr: str) -> str:
        columns = _QUERYABLE[entity_type]
        if attr not in columns:
            raise QueryError(
                f"Cannot query {entity_type.__name__} by {attr!r}. Valid: {sorted(columns)}"
            )
        return columns[attr]

    def _exists(self, entity_type: type, entity_id: str) -> bool:
        row = self._db.connection.execute(
            f"SELECT 1 FROM {_TABLES[entity_type]} WHERE id = ?", (entity_id,)
        ).fetchone()
        return row is not None

    def _is_live(self, entity_type: type, entity_id: str) -> bool:
        """Whether the id will exist once the staged changes are committed."""
        live = self._exists(entity_type, entity_id)
        for op in self._pending:
            if type(op.entity) is not entity_type or op.entity.id != entity_id:
                continue
            if op.kind == "insert":
                live = True
            elif op.kind == "delete":
                live = False
        return live

    def _check_references(self, entity: Any) -> None:
        if isinstance(entity, (*USER_OWNED, Baby)) and entity.user_id is not None:
            if not self._is_live(User, entity.user_id):
                raise ConstraintError(
                    f"{type(entity).__name__} references missing user {entity.user_id}"
                )
        if isinstance(entity, MedicationLog):
            if not entity.medication_id or not self._is_live(Medication, entity.medication_id):
                raise ConstraintError("MedicationLog must belong to an existing medication")

    def _adopt_logs(self, medication: Medication) -> None:
        for log in medication.logs:
            log.validate()
            log.medication_id = medication.id
            if not log.id:
                log.id = self._new_id()

    def _load_logs(self, medication_id: str) -> list[MedicationLog]:
        rows = self._db.connection.execute(
            "SELECT * FROM medication_logs WHERE medication_id = ? ORDER BY position, scheduled_time",
            (medication_id,),
        ).fetchall()
        return [log for log in (self._from_row(MedicationLog, r) for r in rows) if log is not None]

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _to_row(self, entity: Any) -> dict[str, Any]:
        enc = self._enc
        if isinstance(entity, User):
            return {
                "id": entity.id,
                "name": entity.name,
                "birth_date": _ts(entity.birth_date),
                "delivery_date": _ts(entity.delivery_date),
                "delivery_type": _token(entity.delivery_type),
                "profile_image_enc": enc.encrypt_bytes(entity.profile_image),
                "created_at": _ts(entity.created_at),
                "last_modified": _ts(entity.last_modified),
            }
        if isinstance(entity, Baby):
            return {
                "id": entity.id,
                "name": entity.name,
                "birth_date": _ts(entity.birth_date),
                "birth_weight": entity.birth_weight,
                "birth_length": entity.birth_length,
                "gender": entity.gender.token,
                "user_id": entity.user_id,
                "created_at": _ts(entity.created_at),
                "last_modified": _ts(entity.last_modified),
            }
        if isinstance(entity, MoodEntry):
            return {
                "id": entity.id,
                "user_id": entity.user_id,
                "date": _ts(entity.date),
                "mood_rating": entity.mood_rating,
                "symptoms_json": _dump_list(sorted(entity.symptoms)),
                "anxiety": entity.anxiety,
                "sleep_quality": entity.sleep_quality,
                "notes_enc": enc.encrypt(entity.notes),
                "created_at": _ts(entity.created_at),
            }
        if isinstance(entity, RecoveryEntry):
            return {
                "id": entity.id,
                "user_id": entity.user_id,
                "date": _ts(entity.date),
                "symptoms_json": _dump_list(Vocabulary.encode_set(entity.symptoms)),
                "pain_level": entity.pain_level,
                "bleeding": _token(entity.bleeding),
                "medications_json": _dump_list(sorted(entity.medications)),
                "notes_enc": enc.encrypt(entity.notes),
                "created_at": _ts(entity.created_at),
            }
        if isinstance(entity, SelfCareActivity):
            return {
                "id": entity.id,
                "user_id": entity.user_id,
                "activity_type": entity.type.token,
                "start_time": _ts(entity.start_time),
                "duration": float(entity.duration),
                "notes_enc": enc.encrypt(entity.notes),
                "mood": entity.mood,
                "created_at": _ts(entity.created_at),
            }
        if isinstance(entity, Medication):
            return {
                "id": entity.id,
                "user_id": entity.user_id,
                "name": entity.name,
                "dosage": entity.dosage,
                "frequency": entity.frequency.token,
                "time_of_day_json": _dump_list(Vocabulary.encode_set(entity.time_of_day)),
                "notes_enc": enc.encrypt(entity.notes),
                "start_date": _ts(entity.start_date),
                "end_date": _ts_opt(entity.end_date),
                "reminder_enabled": int(entity.reminder_enabled),
                "created_at": _ts(entity.created_at),
            }
        if isinstance(entity, JournalEntry):
            return {
                "id": entity.id,
                "user_id": entity.user_id,
                "date": _ts(entity.date),
                "content_enc": enc.encrypt(entity.content),
                "mood": entity.mood,
                "tags_json": _dump_list(Vocabulary.encode_set(entity.tags)),
                "images_enc": enc.encrypt_blobs(entity.images),
                "created_at": _ts(entity.created_at),
                "last_modified": _ts(entity.last_modified),
            }
        raise QueryError(f"Not a stored entity: {type(entity).__name__}")

    def _log_row(self, log: MedicationLog, position: int | None) -> dict[str, Any]:
        row = {
            "id": log.id,
            "medication_id": log.medication_id,
            "taken": int(log.taken),
            "scheduled_time": _ts(log.scheduled_time),
            "taken_time": _ts_opt(log.taken_time),
            "skipped": int(log.skipped),
            "notes_enc": self._enc.encrypt(log.notes),
            "created_at": _ts(log.created_at),
        }
        if position is not None:
            row["position"] = position
        return row

    def _from_row(self, entity_type: type, row: sqlite3.Row) -> Any:
        """Decode a row, or return None when it cannot be represented."""
        try:
            return self._decode(entity_type, row)
        except (UnknownVariantError, ConstraintError) as exc:
            logger.warning("Skipping %s row %s: %s", entity_type.__name__, row["id"], exc)
            return None

    def _decode(self, entity_type: type, row: sqlite3.Row) -> Any:
        dec = self._enc
        if entity_type is User:
            return User(
                id=row["id"],
                name=row["name"],
                birth_date=_parse_ts(row["birth_date"]),
                delivery_date=_parse_ts(row["delivery_date"]),
                delivery_type=DeliveryType.decode_optional(row["delivery_type"]),
                profile_image=dec.decrypt_bytes(row["profile_image_enc"]),
                created_at=_parse_ts(row["created_at"]),
                last_modified=_parse_ts(row["last_modified"]),
            )
        if entity_type is Baby:
            return Baby(
                id=row["id"],
                name=row["name"],
                birth_date=_parse_ts(row["birth_date"]),
                birth_weight=row["birth_weight"],
                birth_length=row["birth_length"],
                gender=Gender.from_token(row["gender"]),
                user_id=row["user_id"],
                created_at=_parse_ts(row["created_at"]),
                last_modified=_parse_ts(row["last_modified"]),
            )
        if entity_type is MoodEntry:
            return MoodEntry(
                id=row["id"],
                user_id=row["user_id"],
                date=_parse_ts(row["date"]),
                mood_rating=row["mood_rating"],
                symptoms=set(json.loads(row["symptoms_json"])),
                anxiety=row["anxiety"],
                sleep_quality=row["sleep_quality"],
                notes=dec.decrypt(row["notes_enc"]),
                created_at=_parse_ts(row["created_at"]),
            )
        if entity_type is RecoveryEntry:
            return RecoveryEntry(
                id=row["id"],
                user_id=row["user_id"],
                date=_parse_ts(row["date"]),
                symptoms=PhysicalSymptom.decode_set(json.loads(row["symptoms_json"])),
                pain_level=row["pain_level"],
                bleeding=BleedingLevel.decode_optional(row["bleeding"]),
                medications=set(json.loads(row["medications_json"])),
                notes=dec.decrypt(row["notes_enc"]),
                created_at=_parse_ts(row["created_at"]),
            )
        if entity_type is SelfCareActivity:
            return SelfCareActivity(
                id=row["id"],
                user_id=row["user_id"],
                type=ActivityType.from_token(row["activity_type"]),
                start_time=_parse_ts(row["start_time"]),
                duration=row["duration"],
                notes=dec.decrypt(row["notes_enc"]),
                mood=row["mood"],
                created_at=_parse_ts(row["created_at"]),
            )
        if entity_type is Medication:
            return Medication(
                id=row["id"],
                user_id=row["user_id"],
                name=row["name"],
                dosage=row["dosage"],
                frequency=FrequencyType.from_token(row["frequency"]),
                time_of_day=TimeOfDay.decode_set(json.loads(row["time_of_day_json"])),
                notes=dec.decrypt(row["notes_enc"]),
                start_date=_parse_ts(row["start_date"]),
                end_date=_parse_ts_opt(row["end_date"]),
                reminder_enabled=bool(row["reminder_enabled"]),
                logs=self._load_logs(row["id"]),
                created_at=_parse_ts(row["created_at"]),
            )
        if entity_type is MedicationLog:
            return MedicationLog(
                id=row["id"],
                medication_id=row["medication_id"],
                taken=bool(row["taken"]),
                scheduled_time=_parse_ts(row["scheduled_time"]),
                taken_time=_parse_ts_opt(row["taken_time"]),
                skipped=bool(row["skipped"]),
                notes=dec.decrypt(row["notes_enc"]),
                created_at=_parse_ts(row["created_at"]),
            )
        if entity_type is JournalEntry:
            return JournalEntry(
                id=row["id"],
                user_id=row["user_id"],
                date=_parse_ts(row["date"]),
                content=dec.decrypt(row["content_enc"]),
                mood=row["mood"],
                tags=JournalTag.decode_set(json.loads(row["tags_json"])),
                images=dec.decrypt_blobs(row["images_enc"]),
                created_at=_parse_ts(row["created_at"]),
                last_modified=_parse_ts(row["last_modified"]),
            )
        raise QueryError(f"Not a stored entity type: {entity_type!r}")
