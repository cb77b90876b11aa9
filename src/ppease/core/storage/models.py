"""Data models for the wellness persistence layer.

Every entity carries a store-assigned ``id`` (empty until inserted) and a
``created_at`` instant fixed at construction. Owned entities reference their
``User`` through ``user_id``; medication logs reference their ``Medication``
through ``medication_id``.

All instants are timezone-aware UTC. Naive datetimes are taken to be UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from ppease.core.storage.vocabulary import (
    ActivityType,
    BleedingLevel,
    DeliveryType,
    FrequencyType,
    Gender,
    JournalTag,
    PhysicalSymptom,
    PostpartumSymptom,
    TimeOfDay,
)

MOOD_SCALE = (1, 5)
PAIN_SCALE = (1, 10)


class ConstraintError(ValueError):
    """Raised when an entity violates a bound, uniqueness or relationship rule."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize an instant to aware UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_utc_optional(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


def _check_scale(name: str, value: int | None, scale: tuple[int, int]) -> None:
    if value is None:
        return
    low, high = scale
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise ConstraintError(f"{name} must be an integer in {low}-{high}, got {value!r}")


@dataclass
class User:
    """The parent profile. Root aggregate for all tracked entries."""

    name: str
    birth_date: datetime
    delivery_date: datetime
    delivery_type: DeliveryType | None = None
    profile_image: bytes | None = None
    id: str = ""
    created_at: datetime = field(default_factory=utcnow)
    last_modified: datetime | None = None

    def __post_init__(self) -> None:
        self.birth_date = as_utc(self.birth_date)
        self.delivery_date = as_utc(self.delivery_date)
        self.created_at = as_utc(self.created_at)
        self.last_modified = as_utc(self.last_modified) if self.last_modified else self.created_at
        self.validate()

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ConstraintError("User name must not be blank")


@dataclass
class Baby:
    """A baby record, linked to the parent profile collected with it."""

    name: str
    birth_date: datetime
    gender: Gender
    birth_weight: float | None = None
    birth_length: float | None = None
    user_id: str | None = None
    id: str = ""
    created_at: datetime = field(default_factory=utcnow)
    last_modified: datetime | None = None

    def __post_init__(self) -> None:
        self.birth_date = as_utc(self.birth_date)
        self.created_at = as_utc(self.created_at)
        self.last_modified = as_utc(self.last_modified) if self.last_modified else self.created_at
        self.validate()

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ConstraintError("Baby name must not be blank")
        for label, value in (("birth_weight", self.birth_weight), ("birth_length", self.birth_length)):
            if value is not None and value <= 0:
                raise ConstraintError(f"{label} must be positive, got {value!r}")


@dataclass
class MoodEntry:
    """A daily mood check-in.

    ``symptoms`` holds raw tag strings. Tags outside ``PostpartumSymptom``
    are kept as written; :meth:`known_symptoms` filters them for display.
    """

    mood_rating: int
    date: datetime = field(default_factory=utcnow)
    symptoms: set[str] = field(default_factory=set)
    anxiety: int | None = None
    sleep_quality: int | None = None
    notes: str | None = None
    user_id: str | None = None
    id: str = ""
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.date = as_utc(self.date)
        self.created_at = as_utc(self.created_at)
        self.symptoms = {s.token if isinstance(s, PostpartumSymptom) else s for s in self.symptoms}
        self.validate()

    def validate(self) -> None:
        _check_scale("mood_rating", self.mood_rating, MOOD_SCALE)
        _check_scale("anxiety", self.anxiety, MOOD_SCALE)
        _check_scale("sleep_quality", self.sleep_quality, MOOD_SCALE)

    def known_symptoms(self) -> set[PostpartumSymptom]:
        return PostpartumSymptom.decode_set(self.symptoms)


@dataclass
class RecoveryEntry:
    """A physical recovery check-in."""

    date: datetime = field(default_factory=utcnow)
    symptoms: set[PhysicalSymptom] = field(default_factory=set)
    pain_level: int | None = None
    bleeding: BleedingLevel | None = None
    medications: set[str] = field(default_factory=set)
    notes: str | None = None
    user_id: str | None = None
    id: str = ""
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.date = as_utc(self.date)
        self.created_at = as_utc(self.created_at)
        self.symptoms = set(self.symptoms)
        self.medications = set(self.medications)
        self.validate()

    def validate(self) -> None:
        _check_scale("pain_level", self.pain_level, PAIN_SCALE)


@dataclass
class SelfCareActivity:
    """A self-care session. ``duration`` is in seconds."""

    type: ActivityType
    duration: float
    start_time: datetime = field(default_factory=utcnow)
    notes: str | None = None
    mood: int | None = None
    user_id: str | None = None
    id: str = ""
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.start_time = as_utc(self.start_time)
        self.created_at = as_utc(self.created_at)
        self.validate()

    def validate(self) -> None:
        if self.duration < 0:
            raise ConstraintError(f"duration must not be negative, got {self.duration!r}")
        _check_scale("mood", self.mood, MOOD_SCALE)


@dataclass
class MedicationLog:
    """One scheduled dose of a medication and what happened to it."""

    scheduled_time: datetime
    taken: bool = False
    taken_time: datetime | None = None
    skipped: bool = False
    notes: str | None = None
    medication_id: str = ""
    id: str = ""
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.scheduled_time = as_utc(self.scheduled_time)
        self.taken_time = _as_utc_optional(self.taken_time)
        self.created_at = as_utc(self.created_at)
        self.validate()

    def validate(self) -> None:
        if self.taken and self.skipped:
            raise ConstraintError("A dose cannot be both taken and skipped")


@dataclass
class Medication:
    """A medication regimen. Owns its dose logs in scheduled order."""

    name: str
    dosage: str
    frequency: FrequencyType
    time_of_day: set[TimeOfDay] = field(default_factory=set)
    notes: str | None = None
    start_date: datetime = field(default_factory=utcnow)
    end_date: datetime | None = None
    reminder_enabled: bool = True
    logs: list[MedicationLog] = field(default_factory=list)
    user_id: str | None = None
    id: str = ""
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.start_date = as_utc(self.start_date)
        self.end_date = _as_utc_optional(self.end_date)
        self.created_at = as_utc(self.created_at)
        self.time_of_day = set(self.time_of_day)
        self.validate()

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ConstraintError("Medication name must not be blank")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ConstraintError("Medication end_date precedes start_date")

    def is_active(self, at: datetime) -> bool:
        at = as_utc(at)
        return self.start_date <= at and (self.end_date is None or at <= self.end_date)


@dataclass
class JournalEntry:
    """A free-form journal entry with optional tags and images."""

    content: str
    date: datetime = field(default_factory=utcnow)
    mood: int | None = None
    tags: set[JournalTag] = field(default_factory=set)
    images: list[bytes] | None = None
    user_id: str | None = None
    id: str = ""
    created_at: datetime = field(default_factory=utcnow)
    last_modified: datetime | None = None

    def __post_init__(self) -> None:
        self.date = as_utc(self.date)
        self.created_at = as_utc(self.created_at)
        self.last_modified = as_utc(self.last_modified) if self.last_modified else self.created_at
        self.tags = set(self.tags)
        self.validate()

    def validate(self) -> None:
        _check_scale("mood", self.mood, MOOD_SCALE)


Entity = User | Baby | MoodEntry | RecoveryEntry | SelfCareActivity | Medication | MedicationLog | JournalEntry

# Entities owned by a User and deleted with it.
USER_OWNED: tuple[type, ...] = (MoodEntry, RecoveryEntry, SelfCareActivity, Medication, JournalEntry)
