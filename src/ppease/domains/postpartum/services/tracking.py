"""Daily tracking: mood, recovery, self-care, medications and journal.

Every entry is attached to the active profile and committed on its own.
Writes share one asyncio lock with the other profile services so a delete
cannot interleave with an entry being logged against the same user.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import date, datetime, time, timezone, tzinfo
from typing import TYPE_CHECKING, Any, TypeVar

from ppease.core.storage.models import (
    USER_OWNED,
    JournalEntry,
    Medication,
    MedicationLog,
    MoodEntry,
    RecoveryEntry,
    SelfCareActivity,
    User,
    utcnow,
)
from ppease.core.storage.repository import WellnessRepository
from ppease.core.storage.vocabulary import (
    ActivityType,
    BleedingLevel,
    FrequencyType,
    JournalTag,
    PhysicalSymptom,
    TimeOfDay,
)

if TYPE_CHECKING:
    from ppease.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

T = TypeVar("T")

_HISTORY_ORDER = {
    MoodEntry: "date",
    RecoveryEntry: "date",
    SelfCareActivity: "start_time",
    Medication: "start_date",
    JournalEntry: "date",
}


class TrackingService:
    """Logs and edits the user's wellness entries.

    Usage::

        tracking = TrackingService(repository, audit)
        await tracking.log_mood(4, symptoms={"Fatigue"}, sleep_quality=3)
        med = await tracking.add_medication("Ibuprofen", "400mg", FrequencyType.DAILY,
                                            time_of_day={TimeOfDay.MORNING})
        await tracking.schedule_doses(med, date.today())
    """

    def __init__(
        self,
        repository: WellnessRepository,
        audit_logger: AuditLogger | None = None,
        *,
        lock: asyncio.Lock | None = None,
    ) -> None:
        self._repo = repository
        self._audit = audit_logger
        self._lock = lock or asyncio.Lock()

    def _owner(self) -> User:
        user = self._repo.active_user()
        if user is None:
            raise LookupError("No active profile; complete onboarding first")
        return user

    def _check_owned(self, entry: Any) -> None:
        if entry.user_id != self._owner().id:
            raise LookupError(
                f"{type(entry).__name__} {entry.id} does not belong to the active profile"
            )

    async def _add(self, entity: T) -> T:
        async with self._lock:
            entity.user_id = self._owner().id
            self._repo.insert(entity)
            self._repo.save(discard_on_failure=True)
        logger.info("Logged %s %s", type(entity).__name__, entity.id)
        return entity

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    async def log_mood(
        self,
        mood_rating: int,
        *,
        symptoms: Iterable[str] = (),
        anxiety: int | None = None,
        sleep_quality: int | None = None,
        notes: str | None = None,
        at: datetime | None = None,
    ) -> MoodEntry:
        return await self._add(MoodEntry(
            mood_rating=mood_rating,
            date=at or utcnow(),
            symptoms=set(symptoms),
            anxiety=anxiety,
            sleep_quality=sleep_quality,
            notes=notes,
        ))

    async def log_recovery(
        self,
        *,
        symptoms: Iterable[PhysicalSymptom] = (),
        pain_level: int | None = None,
        bleeding: BleedingLevel | None = None,
        medications: Iterable[str] = (),
        notes: str | None = None,
        at: datetime | None = None,
    ) -> RecoveryEntry:
        return await self._add(RecoveryEntry(
            date=at or utcnow(),
            symptoms=set(symptoms),
            pain_level=pain_level,
            bleeding=bleeding,
            medications=set(medications),
            notes=notes,
        ))

    async def log_self_care(
        self,
        activity: ActivityType,
        duration: float,
        *,
        mood: int | None = None,
        notes: str | None = None,
        start_time: datetime | None = None,
    ) -> SelfCareActivity:
        """Log a self-care session. ``duration`` is in seconds."""
        return await self._add(SelfCareActivity(
            type=activity,
            duration=duration,
            start_time=start_time or utcnow(),
            mood=mood,
            notes=notes,
        ))

    async def add_journal_entry(
        self,
        content: str,
        *,
        mood: int | None = None,
        tags: Iterable[JournalTag] = (),
        images: list[bytes] | None = None,
        at: datetime | None = None,
    ) -> JournalEntry:
        return await self._add(JournalEntry(
            content=content,
            date=at or utcnow(),
            mood=mood,
            tags=set(tags),
            images=images,
        ))

    # ------------------------------------------------------------------
    # Medications
    # ------------------------------------------------------------------

    async def add_medication(
        self,
        name: str,
        dosage: str,
        frequency: FrequencyType,
        *,
        time_of_day: Iterable[TimeOfDay] = (),
        notes: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        reminder_enabled: bool = True,
    ) -> Medication:
        return await self._add(Medication(
            name=name.strip(),
            dosage=dosage,
            frequency=frequency,
            time_of_day=set(time_of_day),
            notes=notes,
            start_date=start_date or utcnow(),
            end_date=end_date,
            reminder_enabled=reminder_enabled,
        ))

    async def schedule_doses(
        self,
        medication: Medication,
        day: date,
        *,
        tz: tzinfo = timezone.utc,
    ) -> list[MedicationLog]:
        """Create one pending dose per time-of-day slot on ``day``.

        Slots are scheduled at their default hour in ``tz``. Slots that
        already have a dose at that instant are left alone. Nothing is
        scheduled at an instant outside the medication's active period.

        Returns:
            The newly scheduled doses, earliest first.
        """
        async with self._lock:
            current = self._repo.get(Medication, medication.id)
            if current is None:
                raise LookupError(f"Unknown medication {medication.id}")
            existing = {log.scheduled_time for log in current.logs}
            created = []
            for slot in sorted(current.time_of_day, key=lambda s: s.default_hour):
                at = datetime.combine(day, time(hour=slot.default_hour), tzinfo=tz)
                if not current.is_active(at):
                    continue
                log = MedicationLog(scheduled_time=at)
                if log.scheduled_time not in existing:
                    created.append(log)

            if created:
                current.logs.extend(created)
                current.logs.sort(key=lambda log: log.scheduled_time)
                self._repo.update(current)
                self._repo.save(discard_on_failure=True)
                medication.logs = current.logs

        logger.info("Scheduled %d dose(s) of %s for %s", len(created), current.name, day)
        return created

    async def record_dose(
        self,
        log: MedicationLog,
        *,
        taken: bool = True,
        at: datetime | None = None,
        notes: str | None = None,
    ) -> MedicationLog:
        """Mark a scheduled dose as taken, or as skipped when ``taken`` is False.

        The dose is left as it was if the change cannot be committed.
        """
        async with self._lock:
            previous = (log.taken, log.skipped, log.taken_time, log.notes)
            log.taken = taken
            log.skipped = not taken
            log.taken_time = (at or utcnow()) if taken else None
            if notes is not None:
                log.notes = notes
            try:
                self._repo.update(log)
                self._repo.save(discard_on_failure=True)
            except Exception:
                log.taken, log.skipped, log.taken_time, log.notes = previous
                raise
        return log

    def due_doses(self, at: datetime | None = None) -> list[tuple[Medication, MedicationLog]]:
        """Pending doses scheduled at or before ``at``, earliest first."""
        at = at or utcnow()
        user = self._repo.active_user()
        if user is None:
            return []
        due = []
        for medication in self._repo.fetch(Medication, filters={"user_id": user.id}):
            for log in medication.logs:
                if not log.taken and not log.skipped and log.scheduled_time <= at:
                    due.append((medication, log))
        due.sort(key=lambda pair: pair[1].scheduled_time)
        return due

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    async def update_entry(self, entry: T, **changes: Any) -> T:
        """Apply ``changes`` to a logged entry and commit them.

        Raises:
            ConstraintError: If the changed entry violates a model rule.
            PersistenceError: If the commit fails.
            LookupError: If the entry does not belong to the active profile.

        On any failure the entry is left as it was.
        """
        if type(entry) not in USER_OWNED:
            raise TypeError(f"Not a tracked entry: {type(entry).__name__}")
        if {"id", "user_id", "created_at"} & set(changes):
            raise ValueError("id, user_id and created_at cannot be changed")

        async with self._lock:
            self._check_owned(entry)
            restored = set(changes)
            if hasattr(entry, "last_modified"):
                restored.add("last_modified")
            previous = {name: getattr(entry, name) for name in restored}
            for name, value in changes.items():
                setattr(entry, name, value)
            try:
                entry.__post_init__()
                self._repo.update(entry)
                self._repo.save(discard_on_failure=True)
            except Exception:
                for name, value in previous.items():
                    setattr(entry, name, value)
                raise
        return entry

    async def delete_entry(self, entry: Any) -> int:
        """Delete a logged entry (and a medication's doses). Returns rows removed."""
        if type(entry) not in USER_OWNED:
            raise TypeError(f"Not a tracked entry: {type(entry).__name__}")

        async with self._lock:
            self._check_owned(entry)
            self._repo.delete(entry)
            changes = self._repo.save(discard_on_failure=True)

        if self._audit is not None:
            self._audit.log_data_delete(
                type(entry).__name__, entity_id=entry.id, count=changes.total
            )
        return changes.total

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def history(self, entry_type: type[T], *, limit: int | None = None) -> list[T]:
        """The active user's entries of one type, newest first."""
        if entry_type not in _HISTORY_ORDER:
            raise TypeError(f"Not a tracked entry type: {entry_type!r}")
        user = self._repo.active_user()
        if user is None:
            return []
        return self._repo.fetch(
            entry_type,
            sort_by=_HISTORY_ORDER[entry_type],
            descending=True,
            limit=limit,
            filters={"user_id": user.id},
        )

