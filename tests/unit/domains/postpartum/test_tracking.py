"""Tests for TrackingService."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from ppease.core.storage.models import (
    ConstraintError,
    JournalEntry,
    Medication,
    MedicationLog,
    MoodEntry,
    RecoveryEntry,
    SelfCareActivity,
)
from ppease.core.storage.repository import PersistenceError
from ppease.core.storage.vocabulary import (
    ActivityType,
    BleedingLevel,
    FrequencyType,
    JournalTag,
    PhysicalSymptom,
    TimeOfDay,
)
from ppease.domains.postpartum.services.tracking import TrackingService

from conftest import NOW, make_user, run

DAY = date(2026, 3, 1)


def _fail_updates_to(db, table):
    db.connection.execute(
        f"""CREATE TRIGGER fail_update_{table} BEFORE UPDATE ON {table}
            BEGIN SELECT RAISE(ABORT, 'disk I/O error'); END"""
    )
    db.connection.commit()


def _someone_elses_mood(repository):
    other = repository.insert(make_user(name="Mira"))
    entry = repository.insert(MoodEntry(mood_rating=2, user_id=other.id))
    repository.save()
    return entry


@pytest.fixture
def tracking(repository, audit_logger):
    return TrackingService(repository, audit_logger)


def _add_ibuprofen(tracking, **overrides):
    kwargs = dict(
        time_of_day={TimeOfDay.EVENING, TimeOfDay.MORNING},
        start_date=NOW - timedelta(days=2),
    )
    kwargs.update(overrides)
    return run(tracking.add_medication("Ibuprofen", "400mg", FrequencyType.DAILY, **kwargs))


class TestLogging:
    def test_requires_active_profile(self, tracking, repository):
        with pytest.raises(LookupError):
            run(tracking.log_mood(3))
        assert repository.count(MoodEntry) == 0

    def test_mood_attached_to_active_user(self, tracking, repository, active_user):
        entry = run(tracking.log_mood(3, symptoms={"Anxiety", "Fatigue"}, sleep_quality=2))
        stored = repository.get(MoodEntry, entry.id)
        assert stored.user_id == active_user.id
        assert stored.symptoms == {"Anxiety", "Fatigue"}

    def test_latest_mood_scenario(self, tracking, repository, active_user):
        t1 = NOW - timedelta(hours=3)
        t2 = NOW
        run(tracking.log_mood(3, symptoms={"Anxiety", "Fatigue"}, at=t1))
        run(tracking.log_mood(5, at=t2))

        latest = repository.latest(MoodEntry, filters={"user_id": active_user.id})
        assert latest.mood_rating == 5
        assert latest.date == t2

    def test_out_of_range_mood_rejected(self, tracking, repository, active_user):
        with pytest.raises(ConstraintError):
            run(tracking.log_mood(6))
        assert repository.count(MoodEntry) == 0

    def test_recovery(self, tracking, repository, active_user):
        entry = run(tracking.log_recovery(
            symptoms={PhysicalSymptom.INCISION_PAIN}, pain_level=7, bleeding=BleedingLevel.LIGHT,
        ))
        stored = repository.get(RecoveryEntry, entry.id)
        assert stored.symptoms == {PhysicalSymptom.INCISION_PAIN}
        assert stored.bleeding is BleedingLevel.LIGHT

    def test_self_care(self, tracking, repository, active_user):
        activity = run(tracking.log_self_care(ActivityType.BREATHING, 600, mood=4))
        assert repository.get(SelfCareActivity, activity.id).duration == 600

    def test_journal(self, tracking, repository, active_user):
        entry = run(tracking.add_journal_entry(
            "She smiled today", tags={JournalTag.MILESTONE}, images=[b"photo"],
        ))
        stored = repository.get(JournalEntry, entry.id)
        assert stored.content == "She smiled today"
        assert stored.images == [b"photo"]


class TestMedications:
    def test_schedule_doses_at_default_hours(self, tracking, active_user):
        med = _add_ibuprofen(tracking)
        doses = run(tracking.schedule_doses(med, DAY))

        assert [d.scheduled_time for d in doses] == [
            datetime(2026, 3, 1, 8, tzinfo=timezone.utc),
            datetime(2026, 3, 1, 18, tzinfo=timezone.utc),
        ]
        assert len(med.logs) == 2

    def test_schedule_in_local_zone(self, tracking, active_user):
        med = _add_ibuprofen(tracking, time_of_day={TimeOfDay.BEDTIME})
        minus_five = timezone(timedelta(hours=-5))
        [dose] = run(tracking.schedule_doses(med, DAY, tz=minus_five))
        assert dose.scheduled_time == datetime(2026, 3, 2, 3, tzinfo=timezone.utc)

    def test_schedule_is_idempotent(self, tracking, repository, active_user):
        med = _add_ibuprofen(tracking)
        run(tracking.schedule_doses(med, DAY))
        assert run(tracking.schedule_doses(med, DAY)) == []
        assert repository.count(MedicationLog) == 2

    def test_nothing_scheduled_outside_active_period(self, tracking, active_user):
        med = _add_ibuprofen(tracking, end_date=NOW - timedelta(days=1))
        assert run(tracking.schedule_doses(med, DAY)) == []

    def test_no_dose_before_regimen_starts(self, tracking, active_user):
        med = _add_ibuprofen(tracking, start_date=datetime(2026, 3, 1, 10, tzinfo=timezone.utc))
        doses = run(tracking.schedule_doses(med, DAY))
        assert [d.scheduled_time.hour for d in doses] == [18]

    def test_active_period_follows_local_zone(self, tracking, active_user):
        # Starts at 21:00 local on DAY, which is already the next day in UTC.
        minus_five = timezone(timedelta(hours=-5))
        med = _add_ibuprofen(
            tracking,
            time_of_day={TimeOfDay.MORNING, TimeOfDay.BEDTIME},
            start_date=datetime(2026, 3, 2, 2, tzinfo=timezone.utc),
        )
        [dose] = run(tracking.schedule_doses(med, DAY, tz=minus_five))
        assert dose.scheduled_time == datetime(2026, 3, 2, 3, tzinfo=timezone.utc)

    def test_record_dose(self, tracking, repository, active_user):
        med = _add_ibuprofen(tracking)
        morning, evening = run(tracking.schedule_doses(med, DAY))

        run(tracking.record_dose(morning, at=NOW))
        run(tracking.record_dose(evening, taken=False, notes="felt fine"))

        stored = {log.id: log for log in repository.get(Medication, med.id).logs}
        assert stored[morning.id].taken and stored[morning.id].taken_time == NOW
        assert stored[evening.id].skipped and stored[evening.id].taken_time is None
        assert stored[evening.id].notes == "felt fine"

    def test_failed_dose_commit_leaves_dose_unchanged(self, tracking, repository, wellness_db, active_user):
        med = _add_ibuprofen(tracking)
        morning, _evening = run(tracking.schedule_doses(med, DAY))
        _fail_updates_to(wellness_db, "medication_logs")

        with pytest.raises(PersistenceError):
            run(tracking.record_dose(morning, at=NOW, notes="with food"))
        assert not morning.taken and not morning.skipped
        assert morning.taken_time is None and morning.notes is None
        assert not repository.has_pending_changes

    def test_due_doses(self, tracking, active_user):
        med = _add_ibuprofen(tracking)
        morning, _evening = run(tracking.schedule_doses(med, DAY))

        due = tracking.due_doses(NOW)
        assert [log.id for _, log in due] == [morning.id]

        run(tracking.record_dose(morning))
        assert tracking.due_doses(NOW) == []


class TestEditing:
    def test_update_entry(self, tracking, repository, active_user):
        entry = run(tracking.log_mood(3))
        run(tracking.update_entry(entry, mood_rating=4, notes="better after a nap"))
        stored = repository.get(MoodEntry, entry.id)
        assert stored.mood_rating == 4
        assert stored.notes == "better after a nap"

    def test_invalid_update_leaves_entry_unchanged(self, tracking, repository, active_user):
        entry = run(tracking.log_mood(3))
        with pytest.raises(ConstraintError):
            run(tracking.update_entry(entry, mood_rating=9))
        assert entry.mood_rating == 3
        assert repository.get(MoodEntry, entry.id).mood_rating == 3
        assert not repository.has_pending_changes

    def test_failed_commit_leaves_entry_unchanged(self, tracking, repository, wellness_db, active_user):
        entry = run(tracking.add_journal_entry("draft"))
        before = entry.last_modified
        _fail_updates_to(wellness_db, "journal_entries")

        with pytest.raises(PersistenceError):
            run(tracking.update_entry(entry, content="final"))
        assert entry.content == "draft"
        assert entry.last_modified == before
        assert repository.get(JournalEntry, entry.id).content == "draft"

    def test_other_profiles_entry_cannot_be_edited(self, tracking, repository, active_user):
        entry = _someone_elses_mood(repository)
        with pytest.raises(LookupError, match="active profile"):
            run(tracking.update_entry(entry, mood_rating=5))
        assert entry.mood_rating == 2
        assert repository.get(MoodEntry, entry.id).mood_rating == 2

    def test_other_profiles_entry_cannot_be_deleted(self, tracking, repository, active_user):
        entry = _someone_elses_mood(repository)
        with pytest.raises(LookupError, match="active profile"):
            run(tracking.delete_entry(entry))
        assert repository.get(MoodEntry, entry.id) is not None

    def test_journal_edit_refreshes_last_modified(self, tracking, repository, active_user):
        entry = run(tracking.add_journal_entry("draft"))
        before = entry.last_modified
        run(tracking.update_entry(entry, content="final"))
        assert repository.get(JournalEntry, entry.id).last_modified >= before

    def test_ownership_cannot_change(self, tracking, active_user):
        entry = run(tracking.log_mood(3))
        with pytest.raises(ValueError):
            run(tracking.update_entry(entry, user_id="other"))

    def test_delete_medication_with_doses(self, tracking, repository, audit_logger, active_user):
        med = _add_ibuprofen(tracking)
        run(tracking.schedule_doses(med, DAY))

        assert run(tracking.delete_entry(med)) == 3
        assert repository.count(MedicationLog) == 0
        event = audit_logger.get_events(action="data_delete")[0]
        assert event["entity_type"] == "Medication"
        assert event["metadata"]["records_deleted"] == 3

    def test_user_cannot_be_deleted_here(self, tracking, active_user):
        with pytest.raises(TypeError):
            run(tracking.delete_entry(active_user))


class TestHistory:
    def test_newest_first(self, tracking, active_user):
        for hours in (5, 1, 3):
            run(tracking.log_mood(3, at=NOW - timedelta(hours=hours)))
        dates = [e.date for e in tracking.history(MoodEntry)]
        assert dates == sorted(dates, reverse=True)
        assert len(tracking.history(MoodEntry, limit=2)) == 2

    def test_only_active_users_entries(self, tracking, repository, active_user):

        other = repository.insert(make_user(name="Bea"))
        repository.insert(MoodEntry(mood_rating=1, user_id=other.id))
        repository.save()
        run(tracking.log_mood(4))

        assert [e.mood_rating for e in tracking.history(MoodEntry)] == [4]

    def test_empty_without_profile(self, tracking):
        assert tracking.history(SelfCareActivity) == []
