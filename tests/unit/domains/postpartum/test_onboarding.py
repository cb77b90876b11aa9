"""Tests for OnboardingService."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from ppease.core.events.bus import ONBOARDING_COMPLETED
from ppease.core.storage.models import Baby, User, utcnow
from ppease.core.storage.repository import PersistenceError
from ppease.core.storage.vocabulary import DeliveryType, Gender
from ppease.core.sync.agent import SyncAgent
from ppease.domains.postpartum.services.onboarding import (
    OnboardingError,
    OnboardingForm,
    OnboardingService,
)

from conftest import run


def _born_form(**overrides) -> OnboardingForm:
    defaults = dict(
        name="Ava",
        birth_date=datetime(2000, 1, 1, tzinfo=timezone.utc),
        delivery_date=datetime(2024, 6, 1, tzinfo=timezone.utc),
        delivery_type=DeliveryType.CESAREAN,
        profile_image=b"\x89PNG avatar",
        is_baby_born=True,
        baby_name="Noor",
        baby_birth_date=datetime(2024, 6, 1, tzinfo=timezone.utc),
        baby_gender=Gender.FEMALE,
        baby_birth_weight=3.2,
    )
    defaults.update(overrides)
    return OnboardingForm(**defaults)


def _expecting_form(**overrides) -> OnboardingForm:
    defaults = dict(
        name="Ava",
        birth_date=datetime(2000, 1, 1, tzinfo=timezone.utc),
        delivery_date=utcnow() + timedelta(days=30),
    )
    defaults.update(overrides)
    return OnboardingForm(**defaults)


@pytest.fixture
def onboarding(repository, flags, sync_agent, event_bus):
    return OnboardingService(repository, flags, sync_agent, event_bus)


class TestComplete:
    def test_creates_linked_user_and_baby(self, onboarding, repository, flags):
        result = run(onboarding.complete(_born_form()))

        user = repository.active_user()
        assert user.id == result.user.id
        assert user.name == "Ava"
        assert user.delivery_type is DeliveryType.CESAREAN
        assert user.delivery_date == datetime(2024, 6, 1, tzinfo=timezone.utc)
        baby = repository.get(Baby, result.baby.id)
        assert baby.name == "Noor"
        assert baby.user_id == user.id
        assert flags.onboarding_completed
        assert onboarding.is_completed

    def test_expecting_parent_gets_due_date_and_no_baby(self, onboarding, repository):
        form = _expecting_form()
        result = run(onboarding.complete(form))

        assert result.baby is None
        assert repository.count(Baby) == 0
        user = repository.active_user()
        assert user.delivery_date == form.delivery_date
        assert user.delivery_type is None

    def test_profile_is_mirrored(self, onboarding, record_store):
        result = run(onboarding.complete(_born_form()))

        assert result.sync.ok
        record = record_store.records[result.user.id]
        assert record["fields"]["deliveryType"]["value"] == "C-Section"
        assert "profileImage" in record["assets"]

    def test_announces_completion_once(self, onboarding, event_bus):
        received = []
        event_bus.subscribe(ONBOARDING_COMPLETED, received.append)
        run(onboarding.complete(_born_form()))
        assert len(received) == 1

    def test_second_completion_rejected(self, onboarding, repository):
        run(onboarding.complete(_born_form()))
        with pytest.raises(OnboardingError, match="already"):
            run(onboarding.complete(_born_form(name="Bea")))
        assert repository.count(User) == 1


class TestSyncFailureIsTransparent:
    def test_unavailable_remote_still_completes(self, onboarding, record_store, repository, flags):
        record_store.status = "no_account"
        result = run(onboarding.complete(_born_form()))

        assert result.sync.status == "failed"
        assert result.sync.error_type == "RemoteUnavailableError"
        assert repository.active_user().name == "Ava"
        assert flags.onboarding_completed

    def test_unprovisioned_device_completes(self, repository, flags, event_bus):
        service = OnboardingService(repository, flags, SyncAgent(None), event_bus)
        result = run(service.complete(_born_form()))
        assert result.sync.status == "skipped"
        assert flags.onboarding_completed


class TestValidation:
    @pytest.mark.parametrize(
        "overrides, problem",
        [
            ({"name": "  "}, "name is required"),
            ({"birth_date": utcnow() + timedelta(days=1)}, "birth date"),
            ({"baby_name": ""}, "baby name"),
            ({"baby_birth_date": None}, "baby birth date"),
            ({"baby_birth_date": utcnow() + timedelta(days=2)}, "baby birth date"),
            ({"baby_birth_weight": 0}, "birth weight"),
            ({"baby_birth_length": -1.0}, "birth length"),
        ],
    )
    def test_invalid_born_form(self, onboarding, repository, flags, overrides, problem):
        with pytest.raises(OnboardingError, match=problem):
            run(onboarding.complete(_born_form(**overrides)))
        assert repository.count(User) == 0
        assert not flags.onboarding_completed

    def test_due_date_must_be_in_future(self, onboarding):
        with pytest.raises(OnboardingError, match="due date"):
            run(onboarding.complete(_expecting_form(delivery_date=utcnow() - timedelta(days=1))))

    def test_baby_fields_ignored_when_not_born(self, onboarding, repository):
        run(onboarding.complete(_expecting_form(baby_name="")))
        assert repository.count(User) == 1


class TestCommitFailure:
    def test_nothing_flagged_or_announced(self, onboarding, repository, wellness_db, flags, event_bus, record_store):
        wellness_db.connection.execute(
            "CREATE TRIGGER no_babies BEFORE INSERT ON babies BEGIN SELECT RAISE(ABORT, 'disk full'); END"
        )
        received = []
        event_bus.subscribe(ONBOARDING_COMPLETED, received.append)

        with pytest.raises(PersistenceError):
            run(onboarding.complete(_born_form()))

        assert repository.count(User) == 0
        assert not repository.has_pending_changes
        assert not flags.onboarding_completed
        assert received == []
        assert record_store.calls == []

    def test_retry_after_failure_succeeds(self, onboarding, repository, wellness_db):
        wellness_db.connection.execute(
            "CREATE TRIGGER no_users BEFORE INSERT ON users BEGIN SELECT RAISE(ABORT, 'disk full'); END"
        )
        with pytest.raises(PersistenceError):
            run(onboarding.complete(_born_form()))
        wellness_db.connection.execute("DROP TRIGGER no_users")

        run(onboarding.complete(_born_form()))
        assert repository.count(User) == 1
        assert repository.count(Baby) == 1
