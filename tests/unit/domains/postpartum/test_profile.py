"""Tests for ProfileService."""

from __future__ import annotations

import pytest

from ppease.core.storage.models import Baby, ConstraintError, MoodEntry, User
from ppease.core.storage.vocabulary import DeliveryType
from ppease.domains.postpartum.services.profile import ProfileService

from conftest import make_baby, run


@pytest.fixture
def profile(repository, flags, sync_agent, audit_logger):
    return ProfileService(repository, flags, sync_agent, audit_logger)


class TestUpdate:
    def test_updates_and_mirrors(self, profile, repository, sync_agent, record_store, active_user):
        async def _scenario():
            user = await profile.update(name="Ava Rose", delivery_type=DeliveryType.CESAREAN)
            await sync_agent.drain()
            return user

        user = run(_scenario())

        stored = repository.get(User, active_user.id)
        assert stored.name == "Ava Rose"
        assert stored.delivery_type is DeliveryType.CESAREAN
        assert stored.last_modified >= active_user.last_modified
        assert user.id == active_user.id
        assert record_store.records[active_user.id]["fields"]["name"]["value"] == "Ava Rose"

    def test_mirror_failure_does_not_fail_update(self, profile, repository, sync_agent, record_store, active_user):
        record_store.raise_on("save_record", ConnectionError("offline"))

        async def _scenario():
            await profile.update(name="Ava Rose")
            return await sync_agent.drain()

        results = run(_scenario())
        assert results[0].status == "failed"
        assert repository.get(User, active_user.id).name == "Ava Rose"

    def test_rejects_non_editable_field(self, profile, active_user):
        with pytest.raises(ValueError, match="Not editable"):
            run(profile.update(id="someone-else"))

    def test_rejects_blank_name(self, profile, repository, active_user):
        with pytest.raises(ConstraintError):
            run(profile.update(name=" "))
        assert repository.get(User, active_user.id).name == "Ava"

    def test_requires_active_profile(self, profile):
        with pytest.raises(LookupError):
            run(profile.update(name="Ava"))


class TestDelete:
    def test_removes_profile_and_resets_onboarding(self, profile, repository, flags, audit_logger, active_user):
        repository.insert(MoodEntry(mood_rating=3, user_id=active_user.id))
        baby = repository.insert(make_baby(active_user.id))
        repository.save()
        flags.onboarding_completed = True

        changes = run(profile.delete())

        assert changes.deleted["User"] == 1
        assert changes.deleted["MoodEntry"] == 1
        assert profile.current() is None
        assert repository.count(MoodEntry) == 0
        assert repository.get(Baby, baby.id).user_id is None
        assert not flags.onboarding_completed

        event = audit_logger.get_events(action="data_delete")[0]
        assert event["entity_id"] == active_user.id
        assert event["metadata"]["records_deleted"] == 2

    def test_requires_active_profile(self, profile):
        with pytest.raises(LookupError):
            run(profile.delete())


def test_current(profile, active_user):
    assert profile.current().id == active_user.id
