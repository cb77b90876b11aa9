"""Onboarding: creates the parent profile (and baby) in one unit of work."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from ppease.core.events.bus import ONBOARDING_COMPLETED, EventBus
from ppease.core.storage.flags import AppFlags
from ppease.core.storage.models import Baby, User, as_utc, utcnow
from ppease.core.storage.repository import WellnessRepository
from ppease.core.storage.vocabulary import DeliveryType, Gender
from ppease.core.sync.agent import SyncAgent
from ppease.core.sync.models import SyncResult

logger = logging.getLogger(__name__)


class OnboardingError(Exception):
    """Raised when the onboarding form is invalid or onboarding already ran."""


@dataclass
class OnboardingForm:
    """What the onboarding flow collects.

    When the baby is not born yet, ``delivery_date`` is the due date and the
    baby fields are ignored.
    """

    name: str
    birth_date: datetime
    delivery_date: datetime
    delivery_type: DeliveryType = DeliveryType.VAGINAL
    profile_image: bytes | None = None
    is_baby_born: bool = False
    baby_name: str = ""
    baby_birth_date: datetime | None = None
    baby_gender: Gender = Gender.MALE
    baby_birth_weight: float | None = None
    baby_birth_length: float | None = None

    def profile_problems(self, now: datetime) -> list[str]:
        problems = []
        if not self.name.strip():
            problems.append("name is required")
        if as_utc(self.birth_date) >= now:
            problems.append("birth date must be in the past")
        return problems

    def delivery_problems(self, now: datetime) -> list[str]:
        problems = []
        if self.is_baby_born:
            if not self.baby_name.strip():
                problems.append("baby name is required")
            if self.baby_birth_date is None or as_utc(self.baby_birth_date) > now:
                problems.append("baby birth date must not be in the future")
            if self.baby_birth_weight is not None and self.baby_birth_weight <= 0:
                problems.append("birth weight must be positive")
            if self.baby_birth_length is not None and self.baby_birth_length <= 0:
                problems.append("birth length must be positive")
        elif as_utc(self.delivery_date) <= now:
            problems.append("due date must be in the future")
        return problems


@dataclass
class OnboardingResult:
    user: User
    baby: Baby | None
    sync: SyncResult


class OnboardingService:
    """Completes onboarding.

    Order of effects: local commit, remote mirror (best effort), the
    persisted ``onboarding_completed`` flag, then exactly one
    ``onboarding_completed`` broadcast.
    """

    def __init__(
        self,
        repository: WellnessRepository,
        flags: AppFlags,
        sync_agent: SyncAgent,
        events: EventBus,
        *,
        lock: asyncio.Lock | None = None,
    ) -> None:
        self._repo = repository
        self._flags = flags
        self._sync = sync_agent
        self._events = events
        self._lock = lock or asyncio.Lock()

    @property
    def is_completed(self) -> bool:
        return self._flags.onboarding_completed

    async def complete(self, form: OnboardingForm) -> OnboardingResult:
        """Persist the profile, mirror it, and mark onboarding complete.

        Raises:
            OnboardingError: If the form is invalid or onboarding already ran.
            PersistenceError: If the local commit fails. Nothing is flagged
                or broadcast in that case.
        """
        async with self._lock:
            if self._flags.onboarding_completed:
                raise OnboardingError("Onboarding has already been completed")

            problems = form.profile_problems(utcnow()) + form.delivery_problems(utcnow())
            if problems:
                raise OnboardingError("Invalid onboarding form: " + "; ".join(problems))

            user = User(
                name=form.name.strip(),
                birth_date=form.birth_date,
                delivery_date=form.baby_birth_date if form.is_baby_born else form.delivery_date,
                delivery_type=form.delivery_type if form.is_baby_born else None,
                profile_image=form.profile_image,
            )
            self._repo.insert(user)

            baby = None
            if form.is_baby_born:
                baby = Baby(
                    name=form.baby_name.strip(),
                    birth_date=form.baby_birth_date,
                    gender=form.baby_gender,
                    birth_weight=form.baby_birth_weight,
                    birth_length=form.baby_birth_length,
                    user_id=user.id,
                )
                self._repo.insert(baby)

            self._repo.set_active_user(user)
            # A retry resubmits the whole form.
            self._repo.save(discard_on_failure=True)

            sync = await self._sync.mirror(user)

            self._flags.onboarding_completed = True
            self._events.publish(ONBOARDING_COMPLETED)
            logger.info(
                "Onboarding completed for user %s (baby=%s, sync=%s)",
                user.id, baby is not None, sync.status,
            )
            return OnboardingResult(user=user, baby=baby, sync=sync)
