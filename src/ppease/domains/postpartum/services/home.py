"""Home screen snapshot: the profile, latest entries and recovery progress."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ppease.core.storage.models import (
    JournalEntry,
    MoodEntry,
    RecoveryEntry,
    SelfCareActivity,
    User,
    as_utc,
    utcnow,
)
from ppease.core.storage.repository import WellnessRepository
from ppease.domains.postpartum.domain_logic.insights import (
    RecoveryMilestone,
    days_postpartum,
    mood_description,
    recovery_milestones,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecentActivity:
    kind: str            # 'mood' | 'recovery' | 'self_care' | 'journal'
    title: str
    timestamp: datetime
    entity_id: str


@dataclass
class HomeSnapshot:
    generation: int
    user: User | None = None
    latest_mood: MoodEntry | None = None
    latest_recovery: RecoveryEntry | None = None
    latest_self_care: SelfCareActivity | None = None
    days_postpartum: int = 0
    milestones: list[RecoveryMilestone] = field(default_factory=list)
    recent_activity: list[RecentActivity] = field(default_factory=list)


class HomeService:
    """Builds the home snapshot.

    Each refresh is numbered. A result is only published as ``current``
    when no later refresh has started in the meantime, so an older refresh
    that finishes last cannot overwrite a newer snapshot.
    """

    def __init__(
        self,
        repository: WellnessRepository,
        *,
        recent_window: timedelta = timedelta(days=7),
        recent_limit: int = 10,
    ) -> None:
        self._repo = repository
        self._recent_window = recent_window
        self._recent_limit = recent_limit
        self._generation = 0
        self._current: HomeSnapshot | None = None

    @property
    def current(self) -> HomeSnapshot | None:
        return self._current

    async def refresh(self, now: datetime | None = None) -> HomeSnapshot:
        """Rebuild the snapshot. Returns it even if a newer refresh superseded it."""
        self._generation += 1
        generation = self._generation
        snapshot = await self._build(generation, as_utc(now or utcnow()))

        if generation == self._generation:
            self._current = snapshot
        else:
            logger.debug("Discarding home snapshot %d; %d is newer", generation, self._generation)
        return snapshot

    async def _build(self, generation: int, now: datetime) -> HomeSnapshot:
        user = self._repo.active_user()
        if user is None:
            return HomeSnapshot(generation=generation)
        # Yield so input handling is not blocked behind the entry queries.
        await asyncio.sleep(0)

        owned = {"user_id": user.id}
        days = days_postpartum(user, now)
        return HomeSnapshot(
            generation=generation,
            user=user,
            latest_mood=self._repo.latest(MoodEntry, filters=owned),
            latest_recovery=self._repo.latest(RecoveryEntry, filters=owned),
            latest_self_care=self._repo.latest(SelfCareActivity, filters=owned),
            days_postpartum=days,
            milestones=recovery_milestones(days),
            recent_activity=self._recent_activity(user, now),
        )

    def _recent_activity(self, user: User, now: datetime) -> list[RecentActivity]:
        since = now - self._recent_window
        limit = self._recent_limit
        owned = {"user_id": user.id}
        feed: list[RecentActivity] = []

        for entry in self._repo.fetch(MoodEntry, sort_by="date", descending=True, limit=limit, filters=owned):
            feed.append(RecentActivity(
                "mood", f"Mood: {mood_description(entry.mood_rating)}", entry.date, entry.id,
            ))
        for entry in self._repo.fetch(RecoveryEntry, sort_by="date", descending=True, limit=limit, filters=owned):
            title = "Recovery check-in"
            if entry.pain_level is not None:
                title += f" (pain {entry.pain_level}/10)"
            feed.append(RecentActivity("recovery", title, entry.date, entry.id))
        for entry in self._repo.fetch(
            SelfCareActivity, sort_by="start_time", descending=True, limit=limit, filters=owned
        ):
            minutes = round(entry.duration / 60)
            feed.append(RecentActivity(
                "self_care", f"{entry.type.token} ({minutes} min)", entry.start_time, entry.id,
            ))
        for entry in self._repo.fetch(JournalEntry, sort_by="date", descending=True, limit=limit, filters=owned):
            feed.append(RecentActivity("journal", "Journal entry", entry.date, entry.id))

        feed = [item for item in feed if since <= item.timestamp <= now]
        feed.sort(key=lambda item: item.timestamp, reverse=True)
        return feed[:limit]
