"""Wellness insights computed from the user's stored entries.

Summarizes mood and recovery trends, self-care habits and medication
adherence, and derives the postpartum day count and recovery milestones.
"""

from __future__ import annotations

import logging
import statistics
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from ppease.core.storage.models import (
    Medication,
    MoodEntry,
    RecoveryEntry,
    SelfCareActivity,
    User,
    as_utc,
    utcnow,
)
from ppease.core.storage.repository import WellnessRepository

logger = logging.getLogger(__name__)

_MOOD_DESCRIPTIONS = {
    1: "Very Low",
    2: "Low",
    3: "Neutral",
    4: "Good",
    5: "Excellent",
}

# (days postpartum, title)
MILESTONES: tuple[tuple[int, str], ...] = (
    (7, "First Week Complete"),
    (14, "Two Weeks Milestone"),
    (30, "One Month Achievement"),
    (42, "Six Weeks Recovery"),
    (60, "Two Months Journey"),
)


@dataclass(frozen=True)
class RecoveryMilestone:
    title: str
    day: int
    completed: bool


def mood_description(rating: int | None) -> str:
    return _MOOD_DESCRIPTIONS.get(rating, "Unknown")


def days_postpartum(user: User | None, now: datetime | None = None) -> int:
    """Whole days since delivery. Zero without a profile or before the due date."""
    if user is None:
        return 0
    elapsed = as_utc(now or utcnow()) - user.delivery_date
    return max(elapsed.days, 0)


def recovery_milestones(days: int) -> list[RecoveryMilestone]:
    return [
        RecoveryMilestone(title=title, day=day, completed=days >= day)
        for day, title in MILESTONES
    ]


def _direction(values: list[float], threshold: float) -> str:
    """Trend of a newest-first series: compare the recent half with the older half."""
    if len(values) >= 4:
        mid = len(values) // 2
        diff = statistics.mean(values[:mid]) - statistics.mean(values[mid:])
    elif len(values) >= 2:
        diff = values[0] - values[-1]
    else:
        return "insufficient_data"
    if diff > threshold:
        return "rising"
    if diff < -threshold:
        return "falling"
    return "stable"


def _mean(values: list[int | float | None]) -> float | None:
    present = [v for v in values if v is not None]
    return round(statistics.mean(present), 2) if present else None


class WellnessInsights:
    """Computes summaries from the active user's tracked history.

    Usage::

        insights = WellnessInsights(repository)
        mood = insights.mood_summary(days=14)
        adherence = insights.medication_adherence()
    """

    def __init__(self, repository: WellnessRepository) -> None:
        self._repo = repository

    def _window(self, entry_type: type, sort_by: str, days: int, now: datetime | None) -> list[Any]:
        user = self._repo.active_user()
        if user is None:
            return []
        since = as_utc(now or utcnow()) - timedelta(days=days)
        entries = self._repo.fetch(
            entry_type, sort_by=sort_by, descending=True, filters={"user_id": user.id}
        )
        return [e for e in entries if getattr(e, sort_by) >= since]

    def mood_summary(self, *, days: int = 30, now: datetime | None = None) -> dict[str, Any]:
        """Mood statistics over the last ``days`` days.

        Returns:
            Dict with: entries, current, mean, direction, description,
            top_symptoms (known symptoms only), mean_anxiety, mean_sleep_quality.
        """
        entries = self._window(MoodEntry, "date", days, now)
        if not entries:
            return {"entries": 0, "status": "no_data"}

        ratings = [e.mood_rating for e in entries]
        symptom_counts = Counter(
            symptom.token for e in entries for symptom in e.known_symptoms()
        )
        mean = round(statistics.mean(ratings), 2)
        return {
            "entries": len(entries),
            "current": ratings[0],
            "mean": mean,
            "direction": _direction(ratings, 0.5),
            "description": mood_description(round(mean)),
            "top_symptoms": [name for name, _ in symptom_counts.most_common(3)],
            "mean_anxiety": _mean([e.anxiety for e in entries]),
            "mean_sleep_quality": _mean([e.sleep_quality for e in entries]),
        }

    def recovery_summary(self, *, days: int = 30, now: datetime | None = None) -> dict[str, Any]:
        """Pain trend and latest bleeding level over the last ``days`` days.

        A falling pain direction means recovery is progressing.
        """
        entries = self._window(RecoveryEntry, "date", days, now)
        if not entries:
            return {"entries": 0, "status": "no_data"}

        pain = [e.pain_level for e in entries if e.pain_level is not None]
        bleeding = next((e.bleeding for e in entries if e.bleeding is not None), None)
        symptom_counts = Counter(s.token for e in entries for s in e.symptoms)
        return {
            "entries": len(entries),
            "current_pain": pain[0] if pain else None,
            "mean_pain": _mean(pain),
            "pain_direction": _direction(pain, 0.5) if pain else "insufficient_data",
            "latest_bleeding": bleeding.token if bleeding is not None else None,
            "top_symptoms": [name for name, _ in symptom_counts.most_common(3)],
        }

    def self_care_summary(self, *, days: int = 7, now: datetime | None = None) -> dict[str, Any]:
        """Sessions and minutes per activity type over the last ``days`` days."""
        activities = self._window(SelfCareActivity, "start_time", days, now)
        by_type: dict[str, dict[str, float]] = {}
        for activity in activities:
            totals = by_type.setdefault(activity.type.token, {"sessions": 0, "minutes": 0.0})
            totals["sessions"] += 1
            totals["minutes"] += activity.duration / 60
        for totals in by_type.values():
            totals["minutes"] = round(totals["minutes"], 1)
        return {
            "sessions": len(activities),
            "total_minutes": round(sum(a.duration for a in activities) / 60, 1),
            "by_type": by_type,
        }

    def medication_adherence(self, *, now: datetime | None = None) -> list[dict[str, Any]]:
        """Taken / skipped / missed doses per medication, for doses already due.

        Doses scheduled in the future are not counted. ``adherence`` is the
        share of due doses that were taken, or None when nothing is due yet.
        """
        user = self._repo.active_user()
        if user is None:
            return []
        now = as_utc(now or utcnow())

        report = []
        for medication in self._repo.fetch(
            Medication, sort_by="start_date", filters={"user_id": user.id}
        ):
            due = [log for log in medication.logs if log.scheduled_time <= now]
            taken = sum(1 for log in due if log.taken)
            skipped = sum(1 for log in due if log.skipped)
            report.append({
                "medication": medication.name,
                "active": medication.is_active(now),
                "due": len(due),
                "taken": taken,
                "skipped": skipped,
                "missed": len(due) - taken - skipped,
                "adherence": round(taken / len(due), 2) if due else None,
            })
        return report

    def overview(self, *, now: datetime | None = None) -> dict[str, Any]:
        """Everything above in one dict, plus the postpartum day count."""
        days = days_postpartum(self._repo.active_user(), now)
        return {
            "days_postpartum": days,
            "milestones_reached": sum(1 for m in recovery_milestones(days) if m.completed),
            "mood": self.mood_summary(now=now),
            "recovery": self.recovery_summary(now=now),
            "self_care": self.self_care_summary(now=now),
            "medications": self.medication_adherence(now=now),
        }
