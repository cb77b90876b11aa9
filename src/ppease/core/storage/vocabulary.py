"""Closed vocabularies used by the wellness entities.

Each case persists as a stable string token (the enum value). Tokens written
by a newer or older build may not be known to this one, so decoding is
tolerant: sets drop unknown tokens, optional fields fall back to ``None``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum

logger = logging.getLogger(__name__)


class UnknownVariantError(ValueError):
    """Raised when a persisted token matches no case of its vocabulary."""

    def __init__(self, vocabulary: str, token: str) -> None:
        super().__init__(f"Unknown {vocabulary} token: {token!r}")
        self.vocabulary = vocabulary
        self.token = token


class Vocabulary(str, Enum):
    """Base for token-backed enums."""

    @property
    def token(self) -> str:
        return self.value

    @classmethod
    def from_token(cls, token: str):
        try:
            return cls(token)
        except ValueError:
            raise UnknownVariantError(cls.__name__, token) from None

    @classmethod
    def decode_optional(cls, token: str | None):
        """Decode a nullable token; unknown tokens become ``None``."""
        if token is None:
            return None
        try:
            return cls.from_token(token)
        except UnknownVariantError as exc:
            logger.warning("%s; treating as absent", exc)
            return None

    @classmethod
    def decode_set(cls, tokens: Iterable[str]) -> set:
        """Decode a token collection, dropping tokens this build does not know."""
        members = set()
        for token in tokens:
            try:
                members.add(cls.from_token(token))
            except UnknownVariantError as exc:
                logger.warning("%s; dropped", exc)
        return members

    @staticmethod
    def encode_set(members: Iterable[Vocabulary]) -> list[str]:
        return sorted(m.token for m in members)


class PostpartumSymptom(Vocabulary):
    SADNESS = "Feeling Sad"
    ANXIETY = "Anxiety"
    OVERWHELMED = "Feeling Overwhelmed"
    CRYING = "Crying Spells"
    IRRITABILITY = "Irritability"
    SLEEP_ISSUES = "Sleep Problems"
    APPETITE_CHANGES = "Appetite Changes"
    CONCENTRATION = "Difficulty Concentrating"
    WORTHLESSNESS = "Feelings of Worthlessness"
    DISCONNECTED = "Feeling Disconnected"


class PhysicalSymptom(Vocabulary):
    INCISION_PAIN = "Incision Pain"
    BREAST_PAIN = "Breast Pain"
    CRAMPING = "Cramping"
    BACK_PAIN = "Back Pain"
    PELVIC_PAIN = "Pelvic Pain"
    HEADACHE = "Headache"
    SWELLING = "Swelling"
    FATIGUE = "Fatigue"
    CONSTIPATION = "Constipation"
    HEMORRHOIDS = "Hemorrhoids"


class BleedingLevel(Vocabulary):
    NONE = "None"
    LIGHT = "Light"
    MODERATE = "Moderate"
    HEAVY = "Heavy"


class ActivityType(Vocabulary):
    MEDITATION = "Meditation"
    EXERCISE = "Exercise"
    SHOWER = "Shower"
    NAP = "Nap"
    READING = "Reading"
    OUTDOORS = "Time Outdoors"
    HOBBY = "Hobby"
    SOCIALIZING = "Socializing"
    PELVIC_FLOOR = "Pelvic Floor Exercise"
    BREATHING = "Breathing Exercise"


class FrequencyType(Vocabulary):
    DAILY = "Daily"
    WEEKLY = "Weekly"
    AS_NEEDED = "As Needed"
    CUSTOM = "Custom"


class TimeOfDay(Vocabulary):
    MORNING = "Morning"
    AFTERNOON = "Afternoon"
    EVENING = "Evening"
    BEDTIME = "Bedtime"

    @property
    def default_hour(self) -> int:
        """Local hour at which a dose for this slot is scheduled by default."""
        return _DEFAULT_HOURS[self]


_DEFAULT_HOURS = {
    TimeOfDay.MORNING: 8,
    TimeOfDay.AFTERNOON: 13,
    TimeOfDay.EVENING: 18,
    TimeOfDay.BEDTIME: 22,
}


class JournalTag(Vocabulary):
    MILESTONE = "Milestone"
    GRATITUDE = "Gratitude"
    CHALLENGE = "Challenge"
    VICTORY = "Victory"
    REFLECTION = "Reflection"
    GOAL = "Goal"
    MEMORY = "Memory"
    SUPPORT = "Support"


class DeliveryType(Vocabulary):
    VAGINAL = "Vaginal Birth"
    CESAREAN = "C-Section"


class Gender(Vocabulary):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"
