"""Persisted process-wide flags, stored beside the wellness data."""

from __future__ import annotations

import logging

from ppease.core.storage.database import WellnessDatabase

logger = logging.getLogger(__name__)

ONBOARDING_COMPLETED = "onboarding_completed"


class AppFlags:
    """Boolean flags that survive restart.

    Each write commits immediately, like the audit log.
    """

    def __init__(self, database: WellnessDatabase) -> None:
        self._db = database

    def get_bool(self, key: str, default: bool = False) -> bool:
        row = self._db.connection.execute(
            "SELECT value FROM app_flags WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return default
        return row["value"] == "1"

    def set_bool(self, key: str, value: bool) -> None:
        conn = self._db.connection
        conn.execute(
            """INSERT INTO app_flags (key, value, updated_at)
               VALUES (?, ?, datetime('now'))
               ON CONFLICT(key) DO UPDATE SET
                   value = excluded.value,
                   updated_at = excluded.updated_at""",
            (key, "1" if value else "0"),
        )
        conn.commit()
        logger.info("Flag %s set to %s", key, value)

    @property
    def onboarding_completed(self) -> bool:
        return self.get_bool(ONBOARDING_COMPLETED)

    @onboarding_completed.setter
    def onboarding_completed(self, value: bool) -> None:
        self.set_bool(ONBOARDING_COMPLETED, value)
