"""Profile management for the active user."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from ppease.core.storage.flags import AppFlags
from ppease.core.storage.models import User
from ppease.core.storage.repository import ChangeSet, WellnessRepository
from ppease.core.sync.agent import SyncAgent

if TYPE_CHECKING:
    from ppease.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = frozenset({
    "name", "birth_date", "delivery_date", "delivery_type", "profile_image",
})


class ProfileService:
    """Reads, edits and deletes the active profile.

    Edits are mirrored to the remote store in the background; deleting the
    profile removes everything it owns and resets onboarding.
    """

    def __init__(
        self,
        repository: WellnessRepository,
        flags: AppFlags,
        sync_agent: SyncAgent,
        audit_logger: AuditLogger | None = None,
        *,
        lock: asyncio.Lock | None = None,
    ) -> None:
        self._repo = repository
        self._flags = flags
        self._sync = sync_agent
        self._audit = audit_logger
        self._lock = lock or asyncio.Lock()

    def current(self) -> User | None:
        return self._repo.active_user()

    async def update(self, **changes: Any) -> User:
        """Apply field changes to the active profile and commit them.

        Raises:
            LookupError: If there is no active profile.
            ValueError: If a field is not editable.
            ConstraintError: If the result violates a model rule.
            PersistenceError: If the commit fails.
        """
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Not editable: {sorted(unknown)}")

        async with self._lock:
            user = self._repo.active_user()
            if user is None:
                raise LookupError("No active profile")
            user = replace(user, **changes)
            self._repo.update(user)
            self._repo.save(discard_on_failure=True)

        self._sync.mirror_in_background(user)
        return user

    async def delete(self) -> ChangeSet:
        """Delete the active profile and everything it owns."""
        async with self._lock:
            user = self._repo.active_user()
            if user is None:
                raise LookupError("No active profile")
            self._repo.delete(user)
            changes = self._repo.save(discard_on_failure=True)
            self._flags.onboarding_completed = False

        if self._audit is not None:
            self._audit.log_data_delete("User", entity_id=user.id, count=changes.total)
        logger.warning("Profile %s deleted with %d owned record(s)", user.id, changes.total - 1)
        return changes
