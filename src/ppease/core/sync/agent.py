"""Best-effort mirror of the local profile to the remote record store.

The local store stays authoritative. A mirror never raises: every failure
is logged, audited and returned as a ``SyncResult``, and the caller carries
on as if it had succeeded. There is no retry queue; a failed mirror is only
repeated when the triggering action happens again.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from ppease.core.storage.models import User
from ppease.core.sync.client import RemoteRecordClient, SyncError
from ppease.core.sync.models import USER_RECORD_TYPE, RemoteAsset, RemoteRecord, SyncResult

if TYPE_CHECKING:
    from ppease.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

PROFILE_IMAGE_ASSET = "profileImage"


@contextmanager
def staged_asset(data: bytes, *, directory: str | None = None) -> Iterator[Path]:
    """Write ``data`` to a uniquely named temporary file for the block's duration.

    The file is removed on exit whether or not the block raised.
    """
    path = Path(directory or tempfile.gettempdir()) / f"ppease-asset-{uuid.uuid4().hex}"
    try:
        path.write_bytes(data)
        yield path
    finally:
        path.unlink(missing_ok=True)


class SyncAgent:
    """Fire-and-forget replicator for profile writes.

    Usage::

        agent = SyncAgent(RemoteRecordClient(Client(url)), audit_logger=audit)
        result = await agent.mirror(user)      # never raises
        agent.mirror_in_background(user)       # returns the scheduled task
    """

    def __init__(
        self,
        client: RemoteRecordClient | None,
        *,
        audit_logger: AuditLogger | None = None,
        temp_dir: str | None = None,
    ) -> None:
        self._client = client
        self._audit = audit_logger
        self._temp_dir = temp_dir
        self._tasks: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def mirror(self, user: User) -> SyncResult:
        """Copy ``user`` to the remote store. Always returns, never raises."""
        start = time.monotonic()
        uploading = False

        if self._client is None:
            result = SyncResult(
                status="skipped",
                record_type=USER_RECORD_TYPE,
                record_name=user.id,
                error_type="RemoteUnavailableError",
                message="Remote record store is not provisioned",
            )
            logger.info("Mirror of user %s skipped: remote store not provisioned", user.id)
        else:
            try:
                async with self._client as client:
                    await client.ensure_available()
                    record = RemoteRecord.from_user(user)
                    uploading = True
                    await self._upload(client, record, user.profile_image)
            except SyncError as exc:
                logger.warning("Mirror of user %s failed (continuing anyway): %s", user.id, exc)
                result = self._failed(user, exc)
            except Exception as exc:
                logger.exception("Unexpected error mirroring user %s (continuing anyway)", user.id)
                result = self._failed(user, exc)
            else:
                result = SyncResult(
                    status="synced",
                    record_type=USER_RECORD_TYPE,
                    record_name=user.id,
                )
                logger.info("Mirrored user %s to remote record store", user.id)

        result.duration_ms = round((time.monotonic() - start) * 1000, 1)
        if self._audit is not None:
            self._audit.log_sync(
                result.record_type,
                result.record_name,
                status=_AUDIT_STATUS[result.status],
                remote_disclosed=uploading,
                duration_ms=result.duration_ms,
                error_type=result.error_type,
                metadata={"has_profile_image": user.profile_image is not None},
            )
        return result

    def mirror_in_background(self, user: User) -> asyncio.Task:
        """Schedule :meth:`mirror` on the running loop without awaiting it."""
        task = asyncio.get_running_loop().create_task(self.mirror(user))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> list[SyncResult]:
        """Wait for every background mirror still in flight."""
        if not self._tasks:
            return []
        return list(await asyncio.gather(*list(self._tasks)))

    async def _upload(
        self,
        client: RemoteRecordClient,
        record: RemoteRecord,
        image: bytes | None,
    ) -> None:
        if image is None:
            await client.save_record(record)
            return

        with staged_asset(image, directory=self._temp_dir) as path:
            record.assets[PROFILE_IMAGE_ASSET] = RemoteAsset(path)
            await client.save_record(record)

    @staticmethod
    def _failed(user: User, exc: Exception) -> SyncResult:
        return SyncResult(
            status="failed",
            record_type=USER_RECORD_TYPE,
            record_name=user.id,
            error_type=type(exc).__name__,
            message=str(exc),
        )


_AUDIT_STATUS = {"synced": "success", "failed": "failure", "skipped": "skipped"}
