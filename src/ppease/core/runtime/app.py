"""PostpartumEase core application factory.

``create_app()`` opens the on-device store and wires the repository, sync
agent, flags, event bus and services into one :class:`WellnessApp` that the
presentation layer holds for the lifetime of the process.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from ppease.core.audit.logger import AuditLogger
from ppease.core.config.settings import Settings, get_settings
from ppease.core.events.bus import EventBus
from ppease.core.storage.database import DatabaseError, WellnessDatabase
from ppease.core.storage.encryption import FieldEncryptor, load_or_create_key
from ppease.core.storage.flags import AppFlags
from ppease.core.storage.repository import WellnessRepository
from ppease.core.sync.agent import SyncAgent
from ppease.core.sync.client import RemoteRecordClient
from ppease.domains.postpartum.domain_logic.insights import WellnessInsights
from ppease.domains.postpartum.services.home import HomeService
from ppease.domains.postpartum.services.onboarding import OnboardingService
from ppease.domains.postpartum.services.profile import ProfileService
from ppease.domains.postpartum.services.tracking import TrackingService

logger = logging.getLogger(__name__)


@dataclass
class WellnessApp:
    """Everything the presentation layer talks to."""

    settings: Settings
    database: WellnessDatabase
    repository: WellnessRepository
    flags: AppFlags
    events: EventBus
    audit: AuditLogger
    sync_agent: SyncAgent
    onboarding: OnboardingService
    profile: ProfileService
    tracking: TrackingService
    home: HomeService
    insights: WellnessInsights

    def close(self) -> None:
        self.database.close()


def create_app(
    *,
    settings: Settings | None = None,
    remote_client_override: RemoteRecordClient | None = None,
) -> WellnessApp:
    """Create and wire the wellness core.

    This is the main application factory. It:
    1. Configures logging
    2. Opens (and migrates) the on-device SQLite store
    3. Loads or creates the field encryption key
    4. Creates the repository, flags, audit log and event bus
    5. Creates the sync agent (disabled when no remote store is provisioned)
    6. Creates the services

    Raises:
        DatabaseError: If the store cannot be opened. Nothing works without
            it, so this is fatal by intent.
    """
    settings = settings or get_settings()
    logging.basicConfig(level=getattr(logging, settings.ppe_log_level.upper(), logging.INFO))

    if settings.db_path == ":memory:":
        raise DatabaseError("The primary wellness store must be file-backed, not ':memory:'")

    # --- Encrypted on-device store ---
    key = settings.encryption_key or load_or_create_key(settings.key_path)
    encryptor = FieldEncryptor(key)

    database = WellnessDatabase(settings.db_path)
    database.initialize()
    logger.info(
        "Wellness store ready: %s (schema v%d)", settings.db_path, database.get_schema_version()
    )

    events = EventBus()
    repository = WellnessRepository(database, encryptor, events)
    flags = AppFlags(database)
    audit = AuditLogger(database)

    # --- Remote mirror ---
    remote_client: RemoteRecordClient | None = None
    if remote_client_override is not None:
        remote_client = remote_client_override
    elif settings.sync_enabled and settings.remote_store_url:
        from fastmcp import Client as MCPClient

        remote_client = RemoteRecordClient(MCPClient(settings.remote_store_url))
        logger.info("Remote mirror configured for %s", settings.remote_store_url)
    else:
        logger.info("No remote record store configured; profile changes stay on device")

    sync_agent = SyncAgent(remote_client, audit_logger=audit)

    # One writer at a time across every service that stages changes.
    write_lock = asyncio.Lock()

    return WellnessApp(
        settings=settings,
        database=database,
        repository=repository,
        flags=flags,
        events=events,
        audit=audit,
        sync_agent=sync_agent,
        onboarding=OnboardingService(repository, flags, sync_agent, events, lock=write_lock),
        profile=ProfileService(repository, flags, sync_agent, audit, lock=write_lock),
        tracking=TrackingService(repository, audit, lock=write_lock),
        home=HomeService(repository),
        insights=WellnessInsights(repository),
    )
