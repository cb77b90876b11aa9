"""Shared test fixtures for PostpartumEase core tests."""

from __future__ import annotations

import asyncio
import json
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from ppease.core.storage.models import Baby, User  # noqa: E402
from ppease.core.storage.vocabulary import DeliveryType, Gender  # noqa: E402

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

_SETTINGS_ENV = (
    "PPE_LOG_LEVEL", "DB_PATH", "ENCRYPTION_KEY", "KEY_PATH",
    "REMOTE_STORE_URL", "SYNC_ENABLED",
)


@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)


def run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_user(**overrides: Any) -> User:
    defaults: dict[str, Any] = dict(
        name="Ava",
        birth_date=datetime(1994, 5, 2, tzinfo=timezone.utc),
        delivery_date=NOW - timedelta(days=10),
        delivery_type=DeliveryType.VAGINAL,
    )
    defaults.update(overrides)
    return User(**defaults)


def make_baby(user_id: str | None = None, **overrides: Any) -> Baby:
    defaults: dict[str, Any] = dict(
        name="Noor",
        birth_date=NOW - timedelta(days=10),
        gender=Gender.FEMALE,
        birth_weight=3.4,
        birth_length=50.0,
        user_id=user_id,
    )
    defaults.update(overrides)
    return Baby(**defaults)


# ---------------------------------------------------------------------------
# Fake remote record store (stands in for fastmcp.Client)
# ---------------------------------------------------------------------------

@dataclass
class _TextBlock:
    """Mimics fastmcp content block structure."""

    type: str
    text: str


class FakeRecordStore:
    """Fake fastmcp.Client serving ``account_status`` and ``save_record``.

    ``watch_dir`` lets a test see which files existed in the staging
    directory while ``save_record`` was being handled.
    """

    def __init__(self, *, status: str = "available", watch_dir: Path | None = None) -> None:
        self.status = status
        self.watch_dir = watch_dir
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.records: dict[str, dict[str, Any]] = {}
        self.files_during_save: list[str] = []
        self.save_response: dict[str, Any] = {"status": "ok"}
        self.connect_error: Exception | None = None
        self._raise_on: dict[str, Exception] = {}
        self.entered = 0

    def raise_on(self, tool_name: str, exc: Exception) -> None:
        self._raise_on[tool_name] = exc

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> list[Any]:
        self.calls.append((tool_name, arguments))
        if tool_name == "save_record" and self.watch_dir is not None:
            self.files_during_save = sorted(os.listdir(self.watch_dir))
        if tool_name in self._raise_on:
            raise self._raise_on[tool_name]

        if tool_name == "account_status":
            payload: dict[str, Any] = {"status": self.status}
        elif tool_name == "save_record":
            payload = self.save_response
            if payload and payload.get("status") == "ok":
                self.records[arguments["record_name"]] = arguments
        else:
            payload = {"status": "error", "error": f"Unknown tool: {tool_name}"}
        return [_TextBlock(type="text", text=json.dumps(payload))]

    async def __aenter__(self):
        if self.connect_error is not None:
            raise self.connect_error
        self.entered += 1
        return self

    async def __aexit__(self, *args):
        pass


@pytest.fixture
def record_store(tmp_path: Path) -> FakeRecordStore:
    staging = tmp_path / "staging"
    staging.mkdir()
    return FakeRecordStore(watch_dir=staging)


@pytest.fixture
def remote_client(record_store: FakeRecordStore):
    from ppease.core.sync.client import RemoteRecordClient

    return RemoteRecordClient(record_store)


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def wellness_db():
    """Create an in-memory WellnessDatabase for testing."""
    from ppease.core.storage.database import WellnessDatabase

    db = WellnessDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from ppease.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def event_bus():
    from ppease.core.events.bus import EventBus

    return EventBus()


@pytest.fixture
def repository(wellness_db, field_encryptor, event_bus):
    """Create a WellnessRepository backed by in-memory SQLite."""
    from ppease.core.storage.repository import WellnessRepository

    return WellnessRepository(wellness_db, field_encryptor, event_bus)


@pytest.fixture
def flags(wellness_db):
    from ppease.core.storage.flags import AppFlags

    return AppFlags(wellness_db)


@pytest.fixture
def audit_logger(wellness_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from ppease.core.audit.logger import AuditLogger

    return AuditLogger(wellness_db)


@pytest.fixture
def sync_agent(remote_client, audit_logger, record_store):
    from ppease.core.sync.agent import SyncAgent

    return SyncAgent(remote_client, audit_logger=audit_logger, temp_dir=str(record_store.watch_dir))


@pytest.fixture
def active_user(repository):
    """A committed user set as the active profile."""
    user = repository.insert(make_user())
    repository.set_active_user(user)
    repository.save()
    return user
