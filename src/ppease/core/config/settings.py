"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """PostpartumEase core configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    ppe_log_level: str = "info"

    # Storage (primary on-device store). Must be a file path; the app
    # factory refuses ":memory:".
    db_path: str = "~/.ppease/wellness.db"

    # Encryption. When no key is given one is generated into key_path on
    # first start and reused afterwards.
    encryption_key: str = ""
    key_path: str = "~/.ppease/store.key"

    # Remote record store (best-effort mirror). Empty URL means the device
    # is not provisioned for sync.
    remote_store_url: str = ""
    sync_enabled: bool = True


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
