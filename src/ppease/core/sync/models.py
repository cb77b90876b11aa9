"""Wire shapes for the remote record store."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ppease.core.storage.models import User, as_utc

USER_RECORD_TYPE = "User"


@dataclass
class RemoteAsset:
    """A binary attachment uploaded from a file on disk."""

    file_path: Path

    def to_payload(self) -> dict[str, Any]:
        data = self.file_path.read_bytes()
        return {
            "filename": self.file_path.name,
            "size": len(data),
            "data_b64": base64.b64encode(data).decode("ascii"),
        }


@dataclass
class RemoteRecord:
    """One record in the remote store. ``fields`` map name -> (type, value)."""

    record_type: str
    record_name: str
    fields: dict[str, dict[str, Any]] = field(default_factory=dict)
    assets: dict[str, RemoteAsset] = field(default_factory=dict)

    def set_text(self, name: str, value: str) -> None:
        self.fields[name] = {"type": "text", "value": value}

    def set_timestamp(self, name: str, value) -> None:
        self.fields[name] = {"type": "timestamp", "value": as_utc(value).isoformat()}

    def to_payload(self) -> dict[str, Any]:
        return {
            "record_type": self.record_type,
            "record_name": self.record_name,
            "fields": self.fields,
            "assets": {name: asset.to_payload() for name, asset in self.assets.items()},
        }

    @classmethod
    def from_user(cls, user: User) -> RemoteRecord:
        """Scalar profile fields. The profile image is attached separately."""
        record = cls(record_type=USER_RECORD_TYPE, record_name=user.id)
        record.set_text("name", user.name)
        record.set_timestamp("birthDate", user.birth_date)
        record.set_timestamp("deliveryDate", user.delivery_date)
        if user.delivery_type is not None:
            record.set_text("deliveryType", user.delivery_type.token)
        return record


@dataclass
class SyncResult:
    """Outcome of one mirror attempt. Never raised, only returned."""

    status: str  # 'synced' | 'skipped' | 'failed'
    record_type: str
    record_name: str | None = None
    error_type: str | None = None
    message: str = ""
    duration_ms: float | None = None

    @property
    def ok(self) -> bool:
        return self.status == "synced"
