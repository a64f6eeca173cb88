"""Per-tier sync metadata and device identity."""

import secrets
import string
import time
from dataclasses import dataclass
from typing import Any

UNKNOWN_DEVICE_ID = "unknown_device"

_BASE36 = string.digits + string.ascii_lowercase


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_device_id(timestamp_ms: int | None = None) -> str:
    """Create a collision-resistant device id: ``device_<ms>_<9 base-36 chars>``."""
    ts = now_ms() if timestamp_ms is None else timestamp_ms
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"device_{ts}_{suffix}"


@dataclass
class SyncMetadata:
    """Version stamp stored next to the data it describes in each tier."""

    version: int = 0
    last_modified: int = 0  # epoch milliseconds
    device_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "version": self.version,
            "last_modified": self.last_modified,
            "device_id": self.device_id,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "SyncMetadata":
        """Create from a stored value. Missing or malformed fields read as 0."""
        if not isinstance(data, dict):
            return cls()

        def as_int(value: Any) -> int:
            if isinstance(value, bool):
                return 0
            try:
                return max(int(value), 0)
            except (TypeError, ValueError):
                return 0

        device_id = data.get("device_id")
        return cls(
            version=as_int(data.get("version")),
            last_modified=as_int(data.get("last_modified")),
            device_id=device_id if isinstance(device_id, str) else None,
        )


@dataclass
class TierMetadata:
    """Metadata of both tiers, read together."""

    local: SyncMetadata
    remote: SyncMetadata

    @property
    def in_sync(self) -> bool:
        return self.local.version == self.remote.version

    def to_dict(self) -> dict[str, Any]:
        return {"local": self.local.to_dict(), "remote": self.remote.to_dict()}
