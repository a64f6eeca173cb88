"""Cross-device synchronization between the local and shared tiers."""

from .coordinator import (
    MetadataUpdateResult,
    SyncCoordinator,
    SyncEvent,
    SyncResult,
    SyncStatus,
)
from .merge import (
    ConflictStrategy,
    merge_categories,
    merge_data,
    merge_links,
    resolve_conflict,
    validate_sync_data,
)
from .metadata import (
    UNKNOWN_DEVICE_ID,
    SyncMetadata,
    TierMetadata,
    generate_device_id,
    now_ms,
)

__all__ = [
    "ConflictStrategy",
    "MetadataUpdateResult",
    "SyncCoordinator",
    "SyncEvent",
    "SyncMetadata",
    "SyncResult",
    "SyncStatus",
    "TierMetadata",
    "UNKNOWN_DEVICE_ID",
    "generate_device_id",
    "merge_categories",
    "merge_data",
    "merge_links",
    "now_ms",
    "resolve_conflict",
    "validate_sync_data",
]
