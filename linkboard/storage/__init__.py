"""Storage tiers for the device-local and shared stores."""

from .base import (
    MAX_ITEMS,
    QUOTA_BYTES,
    QUOTA_BYTES_PER_ITEM,
    QuotaPolicy,
    StorageBackend,
    StorageTier,
    Tier,
    item_size,
)
from .http import HttpTier
from .memory import MemoryTier
from .sqlite import SQLiteTier

__all__ = [
    "HttpTier",
    "MAX_ITEMS",
    "MemoryTier",
    "QUOTA_BYTES",
    "QUOTA_BYTES_PER_ITEM",
    "QuotaPolicy",
    "SQLiteTier",
    "StorageBackend",
    "StorageTier",
    "Tier",
    "item_size",
]
