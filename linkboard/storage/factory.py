"""Build the storage backend described by configuration."""

import logging

from ..config import StorageConfig
from .base import QuotaPolicy, StorageBackend, StorageTier, Tier
from .http import HttpTier
from .memory import MemoryTier
from .sqlite import SQLiteTier

logger = logging.getLogger(__name__)


def shared_quota(config: StorageConfig) -> QuotaPolicy:
    return QuotaPolicy(
        quota_bytes=config.quota_bytes,
        quota_bytes_per_item=config.quota_bytes_per_item,
        max_items=config.max_items,
    )


def create_shared_tier(config: StorageConfig) -> StorageTier:
    """Create the shared tier selected by ``config.shared_backend``.

    Raises:
        ValueError: If the backend name is unknown.
    """
    quota = shared_quota(config)
    name = Tier.SHARED.value

    if config.shared_backend == "memory":
        return MemoryTier(name, quota=quota)
    if config.shared_backend == "sqlite":
        return SQLiteTier(name, config.shared_db_path, namespace=config.namespace, quota=quota)
    if config.shared_backend == "http":
        return HttpTier(
            name,
            config.shared_url,
            config.namespace,
            quota=quota,
            timeout=config.request_timeout_seconds,
            max_retries=config.retry_max_attempts,
        )
    raise ValueError(f"Unknown shared backend: {config.shared_backend}")


def create_backend(config: StorageConfig) -> StorageBackend:
    """Create the local SQLite tier and the configured shared tier."""
    local = SQLiteTier(Tier.LOCAL.value, config.local_db_path)
    shared = create_shared_tier(config)
    logger.info(
        f"Storage: local={config.local_db_path}, shared={config.shared_backend}"
    )
    return StorageBackend(local=local, shared=shared)
