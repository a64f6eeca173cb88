"""State consistency and cross-device sync for a link dashboard."""

from .config import Config, load_config
from .errors import (
    CorruptionError,
    LinkboardError,
    StorageError,
    StorageQuotaError,
    ValidationError,
)
from .state import StateStore
from .storage import StorageBackend, Tier
from .sync import ConflictStrategy, SyncCoordinator, SyncResult

__version__ = "0.1.0"

__all__ = [
    "Config",
    "ConflictStrategy",
    "CorruptionError",
    "LinkboardError",
    "StateStore",
    "StorageBackend",
    "StorageError",
    "StorageQuotaError",
    "SyncCoordinator",
    "SyncResult",
    "Tier",
    "ValidationError",
    "load_config",
]
