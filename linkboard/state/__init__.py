"""Application state: records, validation, and the authoritative store."""

from .models import DEFAULT_CATEGORY, default_state, link_key, normalize_url
from .store import HistoryEntry, RollbackResult, StateStore, UpdateResult
from .validator import (
    ValidationResult,
    validate_categories,
    validate_category,
    validate_link,
    validate_links,
    validate_state,
    validate_state_changes,
)

__all__ = [
    "DEFAULT_CATEGORY",
    "HistoryEntry",
    "RollbackResult",
    "StateStore",
    "UpdateResult",
    "ValidationResult",
    "default_state",
    "link_key",
    "normalize_url",
    "validate_categories",
    "validate_category",
    "validate_link",
    "validate_links",
    "validate_state",
    "validate_state_changes",
]
