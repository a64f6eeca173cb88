"""Codec between application state and persisted tier records.

``links`` and ``categories`` are persisted as JSON text so every tier (and
later schema versions) can parse them defensively. Decoding never fails:
corrupted records are logged and replaced by defaults.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any

from ..errors import CorruptionError
from ..state.models import (
    DEFAULT_CATEGORY,
    PREFERENCE_KEYS,
    default_state,
    ensure_categories,
)
from ..state.validator import validate_category, validate_link, validate_state_changes

logger = logging.getLogger(__name__)

LINKS_KEY = "links"
CATEGORIES_KEY = "categories"
SYNC_METADATA_KEY = "sync_metadata"
DEVICE_ID_KEY = "device_id"
LAST_SYNC_TIME_KEY = "last_sync_time"

DATA_KEYS = (LINKS_KEY, CATEGORIES_KEY)
STATE_KEYS = DATA_KEYS + PREFERENCE_KEYS


def parse_json_list(key: str, raw: Any) -> list[Any] | None:
    """Parse a JSON-text list record.

    Args:
        key: Record name, for error messages.
        raw: Stored value. None means "no data yet".

    Returns:
        The parsed list, or None when ``raw`` is None.

    Raises:
        CorruptionError: If the value is not JSON text holding an array.
    """
    if raw is None:
        return None
    if isinstance(raw, list):
        # Written natively by an older version
        return raw
    if not isinstance(raw, str):
        raise CorruptionError(key, f"expected JSON text, got {type(raw).__name__}")

    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CorruptionError(key, f"invalid JSON ({e})") from e

    if not isinstance(value, list):
        raise CorruptionError(key, f"expected an array, got {type(value).__name__}")
    return value


def decode_links(raw: Any) -> list[dict[str, Any]]:
    """Decode the ``links`` record, dropping entries that fail validation."""
    try:
        links = parse_json_list(LINKS_KEY, raw)
    except CorruptionError as e:
        logger.warning(f"{e}; using no links")
        return []

    if links is None:
        return []

    valid = []
    for index, link in enumerate(links):
        result = validate_link(link)
        if result.valid:
            valid.append(dict(link))
        else:
            logger.warning(f"Dropping stored link {index}: {', '.join(result.errors)}")
    return valid


def decode_categories(raw: Any, links: list[dict[str, Any]] | None = None) -> list[str]:
    """Decode the ``categories`` record.

    The result always contains ``Default`` and every category referenced by
    ``links``.
    """
    try:
        categories = parse_json_list(CATEGORIES_KEY, raw)
    except CorruptionError as e:
        logger.warning(f"{e}; using default categories")
        categories = None

    if categories is None:
        categories = [DEFAULT_CATEGORY]

    cleaned = [c for c in categories if validate_category(c).valid]
    return ensure_categories(cleaned, links or [])


def decode_state(items: Mapping[str, Any]) -> dict[str, Any]:
    """Build a complete state from a tier's records.

    Missing or invalid preferences fall back to their defaults.
    """
    state = default_state()
    state["links"] = decode_links(items.get(LINKS_KEY))
    state["categories"] = decode_categories(items.get(CATEGORIES_KEY), state["links"])

    for key in PREFERENCE_KEYS:
        if key not in items:
            continue
        value = items[key]
        if validate_state_changes({key: value}).valid:
            state[key] = value
        else:
            logger.warning(f"Ignoring invalid stored preference {key}={value!r}")

    return state


def has_state(items: Mapping[str, Any]) -> bool:
    """True if a tier holds any state record."""
    return any(items.get(key) is not None for key in STATE_KEYS)


def encode_payload(links: list[Any], categories: list[Any]) -> dict[str, str]:
    """Serialize the synchronized data records."""
    return {
        LINKS_KEY: json.dumps(links, separators=(",", ":")),
        CATEGORIES_KEY: json.dumps(categories, separators=(",", ":")),
    }


def encode_state(state: Mapping[str, Any]) -> dict[str, Any]:
    """Serialize a state into the records a tier stores."""
    records: dict[str, Any] = encode_payload(
        list(state.get("links") or []),
        list(state.get("categories") or [DEFAULT_CATEGORY]),
    )
    for key in PREFERENCE_KEYS:
        if key in state:
            records[key] = state[key]
    return records
