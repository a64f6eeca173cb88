"""Conflict resolution and payload validation for sync.

A payload is the pair of persisted records ``{"links": <JSON text>,
"categories": <JSON text>}`` as read from a tier.
"""

import json
import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any

from ..errors import CorruptionError
from ..state.models import DEFAULT_CATEGORY, ensure_categories, link_key
from ..state.validator import ValidationResult, validate_category, validate_link
from ..storage.records import (
    CATEGORIES_KEY,
    DATA_KEYS,
    LINKS_KEY,
    encode_payload,
    parse_json_list,
)
from .metadata import TierMetadata

logger = logging.getLogger(__name__)


class ConflictStrategy(str, Enum):
    """How divergent tiers are reconciled."""

    LOCAL = "local"  # local payload wins verbatim
    REMOTE = "remote"  # remote payload wins verbatim
    MERGE = "merge"  # union by URL, newest copy of each link wins


def _winner(data: Mapping[str, Any]) -> dict[str, Any]:
    """Data records of the side that wins outright.

    A side holding only one record gets the other written as its default, so
    the losing tier is overwritten. A side with neither gives ``{}``.
    """
    if all(data.get(key) is None for key in DATA_KEYS):
        return {}

    defaults = encode_payload([], [DEFAULT_CATEGORY])
    return {
        key: data[key] if data.get(key) is not None else defaults[key]
        for key in DATA_KEYS
    }


def _read_list(key: str, data: Mapping[str, Any]) -> list[Any]:
    try:
        return parse_json_list(key, data.get(key)) or []
    except CorruptionError as e:
        logger.warning(f"{e}; treating as empty during merge")
        return []


def _canonical(link: Any) -> str:
    return json.dumps(link, sort_keys=True, default=str)


def _timestamp(link: Mapping[str, Any], fallback: int) -> int:
    value = link.get("last_modified")
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return fallback


def merge_links(
    local_links: list[Any],
    remote_links: list[Any],
    local_fallback_ts: int = 0,
    remote_fallback_ts: int = 0,
) -> list[dict[str, Any]]:
    """Union two link lists keyed by normalised URL.

    When a URL appears on both sides the copy with the greater
    ``last_modified`` wins whole; links without one use their side's
    metadata timestamp. Equal link timestamps go to the side with the newer
    metadata timestamp, then to the greater canonical JSON, so the result
    does not depend on argument order.
    """
    merged: dict[str, tuple[dict[str, Any], int, int]] = {}

    for links, fallback in ((local_links, local_fallback_ts), (remote_links, remote_fallback_ts)):
        for link in links:
            if not isinstance(link, dict):
                logger.warning(f"Skipping non-object link during merge: {link!r:.80}")
                continue

            key = link_key(link)
            ts = _timestamp(link, fallback)
            existing = merged.get(key)

            if existing is None:
                merged[key] = (link, ts, fallback)
                continue

            current, current_ts, current_side_ts = existing
            if (ts, fallback) > (current_ts, current_side_ts) or (
                (ts, fallback) == (current_ts, current_side_ts)
                and _canonical(link) > _canonical(current)
            ):
                merged[key] = (link, ts, fallback)

    return [link for link, _, _ in merged.values()]


def merge_categories(local_categories: list[Any], remote_categories: list[Any]) -> list[str]:
    """Ordered set union of both sides. ``Default`` is always present."""
    return ensure_categories(list(local_categories) + list(remote_categories), [])


def merge_data(
    local_data: Mapping[str, Any],
    remote_data: Mapping[str, Any],
    metadata: TierMetadata,
) -> dict[str, str]:
    """Merge two payloads into a new payload.

    Corrupted records on either side count as empty. Categories referenced
    by merged links are added so the result is a consistent state.
    """
    links = merge_links(
        _read_list(LINKS_KEY, local_data),
        _read_list(LINKS_KEY, remote_data),
        metadata.local.last_modified,
        metadata.remote.last_modified,
    )
    categories = merge_categories(
        _read_list(CATEGORIES_KEY, local_data),
        _read_list(CATEGORIES_KEY, remote_data),
    )
    return encode_payload(links, ensure_categories(categories, links))


def resolve_conflict(
    local_data: Mapping[str, Any],
    remote_data: Mapping[str, Any],
    metadata: TierMetadata,
    strategy: "ConflictStrategy | str" = ConflictStrategy.MERGE,
) -> dict[str, Any]:
    """Pick or build the payload that both tiers should hold.

    Returns ``{}`` when the winning side of a local or remote resolution
    holds no data at all.

    Raises:
        ValueError: If ``strategy`` is not a known strategy name.
    """
    strategy = ConflictStrategy(strategy)
    logger.info(f"Resolving conflict with strategy: {strategy.value}")

    if strategy is ConflictStrategy.LOCAL:
        return _winner(local_data)
    if strategy is ConflictStrategy.REMOTE:
        return _winner(remote_data)
    return merge_data(local_data, remote_data, metadata)


def _validate_json_list(
    data: Mapping[str, Any], key: str, label: str
) -> tuple[list[Any] | None, list[str]]:
    if key not in data or data[key] is None:
        # Absent or null means "no data yet"
        return None, []

    raw = data[key]
    if not isinstance(raw, str):
        return None, [f"{label} must be a JSON string, got {type(raw).__name__}"]

    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        return None, [f"{label} must be valid JSON: {e}"]

    if not isinstance(value, list):
        return None, [f"{label} must be a valid JSON array"]
    return value, []


def validate_sync_data(data: Any) -> ValidationResult:
    """Check a payload before it is written to the tiers.

    ``None`` for links or categories is accepted as "no data yet", distinct
    from malformed data.
    """
    if not isinstance(data, Mapping):
        return ValidationResult.from_errors(["Data must be an object"])

    errors: list[str] = []

    links, link_errors = _validate_json_list(data, LINKS_KEY, "Links")
    errors.extend(link_errors)
    for index, link in enumerate(links or []):
        for error in validate_link(link).errors:
            errors.append(f"Link at index {index}: {error}")

    categories, category_errors = _validate_json_list(data, CATEGORIES_KEY, "Categories")
    errors.extend(category_errors)
    for index, name in enumerate(categories or []):
        for error in validate_category(name).errors:
            errors.append(f"Category at index {index}: {error}")

    unexpected = [key for key in data if key not in DATA_KEYS]
    if unexpected:
        logger.debug(f"Unexpected properties in sync data: {unexpected}")

    return ValidationResult.from_errors(errors)
