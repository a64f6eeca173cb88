"""Pure validation functions for application state and its parts.

Every function returns a ``ValidationResult`` listing every violation found;
none of them raise on malformed input.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import urlsplit

from .models import (
    COLOR_THEMES,
    DEFAULT_CATEGORY,
    LINK_SIZES,
    MAX_CATEGORY_LENGTH,
    MAX_ICON_LENGTH,
    MAX_NAME_LENGTH,
    MAX_SEARCH_TERM_LENGTH,
    THEMES,
    TILE_SIZES,
    VIEWS,
)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s")

# Longest slice of a bad value echoed back in an error message
_ECHO_LIMIT = 100


@dataclass
class ValidationResult:
    """Outcome of a validation call."""

    valid: bool
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: list[str]) -> "ValidationResult":
        return cls(valid=not errors, errors=errors)

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}


def _echo(value: Any) -> str:
    text = value if isinstance(value, str) else repr(value)
    if len(text) > _ECHO_LIMIT:
        return text[:_ECHO_LIMIT] + "..."
    return text


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    return type(value).__name__


def is_http_url(value: Any) -> bool:
    """True if ``value`` is an absolute http(s) URL with a host."""
    if not isinstance(value, str):
        return False

    text = value.strip()
    if not text or _WHITESPACE.search(text) or _CONTROL_CHARS.search(text):
        return False

    try:
        parts = urlsplit(text)
        parts.port  # raises ValueError for a malformed port
    except ValueError:
        return False

    return parts.scheme.lower() in ("http", "https") and bool(parts.hostname)


def _is_data_uri(value: str) -> bool:
    return value.strip().lower().startswith("data:")


def _validate_name(value: Any) -> list[str]:
    if not isinstance(value, str):
        return ["Name is required and must be a string"]
    if not value.strip():
        return ["Name cannot be empty"]

    errors = []
    if len(value) > MAX_NAME_LENGTH:
        errors.append(f"Name cannot exceed {MAX_NAME_LENGTH} characters")
    if _CONTROL_CHARS.search(value):
        errors.append("Name cannot contain control characters")
    return errors


def _validate_url(value: Any) -> list[str]:
    if not isinstance(value, str):
        return ["URL is required and must be a string"]
    if not value.strip():
        return ["URL cannot be empty"]
    if not is_http_url(value):
        return [f"Invalid URL format: {_echo(value)}"]
    return []


def _validate_link_category(value: Any) -> list[str]:
    if not isinstance(value, str):
        return ["Category is required and must be a string"]
    if not value.strip():
        return ["Category cannot be empty"]
    if len(value) > MAX_CATEGORY_LENGTH:
        return [f"Category cannot exceed {MAX_CATEGORY_LENGTH} characters"]
    return []


def _validate_icon(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, str):
        return ["Icon must be a string or null"]
    if _is_data_uri(value):
        return []
    if len(value) > MAX_ICON_LENGTH:
        return [f"Icon URL cannot exceed {MAX_ICON_LENGTH} characters"]
    if not is_http_url(value):
        return [f"Invalid icon URL format: {_echo(value)}"]
    return []


def _validate_size(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, str):
        return ["Size must be a string or null"]
    if value not in LINK_SIZES:
        return [
            f"Invalid size value: {_echo(value)}. "
            f"Must be one of: {', '.join(LINK_SIZES)}"
        ]
    return []


def _validate_last_modified(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return ["last_modified must be a non-negative integer timestamp"]
    return []


def validate_link(link: Any) -> ValidationResult:
    """Validate a single link dict.

    Absent or ``None`` optional fields (icon, size, last_modified) are valid.
    """
    if link is None:
        return ValidationResult.from_errors(["Link object is null or undefined"])
    if not isinstance(link, Mapping):
        return ValidationResult.from_errors(
            [f"Link must be an object, got {_type_name(link)}"]
        )

    errors: list[str] = []
    errors.extend(_validate_name(link.get("name")))
    errors.extend(_validate_url(link.get("url")))
    errors.extend(_validate_link_category(link.get("category")))
    errors.extend(_validate_icon(link.get("icon")))
    errors.extend(_validate_size(link.get("size")))
    errors.extend(_validate_last_modified(link.get("last_modified")))
    return ValidationResult.from_errors(errors)


def _link_label(link: Any) -> str:
    if isinstance(link, Mapping):
        name = link.get("name")
        if isinstance(name, str) and name.strip():
            return _echo(name.strip())
    return "Unnamed"


def validate_links(links: Any) -> ValidationResult:
    """Validate a collection of links, reporting every violation."""
    if not isinstance(links, (list, tuple)):
        return ValidationResult.from_errors(
            [f"links: Must be an array, got {_type_name(links)}"]
        )

    errors = []
    for index, link in enumerate(links):
        result = validate_link(link)
        for error in result.errors:
            errors.append(f"Link {index} ({_link_label(link)}): {error}")
    return ValidationResult.from_errors(errors)


def validate_category(name: Any) -> ValidationResult:
    """Validate one category name. Uniqueness is the caller's concern."""
    if not isinstance(name, str):
        return ValidationResult.from_errors(
            [f"Category must be a string, got {_type_name(name)}"]
        )
    if not name.strip():
        return ValidationResult.from_errors(["Category cannot be empty"])
    if len(name) > MAX_CATEGORY_LENGTH:
        return ValidationResult.from_errors(
            [f"Category cannot exceed {MAX_CATEGORY_LENGTH} characters"]
        )
    return ValidationResult(valid=True)


def validate_categories(categories: Any) -> ValidationResult:
    """Validate a list of category names."""
    if not isinstance(categories, (list, tuple)):
        return ValidationResult.from_errors(
            [f"categories: Must be an array, got {_type_name(categories)}"]
        )

    errors = []
    for index, name in enumerate(categories):
        for error in validate_category(name).errors:
            errors.append(f"categories[{index}]: {error}")
    return ValidationResult.from_errors(errors)


def _enum_rule(choices: tuple[str, ...]) -> Callable[[str, Any], list[str]]:
    def check(key: str, value: Any) -> list[str]:
        if not isinstance(value, str):
            return [f"{key}: Expected string, got {_type_name(value)}"]
        if value not in choices:
            return [f"{key}: Value must be one of: {', '.join(choices)}"]
        return []

    return check


def _search_term_rule(key: str, value: Any) -> list[str]:
    if not isinstance(value, str):
        return [f"{key}: Expected string, got {_type_name(value)}"]
    if len(value) > MAX_SEARCH_TERM_LENGTH:
        return [f"{key}: Maximum length is {MAX_SEARCH_TERM_LENGTH}"]
    return []


_FIELD_RULES: dict[str, Callable[[str, Any], list[str]]] = {
    "links": lambda key, value: validate_links(value).errors,
    "categories": lambda key, value: validate_categories(value).errors,
    "theme": _enum_rule(THEMES),
    "view": _enum_rule(VIEWS),
    "default_tile_size": _enum_rule(TILE_SIZES),
    "color_theme": _enum_rule(COLOR_THEMES),
    "search_term": _search_term_rule,
}


def validate_state_changes(changes: Any) -> ValidationResult:
    """Validate the known fields of a partial state.

    Keys without a rule (transient UI fields) are accepted as-is.
    """
    if not isinstance(changes, Mapping):
        return ValidationResult.from_errors(
            [f"State changes must be an object, got {_type_name(changes)}"]
        )

    errors = []
    for key, value in changes.items():
        rule = _FIELD_RULES.get(key)
        if rule is not None:
            errors.extend(rule(key, value))
    return ValidationResult.from_errors(errors)


def validate_state(state: Any) -> ValidationResult:
    """Validate a complete state, including cross-field invariants."""
    result = validate_state_changes(state)
    if not isinstance(state, Mapping):
        return result

    errors = list(result.errors)
    categories = state.get("categories")
    links = state.get("links")

    if isinstance(categories, (list, tuple)):
        if DEFAULT_CATEGORY not in categories:
            errors.append(f"categories: '{DEFAULT_CATEGORY}' category must be present")

        if isinstance(links, (list, tuple)):
            known = {c for c in categories if isinstance(c, str)}
            for index, link in enumerate(links):
                if not isinstance(link, Mapping):
                    continue
                category = link.get("category")
                if isinstance(category, str) and category.strip() and category not in known:
                    errors.append(
                        f"Link {index} ({_link_label(link)}): "
                        f"Unknown category: {_echo(category)}"
                    )

    return ValidationResult.from_errors(errors)
