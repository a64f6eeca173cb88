"""Records that make up the application state."""

import copy
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit, urlunsplit

DEFAULT_CATEGORY = "Default"

THEMES = ("dark", "light")
VIEWS = ("grid", "list")
TILE_SIZES = ("compact", "small", "medium", "large", "square", "wide", "tall", "giant")
# Per-link sizes also allow "default" (follow the board's tile size)
LINK_SIZES = TILE_SIZES + ("default",)
COLOR_THEMES = (
    "default", "ocean", "cosmic", "sunset", "forest", "fire", "aurora",
    "theme-purple", "theme-pink", "theme-green", "theme-orange", "theme-teal",
    "theme-dark-orange", "theme-dark-purple", "theme-dark-emerald",
    "theme-dark-crimson", "theme-dark-sapphire",
)

MAX_NAME_LENGTH = 100
MAX_CATEGORY_LENGTH = 50
MAX_ICON_LENGTH = 500
MAX_SEARCH_TERM_LENGTH = 200

_DEFAULT_STATE: dict[str, Any] = {
    "links": [],
    "categories": [DEFAULT_CATEGORY],
    "theme": "dark",
    "color_theme": "default",
    "view": "grid",
    "default_tile_size": "medium",
    "search_term": "",
}

# Keys persisted as structured preference values alongside links/categories
PREFERENCE_KEYS = ("theme", "color_theme", "view", "default_tile_size")


def default_state() -> dict[str, Any]:
    """Return a fresh copy of the initial application state."""
    return copy.deepcopy(_DEFAULT_STATE)


def ensure_categories(categories: list[Any], links: list[Any]) -> list[str]:
    """Deduplicate category names and add any that links reference.

    ``Default`` is placed first when missing. Order is otherwise preserved.
    """
    result: list[str] = []
    seen: set[str] = set()

    def add(name: Any) -> None:
        if isinstance(name, str) and name.strip() and name not in seen:
            seen.add(name)
            result.append(name)

    for name in categories:
        add(name)
    for link in links:
        if isinstance(link, dict):
            add(link.get("category"))

    if DEFAULT_CATEGORY not in seen:
        result.insert(0, DEFAULT_CATEGORY)
    return result


_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(url: str) -> str:
    """Canonical form of a link URL, used as the dedup key.

    Lowercases scheme and host, drops the scheme's default port and turns an
    empty path into ``/``. Text that is not an absolute URL comes back
    trimmed but otherwise untouched.
    """
    text = url.strip() if isinstance(url, str) else str(url)
    try:
        parts = urlsplit(text)
        port = parts.port
    except ValueError:
        return text

    if not parts.scheme or not parts.hostname:
        return text

    scheme = parts.scheme.lower()
    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"

    netloc = host
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        netloc = f"{host}:{port}"
    userinfo, _, _ = parts.netloc.rpartition("@")
    if userinfo:
        netloc = f"{userinfo}@{netloc}"

    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, parts.fragment))


def link_key(link: Mapping[str, Any]) -> str:
    """Dedup identity of a link: its normalised URL."""
    return normalize_url(link.get("url", ""))
