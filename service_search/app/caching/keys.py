"""
Canonical cache keys.

Any component that computes a key on its own must reproduce these formats
byte for byte, since write paths invalidate by prefix.
"""

import re
from typing import Any, Mapping, Optional

_WHITESPACE = re.compile(r"\s+")

CATEGORIES_NAMESPACE = "categories"
SERVICES_NAMESPACE = "services"
SEARCH_NAMESPACE = "search"
USER_NAMESPACE = "user"

USER_KEY_SUBTYPES = ("profile", "transactions", "recent-searches")

DEFAULT_NAMESPACE_TTLS = {
    CATEGORIES_NAMESPACE: 3600,
    SERVICES_NAMESPACE: 1800,
    SEARCH_NAMESPACE: 300,
    USER_NAMESPACE: 60,
}
DEFAULT_TTL = 600


def normalize_query(text: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return _WHITESPACE.sub(" ", text.strip()).lower()


def namespace_of(key: str) -> Optional[str]:
    """Return the namespace prefix of ``key`` or None when unrecognized."""
    prefix, sep, _ = key.partition(":")
    if sep and prefix in DEFAULT_NAMESPACE_TTLS:
        return prefix
    return None


def category_key(category_id: Optional[str] = None) -> str:
    return f"{CATEGORIES_NAMESPACE}:{category_id or 'all'}"


def services_key(service_id: Optional[str] = None,
                 category_id: Optional[str] = None,
                 page: int = 1,
                 limit: int = 20) -> str:
    if service_id:
        return f"{SERVICES_NAMESPACE}:id:{service_id}"

    if category_id:
        return f"{SERVICES_NAMESPACE}:category:{category_id}:page:{page}:limit:{limit}"

    return f"{SERVICES_NAMESPACE}:all:page:{page}:limit:{limit}"


def category_services_pattern(category_id: str) -> str:
    return f"{SERVICES_NAMESPACE}:category:{category_id}:*"


def featured_services_key(limit: int) -> str:
    return f"{SERVICES_NAMESPACE}:featured:limit:{limit}"


def search_key(query: str, filters: Optional[Mapping[str, Any]] = None) -> str:
    """Build the search key.

    Filters with None or empty values are dropped; the rest are sorted by
    name and rendered as ``name:value`` joined with ``|``. String values are
    normalized like the query text, so ``Austin`` and ``austin `` collide.
    """
    parts = []
    for name in sorted((filters or {}).keys()):
        value = _filter_value(filters[name])
        if value:
            parts.append(f"{name}:{value}")

    key = f"{SEARCH_NAMESPACE}:q:{normalize_query(query)}"
    if parts:
        key += ":filters:" + "|".join(parts)
    return key


def user_key(user_id: str, subtype: str = "profile") -> str:
    if subtype not in USER_KEY_SUBTYPES:
        raise ValueError(f"Unknown user key subtype: {subtype}")
    return f"{USER_NAMESPACE}:{user_id}:{subtype}"


def user_pattern(user_id: str) -> str:
    return f"{USER_NAMESPACE}:{user_id}:*"


def _filter_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return normalize_query(value)
    return str(value)
