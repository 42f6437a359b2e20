"""
Search request validation and normalization.
"""

from typing import Any, Dict, List, Optional

from shared.errors import ValidationError
from ..caching.keys import normalize_query
from .models import PRICE_TIERS, SearchQuery

FILTER_NAMES = ("category", "location", "price")


def build_search_query(
    query: Any,
    *,
    category: Any = None,
    location: Any = None,
    price: Any = None,
    page: Any = 1,
    limit: Any = None,
    min_length: int = 2,
    max_length: int = 100,
    default_limit: int = 20,
    max_limit: int = 50,
) -> SearchQuery:
    """Validate raw search parameters and return a normalized SearchQuery.

    All problems are collected and reported together in one ValidationError.
    Filters that are None or blank are dropped.
    """
    errors: List[str] = []

    text = ""
    if not isinstance(query, str):
        errors.append("query must be a string")
    else:
        text = normalize_query(query)
        if not min_length <= len(text) <= max_length:
            errors.append(f"query length must be between {min_length} and {max_length} characters")

    filters: Dict[str, str] = {}
    for name, value in (("category", category), ("location", location), ("price", price)):
        if value is None:
            continue
        if not isinstance(value, str):
            errors.append(f"{name} filter must be a string")
            continue
        value = value.strip()
        if value:
            filters[name] = value

    if "price" in filters and filters["price"] not in PRICE_TIERS:
        errors.append(f"price must be one of {', '.join(PRICE_TIERS)}")

    page_number = _as_int(page, 1)
    if page_number is None or page_number < 1:
        errors.append("page must be an integer greater than or equal to 1")

    page_size = _as_int(limit, default_limit)
    if page_size is None or not 1 <= page_size <= max_limit:
        errors.append(f"limit must be an integer between 1 and {max_limit}")

    if errors:
        raise ValidationError(", ".join(errors), details={"errors": errors})

    return SearchQuery(text=text, filters=filters, page=page_number, limit=page_size)


def _as_int(value: Any, default: int) -> Optional[int]:
    if value is None:
        return default
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None
