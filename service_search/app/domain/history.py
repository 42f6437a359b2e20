"""
Search history helpers.
"""

from datetime import datetime
from typing import Optional, Sequence, Tuple

from .models import SearchHistoryEntry, utcnow

MAX_RECENT_SEARCHES = 10


def add_recent_search(
    history: Sequence[SearchHistoryEntry],
    query: str,
    *,
    now: Optional[datetime] = None,
    limit: int = MAX_RECENT_SEARCHES,
) -> Tuple[SearchHistoryEntry, ...]:
    """Return a new history with ``query`` first, capped at ``limit`` entries.

    Duplicates are kept; the caller's list is not modified.
    """
    entry = SearchHistoryEntry(query=query, timestamp=now or utcnow())
    return (entry, *history)[:limit]
