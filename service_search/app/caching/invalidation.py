"""
Invalidation hooks called by write paths after a successful mutation.

Search-namespace entries are never invalidated here; their staleness is
bounded by the search TTL only.
"""

from typing import Iterable, Optional

from shared.logging import get_logger
from .cache_store import CacheStore
from . import keys


class CacheInvalidator:
    """Maps domain mutations to the cache keys they make stale."""

    def __init__(self, cache: CacheStore):
        self.cache = cache
        self.logger = get_logger("search.cache.invalidation")

    def category_changed(self, category_id: Optional[str] = None) -> int:
        """Category created, updated or deleted."""
        removed = self.cache.invalidate_pattern(f"{keys.CATEGORIES_NAMESPACE}:*")
        if category_id:
            removed += self.cache.invalidate_pattern(keys.category_services_pattern(category_id))

        self.logger.debug("Category caches invalidated", category_id=category_id, removed=removed)
        return removed

    def service_changed(self, service_id: Optional[str], category_ids: Iterable[Optional[str]] = ()) -> int:
        """Service created, updated or deleted.

        ``category_ids`` holds every category the service belonged to before
        and after the write.
        """
        removed = 0
        if service_id:
            removed += self.cache.delete(keys.services_key(service_id))
        for category_id in {cid for cid in category_ids if cid}:
            removed += self.cache.invalidate_pattern(keys.category_services_pattern(category_id))
        removed += self.cache.invalidate_pattern(f"{keys.SERVICES_NAMESPACE}:featured:*")

        self.logger.debug("Service caches invalidated", service_id=service_id, removed=removed)
        return removed

    def service_enriched(self, service_id: str) -> int:
        """Only the detail entry changes when a description is enriched."""
        return self.cache.delete(keys.services_key(service_id))

    def access_granted(self, user_id: str) -> int:
        """A completed payment granted the user access to a service."""
        removed = self.cache.invalidate_pattern(keys.user_pattern(user_id))
        self.logger.debug("User caches invalidated", user_id=user_id, removed=removed)
        return removed

    def search_history_changed(self, user_id: str) -> int:
        return self.cache.delete(keys.user_key(user_id, "recent-searches"))
