"""
Search caching package.

Provides the shared in-process TTL cache, the canonical key builders, and
the invalidation hooks used by write paths. Prefer short-lived entries and
explicit invalidation.
"""

from .cache_store import CacheStore
from .invalidation import CacheInvalidator

__all__ = ["CacheStore", "CacheInvalidator"]
