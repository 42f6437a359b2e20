"""
Store package: the authoritative-store capability and an in-memory backend.
"""

from .base import CatalogStore, CategoryStore, DuplicateRecordError, ServiceStore, UserStore
from .memory import InMemoryCatalogStore

__all__ = [
    "CatalogStore",
    "CategoryStore",
    "DuplicateRecordError",
    "InMemoryCatalogStore",
    "ServiceStore",
    "UserStore",
]
