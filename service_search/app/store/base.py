"""
Capabilities the search subsystem consumes from the authoritative store.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from ..domain.models import Category, SearchHistoryEntry, ServiceRecord, UserAccount

SORTABLE_FIELDS = ("rating", "relevance", "view_count", "created_at", "updated_at", "title")


class DuplicateRecordError(Exception):
    """A uniqueness constraint rejected an insert."""

    def __init__(self, field: str, value: Any):
        super().__init__(f"Duplicate value for {field}: {value}")
        self.field = field
        self.value = value


class ServiceStore(ABC):
    """Service records: text query, point CRUD, atomic counters.

    ``source_url`` is unique across records; inserting a second record with
    the same source raises DuplicateRecordError.
    """

    @abstractmethod
    async def search_services(
        self,
        text: str,
        filters: Mapping[str, str],
        *,
        include_premium: bool,
        skip: int,
        limit: int,
    ) -> Tuple[List[ServiceRecord], int]:
        """Text-relevance ordered page of matches plus the total match count."""

    @abstractmethod
    async def list_services(
        self,
        *,
        category_id: Optional[str] = None,
        include_premium: bool = True,
        skip: int = 0,
        limit: int = 20,
        sort: str = "rating",
        descending: bool = True,
    ) -> Tuple[List[ServiceRecord], int]:
        """Page of services, optionally restricted to one category."""

    @abstractmethod
    async def featured_services(self, limit: int) -> List[ServiceRecord]:
        """Highly rated, verified, non-premium services."""

    @abstractmethod
    async def get_service(self, service_id: str) -> Optional[ServiceRecord]:
        pass

    @abstractmethod
    async def find_by_source_url(self, source_url: str) -> Optional[ServiceRecord]:
        pass

    @abstractmethod
    async def find_by_title_prefix(self, category_id: Optional[str], title_prefix: str) -> Optional[ServiceRecord]:
        """First record in ``category_id`` whose title starts with the prefix, ignoring case."""

    @abstractmethod
    async def insert_service(self, record: ServiceRecord) -> ServiceRecord:
        """Persist a new record, assigning an id when it has none."""

    @abstractmethod
    async def update_service(self, service_id: str, changes: Mapping[str, Any]) -> Optional[ServiceRecord]:
        pass

    @abstractmethod
    async def delete_service(self, service_id: str) -> bool:
        pass

    @abstractmethod
    async def increment_field(self, service_id: str, field: str, amount: int = 1) -> Optional[ServiceRecord]:
        """Atomically add ``amount`` to a numeric field."""


class CategoryStore(ABC):

    @abstractmethod
    async def list_categories(self) -> List[Category]:
        pass

    @abstractmethod
    async def get_category(self, category_id: str) -> Optional[Category]:
        pass

    @abstractmethod
    async def find_category_by_name(self, name: str) -> Optional[Category]:
        """Case-insensitive partial name match."""

    @abstractmethod
    async def insert_category(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def update_category(self, category_id: str, changes: Mapping[str, Any]) -> Optional[Category]:
        pass

    @abstractmethod
    async def delete_category(self, category_id: str) -> bool:
        pass


class UserStore(ABC):

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        pass

    @abstractmethod
    async def save_recent_searches(
        self,
        user_id: str,
        entries: Iterable[SearchHistoryEntry],
    ) -> Optional[UserAccount]:
        """Replace the user's search history; None when the user is unknown."""

    @abstractmethod
    async def add_paid_service(self, user_id: str, service_id: str) -> Optional[UserAccount]:
        pass

    @abstractmethod
    async def remove_paid_service(self, service_id: str) -> int:
        """Drop ``service_id`` from every user's paid list; returns users touched."""


class CatalogStore(ServiceStore, CategoryStore, UserStore, ABC):
    """Everything the search service needs from one backing store."""
