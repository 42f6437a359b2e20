"""
In-memory catalog store for local runs and tests.
"""

import dataclasses
import re
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from shared.logging import get_logger
from ..domain.models import Category, SearchHistoryEntry, ServiceRecord, UserAccount, utcnow
from .base import SORTABLE_FIELDS, CatalogStore, DuplicateRecordError

_WORD = re.compile(r"\w+", re.UNICODE)

# Relative weight of a query term found in each indexed field
TITLE_WEIGHT = 3.0
KEYWORD_WEIGHT = 2.0
DESCRIPTION_WEIGHT = 1.0



def _words(text: str) -> List[str]:
    return _WORD.findall(text.lower())


def _term_in(term: str, words: Iterable[str]) -> bool:
    return any(word == term or word.startswith(term) for word in words)


def text_score(record: ServiceRecord, terms: List[str]) -> float:
    """Weighted count of query terms present in the indexed fields."""
    title = _words(record.title)
    description = _words(record.description)
    keywords = [word for keyword in record.keywords for word in _words(keyword)]

    score = 0.0
    for term in terms:
        if _term_in(term, title):
            score += TITLE_WEIGHT
        if _term_in(term, keywords):
            score += KEYWORD_WEIGHT
        if _term_in(term, description):
            score += DESCRIPTION_WEIGHT
    return score


class InMemoryCatalogStore(CatalogStore):
    """Dict-backed store. Every coroutine completes without awaiting, so each
    operation is atomic with respect to the event loop."""

    def __init__(
        self,
        services: Iterable[ServiceRecord] = (),
        categories: Iterable[Category] = (),
        users: Iterable[UserAccount] = (),
    ):
        self.logger = get_logger("search.store.memory")
        self._services: Dict[str, ServiceRecord] = {}
        self._categories: Dict[str, Category] = {category.id: category for category in categories}
        self._users: Dict[str, UserAccount] = {user.id: user for user in users}
        for record in services:
            self._put_service(record)

    # Services

    async def search_services(
        self,
        text: str,
        filters: Mapping[str, str],
        *,
        include_premium: bool,
        skip: int,
        limit: int,
    ) -> Tuple[List[ServiceRecord], int]:
        terms = _words(text)
        scored = []
        for record in self._services.values():
            if not include_premium and record.premium_only:
                continue
            if not self._matches_filters(record, filters):
                continue
            score = text_score(record, terms)
            if score > 0:
                scored.append((score, record))

        scored.sort(key=lambda pair: (pair[0], pair[1].rating), reverse=True)
        matches = [record for _, record in scored]
        return matches[skip:skip + limit], len(matches)

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
        if sort not in SORTABLE_FIELDS:
            raise ValueError(f"Unsupported sort field: {sort}")

        records = [
            record for record in self._services.values()
            if (category_id is None or record.category_id == category_id)
            and (include_premium or not record.premium_only)
        ]
        records.sort(key=lambda record: self._sort_value(record, sort), reverse=descending)
        return records[skip:skip + limit], len(records)

    async def featured_services(self, limit: int) -> List[ServiceRecord]:
        records = [
            record for record in self._services.values()
            if record.rating >= 4 and record.verified and not record.premium_only
        ]
        records.sort(key=lambda record: (record.rating, record.view_count), reverse=True)
        return records[:limit]

    async def get_service(self, service_id: str) -> Optional[ServiceRecord]:
        return self._services.get(service_id)

    async def find_by_source_url(self, source_url: str) -> Optional[ServiceRecord]:
        if not source_url:
            return None
        for record in self._services.values():
            if record.source_url == source_url:
                return record
        return None

    async def find_by_title_prefix(self, category_id: Optional[str], title_prefix: str) -> Optional[ServiceRecord]:
        prefix = title_prefix.lower()
        if not prefix:
            return None
        for record in self._services.values():
            if record.category_id == category_id and record.title.lower().startswith(prefix):
                return record
        return None

    async def insert_service(self, record: ServiceRecord) -> ServiceRecord:
        if not record.id:
            record = dataclasses.replace(record, id=uuid.uuid4().hex)
        if record.id in self._services:
            raise DuplicateRecordError("id", record.id)
        return self._put_service(record)

    async def update_service(self, service_id: str, changes: Mapping[str, Any]) -> Optional[ServiceRecord]:
        current = self._services.get(service_id)
        if current is None:
            return None

        source_url = changes.get("source_url")
        if source_url and source_url != current.source_url and await self.find_by_source_url(source_url):
            raise DuplicateRecordError("source_url", source_url)

        updated = dataclasses.replace(current, **{**changes, "id": service_id, "updated_at": utcnow()})
        self._services[service_id] = updated
        return updated

    async def delete_service(self, service_id: str) -> bool:
        return self._services.pop(service_id, None) is not None

    async def increment_field(self, service_id: str, field: str, amount: int = 1) -> Optional[ServiceRecord]:
        current = self._services.get(service_id)
        if current is None:
            return None
        updated = dataclasses.replace(current, **{field: getattr(current, field) + amount})
        self._services[service_id] = updated
        return updated

    # Categories

    async def list_categories(self) -> List[Category]:
        return sorted(self._categories.values(), key=lambda category: category.name.lower())

    async def get_category(self, category_id: str) -> Optional[Category]:
        return self._categories.get(category_id)

    async def find_category_by_name(self, name: str) -> Optional[Category]:
        needle = name.strip().lower()
        if not needle:
            return None
        for category in self._categories.values():
            if needle in category.name.lower():
                return category
        return None

    async def insert_category(self, category: Category) -> Category:
        if not category.id:
            category = dataclasses.replace(category, id=uuid.uuid4().hex)
        if category.id in self._categories:
            raise DuplicateRecordError("id", category.id)
        self._categories[category.id] = category
        return category

    async def update_category(self, category_id: str, changes: Mapping[str, Any]) -> Optional[Category]:
        current = self._categories.get(category_id)
        if current is None:
            return None
        updated = dataclasses.replace(current, **{**changes, "id": category_id})
        self._categories[category_id] = updated
        return updated

    async def delete_category(self, category_id: str) -> bool:
        return self._categories.pop(category_id, None) is not None

    # Users

    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        return self._users.get(user_id)

    def add_user(self, user: UserAccount) -> UserAccount:
        self._users[user.id] = user
        return user

    async def save_recent_searches(
        self,
        user_id: str,
        entries: Iterable[SearchHistoryEntry],
    ) -> Optional[UserAccount]:
        current = self._users.get(user_id)
        if current is None:
            return None
        updated = dataclasses.replace(current, recent_searches=tuple(entries))
        self._users[user_id] = updated
        return updated

    async def add_paid_service(self, user_id: str, service_id: str) -> Optional[UserAccount]:
        current = self._users.get(user_id)
        if current is None:
            return None
        updated = dataclasses.replace(current, paid_service_ids=current.paid_service_ids | {service_id})
        self._users[user_id] = updated
        return updated

    async def remove_paid_service(self, service_id: str) -> int:
        touched = 0
        for user_id, user in list(self._users.items()):
            if service_id in user.paid_service_ids:
                self._users[user_id] = dataclasses.replace(
                    user, paid_service_ids=user.paid_service_ids - {service_id}
                )
                touched += 1
        return touched

    # Helpers

    def _put_service(self, record: ServiceRecord) -> ServiceRecord:
        if record.source_url:
            for existing in self._services.values():
                if existing.source_url == record.source_url and existing.id != record.id:
                    raise DuplicateRecordError("source_url", record.source_url)
        self._services[record.id] = record
        return record

    @staticmethod
    def _matches_filters(record: ServiceRecord, filters: Mapping[str, str]) -> bool:
        category = filters.get("category")
        if category and record.category_id != category:
            return False

        location = filters.get("location")
        if location and location.lower() not in record.location.lower():
            return False

        price = filters.get("price")
        if price and record.price != price:
            return False

        return True

    @staticmethod
    def _sort_value(record: ServiceRecord, field: str) -> Any:
        value = getattr(record, field)
        if field == "relevance" and value is None:
            return -1.0
        if field == "title":
            return value.lower()
        return value
