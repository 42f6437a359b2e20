"""
Category and service catalog: cached reads and invalidating writes.
"""

from typing import Any, Dict, List, Optional, TYPE_CHECKING

from shared.errors import NotFoundError, StoreUnavailable, ValidationError
from shared.logging import get_logger
from ..caching import keys
from ..caching.cache_store import CacheStore
from ..caching.invalidation import CacheInvalidator
from ..store.base import SORTABLE_FIELDS, CatalogStore, DuplicateRecordError
from ..store.guard import guarded
from .models import Caller, Category, SearchResultSet, ServiceRecord, UserAccount, utcnow
from .payloads import (
    CategoryPayload,
    CategoryUpdatePayload,
    ServicePayload,
    ServiceUpdatePayload,
)
from .redaction import redact_record, redact_records

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import BaseConfig
    from ..adapters.enrichment_client import RemoteEnrichmentClient


DEFAULT_CATEGORY_SORT = "rating"
DEFAULT_FEATURED_LIMIT = 5


class CatalogService:
    """Reads and writes categories, services and access grants."""

    def __init__(
        self,
        store: CatalogStore,
        cache: CacheStore,
        remote: Optional["RemoteEnrichmentClient"] = None,
        *,
        invalidator: Optional[CacheInvalidator] = None,
        store_timeout: float = 10.0,
        max_page_size: int = 50,
    ):
        self.store = store
        self.cache = cache
        self.remote = remote
        self.invalidator = invalidator or CacheInvalidator(cache)
        self.store_timeout = store_timeout
        self.max_page_size = max_page_size
        self.logger = get_logger("search.catalog")

    @classmethod
    def from_config(
        cls,
        config: "BaseConfig",
        store: CatalogStore,
        cache: CacheStore,
        remote: Optional["RemoteEnrichmentClient"] = None,
        **kwargs: Any,
    ) -> "CatalogService":
        return cls(
            store,
            cache,
            remote,
            store_timeout=config.store_timeout_seconds,
            max_page_size=config.max_page_size,
            **kwargs,
        )

    # Categories

    async def list_categories(self) -> List[Category]:
        cache_key = keys.category_key()
        cached = self.cache.get(cache_key)
        if cached is not None:
            return list(cached)

        categories = await self._store_call(self.store.list_categories(), "list_categories")
        self.cache.set(cache_key, tuple(categories))
        return categories

    async def get_category(self, category_id: str) -> Category:
        cache_key = keys.category_key(category_id)
        cached = self.cache.get(cache_key)
        if isinstance(cached, Category):
            return cached

        category = await self._store_call(self.store.get_category(category_id), "get_category")
        if category is None:
            raise NotFoundError("Category", category_id)

        self.cache.set(cache_key, category)
        return category

    async def create_category(self, payload: CategoryPayload) -> Category:
        category = Category(id="", **payload.model_dump())
        created = await self._store_call(self.store.insert_category(category), "insert_category")

        self.invalidator.category_changed()
        self.logger.info("Category created", category_id=created.id, name=created.name)
        return created

    async def update_category(self, category_id: str, payload: CategoryUpdatePayload) -> Category:
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        updated = await self._store_call(self.store.update_category(category_id, changes), "update_category")
        if updated is None:
            raise NotFoundError("Category", category_id)

        self.invalidator.category_changed(category_id)
        self.logger.info("Category updated", category_id=category_id, fields=sorted(changes))
        return updated

    async def delete_category(self, category_id: str) -> None:
        deleted = await self._store_call(self.store.delete_category(category_id), "delete_category")
        if not deleted:
            raise NotFoundError("Category", category_id)

        self.invalidator.category_changed(category_id)
        self.logger.info("Category deleted", category_id=category_id)

    # Services

    async def list_services_by_category(
        self,
        category_id: str,
        *,
        caller: Optional[Caller] = None,
        page: int = 1,
        limit: int = 10,
        sort: str = DEFAULT_CATEGORY_SORT,
        descending: bool = True,
    ) -> SearchResultSet:
        """One page of a category's services.

        Only default-ordered pages for unverified audiences are cached, so a
        cached page never lists premium records. Verified callers see the
        contacts of the premium records they paid for.
        """
        if page < 1 or not 1 <= limit <= self.max_page_size:
            raise ValidationError(
                f"page must be >= 1 and limit between 1 and {self.max_page_size}",
                details={"page": page, "limit": limit}
            )
        if sort not in SORTABLE_FIELDS:
            raise ValidationError(
                f"sort must be one of {', '.join(SORTABLE_FIELDS)}",
                details={"sort": sort}
            )

        await self.get_category(category_id)

        include_premium = caller is not None and caller.verified
        cacheable = sort == DEFAULT_CATEGORY_SORT and descending and not include_premium
        cache_key = keys.services_key(category_id=category_id, page=page, limit=limit)
        if cacheable:
            cached = self.cache.get(cache_key)
            if isinstance(cached, SearchResultSet):
                return cached

        records, total = await self._store_call(
            self.store.list_services(
                category_id=category_id,
                include_premium=include_premium,
                skip=(page - 1) * limit,
                limit=limit,
                sort=sort,
                descending=descending,
            ),
            "list_services",
        )

        audience = await self._with_access(caller) if include_premium else None
        result = SearchResultSet(
            records=tuple(redact_records(records, audience)), total=total, page=page, limit=limit
        )
        if cacheable:
            self.cache.set(cache_key, result)
        return result

    async def get_service(self, service_id: str, caller: Optional[Caller] = None) -> ServiceRecord:
        """Service detail, with the contact shown only to callers who paid for it."""
        cache_key = keys.services_key(service_id)
        record = self.cache.get(cache_key)
        if isinstance(record, ServiceRecord):
            try:
                await self._store_call(self.store.increment_field(service_id, "view_count", 1), "increment_field")
            except StoreUnavailable as exc:
                self.logger.warning("View count not recorded", service_id=service_id, error=exc.message)
        else:
            record = await self._store_call(
                self.store.increment_field(service_id, "view_count", 1), "increment_field"
            )
            if record is None:
                raise NotFoundError("Service", service_id)
            self.cache.set(cache_key, record)

        audience = await self._with_access(caller) if record.premium_only else caller
        return redact_record(record, audience)

    async def featured_services(self, limit: int = DEFAULT_FEATURED_LIMIT) -> List[ServiceRecord]:
        if not 1 <= limit <= self.max_page_size:
            raise ValidationError(f"limit must be between 1 and {self.max_page_size}", details={"limit": limit})

        cache_key = keys.featured_services_key(limit)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return list(cached)

        records = redact_records(
            await self._store_call(self.store.featured_services(limit), "featured_services")
        )
        self.cache.set(cache_key, tuple(records))
        return records

    async def create_service(self, payload: ServicePayload) -> ServiceRecord:
        await self._require_category(payload.category_id)

        now = utcnow()
        fields = payload.model_dump()
        fields["keywords"] = frozenset(fields["keywords"])
        record = ServiceRecord(id="", last_scraped=now, created_at=now, updated_at=now, **fields)

        try:
            created = await self._store_call(self.store.insert_service(record), "insert_service")
        except DuplicateRecordError as exc:
            raise ValidationError(
                f"A service with this {exc.field} already exists",
                details={"field": exc.field, "value": exc.value}
            ) from exc

        self.invalidator.service_changed(created.id, [created.category_id])
        self.logger.info("Service created", service_id=created.id, category_id=created.category_id)
        return created

    async def update_service(self, service_id: str, payload: ServiceUpdatePayload) -> ServiceRecord:
        current = await self._require_service(service_id)

        changes: Dict[str, Any] = payload.model_dump(exclude_unset=True, exclude_none=True)
        if "keywords" in changes:
            changes["keywords"] = frozenset(
                keyword.strip().lower() for keyword in changes["keywords"] if keyword.strip()
            )
        if changes.get("category_id") and changes["category_id"] != current.category_id:
            await self._require_category(changes["category_id"])

        try:
            updated = await self._store_call(self.store.update_service(service_id, changes), "update_service")
        except DuplicateRecordError as exc:
            raise ValidationError(
                f"A service with this {exc.field} already exists",
                details={"field": exc.field, "value": exc.value}
            ) from exc
        if updated is None:
            raise NotFoundError("Service", service_id)

        self.invalidator.service_changed(service_id, [current.category_id, updated.category_id])
        self.logger.info("Service updated", service_id=service_id, fields=sorted(changes))
        return updated

    async def delete_service(self, service_id: str) -> None:
        current = await self._require_service(service_id)

        await self._store_call(self.store.delete_service(service_id), "delete_service")
        released = await self._store_call(self.store.remove_paid_service(service_id), "remove_paid_service")

        self.invalidator.service_changed(service_id, [current.category_id])
        self.logger.info("Service deleted", service_id=service_id, released_grants=released)

    async def enhance_service(self, service_id: str) -> ServiceRecord:
        """Replace description and keywords with the remote service's enrichment."""
        if self.remote is None:
            raise ValidationError("Enrichment is not configured")

        await self._require_service(service_id)
        fields = await self.remote.enrich(service_id)

        changes: Dict[str, Any] = {}
        if isinstance(fields.get("description"), str) and fields["description"].strip():
            changes["description"] = fields["description"].strip()
        if isinstance(fields.get("keywords"), list):
            changes["keywords"] = frozenset(
                str(keyword).strip().lower() for keyword in fields["keywords"] if str(keyword).strip()
            )

        updated = await self._store_call(self.store.update_service(service_id, changes), "update_service")
        if updated is None:
            raise NotFoundError("Service", service_id)

        self.invalidator.service_enriched(service_id)
        self.logger.info("Service enhanced", service_id=service_id, fields=sorted(changes))
        return updated

    async def scrape_category(self, category_id: str, force_update: bool = False) -> Dict[str, Any]:
        if self.remote is None:
            raise ValidationError("Enrichment is not configured")

        await self._require_category(category_id)
        return await self.remote.scrape_category(category_id, force_update)

    async def task_status(self, task_id: str) -> Dict[str, Any]:
        if self.remote is None:
            raise ValidationError("Enrichment is not configured")
        return await self.remote.get_task_status(task_id)

    # Access

    async def grant_access(self, user_id: str, service_id: str) -> UserAccount:
        """Record that a completed payment unlocked ``service_id`` for ``user_id``."""
        await self._require_service(service_id)

        user = await self._store_call(self.store.add_paid_service(user_id, service_id), "add_paid_service")
        if user is None:
            raise NotFoundError("User", user_id)

        self.invalidator.access_granted(user_id)
        self.logger.info("Service access granted", user_id=user_id, service_id=service_id)
        return user

    async def _with_access(self, caller: Optional[Caller]) -> Optional[Caller]:
        """Attach the caller's stored paid list; the auth layer only asserts identity."""
        if caller is None:
            return None

        user = await self._store_call(self.store.get_user(caller.user_id), "get_user")
        if user is None:
            return caller
        return Caller(
            user_id=caller.user_id,
            verified=caller.verified,
            paid_service_ids=caller.paid_service_ids | user.paid_service_ids,
        )

    async def _require_category(self, category_id: str) -> Category:
        category = await self._store_call(self.store.get_category(category_id), "get_category")
        if category is None:
            raise NotFoundError("Category", category_id)
        return category

    async def _require_service(self, service_id: str) -> ServiceRecord:
        record = await self._store_call(self.store.get_service(service_id), "get_service")
        if record is None:
            raise NotFoundError("Service", service_id)
        return record

    async def _store_call(self, operation, name: str) -> Any:
        return await guarded(operation, name=name, timeout=self.store_timeout)
