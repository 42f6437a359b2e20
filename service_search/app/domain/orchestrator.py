"""
Hybrid search: local full-text query, remote fallback, merge, cache.

Pipeline per request:

1. validate and normalize the query (nothing else happens on failure)
2. look the result page up in the search cache
3. on a miss, query the store; unverified callers only see free records
4. if the local page and total are below the sufficiency thresholds, ask
   the remote service, ingest unknown candidates and merge both sources
5. cache the page, hide premium contacts the caller has not paid for,
   record the caller's history

Only validation and store failures reach the caller. The remote service and
the cache degrade silently.
"""

import dataclasses
import time
from typing import Any, Awaitable, List, Optional, Tuple, TYPE_CHECKING

from shared.errors import AuthenticationError, NotFoundError, RemoteUnavailable, StoreUnavailable
from shared.logging import get_logger
from ..caching import keys
from ..caching.cache_store import CacheStore
from ..caching.invalidation import CacheInvalidator
from ..store.base import CatalogStore, DuplicateRecordError
from ..store.guard import guarded
from .history import MAX_RECENT_SEARCHES, add_recent_search
from .models import (
    CONTACT_UNAVAILABLE,
    DEFAULT_PRICE_TIER,
    LOCATION_UNSPECIFIED,
    Caller,
    LocalRecord,
    RemoteCandidate,
    RemoteRecord,
    SearchHistoryEntry,
    SearchQuery,
    SearchResultSet,
    ServiceRecord,
    SourcedRecord,
    utcnow,
)
from .ranking import merge_records, paginate
from .redaction import redact_records
from .validation import build_search_query

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import BaseConfig
    from shared.metrics import MetricsCollector
    from ..adapters.enrichment_client import RemoteEnrichmentClient


DEFAULT_MIN_PAGE_RESULTS = 5
DEFAULT_MIN_TOTAL_RESULTS = 10
TITLE_MATCH_PREFIX = 20


class SearchOrchestrator:
    """Executes hybrid searches against the store, the remote service and the cache."""

    def __init__(
        self,
        store: CatalogStore,
        cache: CacheStore,
        remote: "RemoteEnrichmentClient",
        *,
        invalidator: Optional[CacheInvalidator] = None,
        metrics: Optional["MetricsCollector"] = None,
        min_page_results: int = DEFAULT_MIN_PAGE_RESULTS,
        min_total_results: int = DEFAULT_MIN_TOTAL_RESULTS,
        search_ttl: Optional[int] = None,
        store_timeout: float = 10.0,
        history_limit: int = MAX_RECENT_SEARCHES,
        min_query_length: int = 2,
        max_query_length: int = 100,
        default_limit: int = 20,
        max_limit: int = 50,
    ):
        self.store = store
        self.cache = cache
        self.remote = remote
        self.invalidator = invalidator or CacheInvalidator(cache)
        self.metrics = metrics
        self.logger = get_logger("search.orchestrator")

        self.min_page_results = min_page_results
        self.min_total_results = min_total_results
        self.search_ttl = search_ttl
        self.store_timeout = store_timeout
        self.history_limit = history_limit
        self.min_query_length = min_query_length
        self.max_query_length = max_query_length
        self.default_limit = default_limit
        self.max_limit = max_limit

    @classmethod
    def from_config(
        cls,
        config: "BaseConfig",
        store: CatalogStore,
        cache: CacheStore,
        remote: "RemoteEnrichmentClient",
        **kwargs: Any,
    ) -> "SearchOrchestrator":
        return cls(
            store,
            cache,
            remote,
            min_page_results=config.min_page_results,
            min_total_results=config.min_total_results,
            search_ttl=config.cache_ttl_search,
            store_timeout=config.store_timeout_seconds,
            history_limit=config.search_history_limit,
            min_query_length=config.min_query_length,
            max_query_length=config.max_query_length,
            default_limit=config.default_page_size,
            max_limit=config.max_page_size,
            **kwargs,
        )

    async def search(
        self,
        query: Any,
        *,
        category: Any = None,
        location: Any = None,
        price: Any = None,
        page: Any = 1,
        limit: Any = None,
        caller: Optional[Caller] = None,
    ) -> SearchResultSet:
        """Validate raw parameters and run the search."""
        search_query = build_search_query(
            query,
            category=category,
            location=location,
            price=price,
            page=page,
            limit=limit,
            min_length=self.min_query_length,
            max_length=self.max_query_length,
            default_limit=self.default_limit,
            max_limit=self.max_limit,
        )
        return await self.execute(search_query, caller)

    async def execute(self, search_query: SearchQuery, caller: Optional[Caller] = None) -> SearchResultSet:
        """Run an already validated query."""
        start = time.perf_counter()
        include_premium = caller is not None and caller.verified
        cache_key = self.cache_key_for(search_query, include_premium)

        cached = self.cache.get(cache_key)
        if isinstance(cached, SearchResultSet):
            self.logger.debug("Search served from cache", query=search_query.text, key=cache_key)
            result, source = cached, "cache"
        else:
            result, source = await self._compute(search_query, caller, include_premium)
            self.cache.set(cache_key, result, ttl=self.search_ttl)

        if include_premium:
            result = await self._redact_for_caller(result, caller)

        await self._record_history(caller, search_query.text)
        self._record_search_metrics(source, time.perf_counter() - start)
        return result

    def cache_key_for(self, search_query: SearchQuery, include_premium: bool = False) -> str:
        # Every page is its own entry, and verified audiences (who also see
        # premium records) never share entries with anonymous ones.
        filters = {**search_query.filters, "page": search_query.page, "limit": search_query.limit}
        if include_premium:
            filters["premium"] = True
        return keys.search_key(search_query.text, filters)

    async def recent_searches(self, caller: Optional[Caller]) -> Tuple[SearchHistoryEntry, ...]:
        """The caller's search history, most recent first."""
        user_id = self._require_caller(caller)
        cache_key = keys.user_key(user_id, "recent-searches")

        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        user = await self._store_call(self.store.get_user(user_id), "get_user")
        if user is None:
            raise NotFoundError("User", user_id)

        self.cache.set(cache_key, user.recent_searches)
        return user.recent_searches

    async def clear_recent_searches(self, caller: Optional[Caller]) -> None:
        user_id = self._require_caller(caller)

        user = await self._store_call(self.store.save_recent_searches(user_id, ()), "save_recent_searches")
        if user is None:
            raise NotFoundError("User", user_id)

        self.invalidator.search_history_changed(user_id)
        self.logger.info("Search history cleared", user_id=user_id)

    async def _compute(
        self,
        search_query: SearchQuery,
        caller: Optional[Caller],
        include_premium: bool,
    ) -> Tuple[SearchResultSet, str]:
        records, total = await self._query_local(
            search_query, include_premium, skip=search_query.skip, limit=search_query.limit
        )

        if self._is_sufficient(records, total):
            self.logger.info(
                "Local search results sufficient",
                query=search_query.text,
                page_results=len(records),
                total=total
            )
            self._record_remote_outcome("skipped")
            return self._result(records, total, search_query, include_premium), "local"

        self.logger.info(
            "Local search results insufficient, consulting remote service",
            query=search_query.text,
            page_results=len(records),
            total=total
        )
        candidates = await self._fetch_remote(search_query.text, caller)
        if not candidates:
            return self._result(records, total, search_query, include_premium), "local"

        if search_query.skip > 0 or len(records) < total:
            records, _ = await self._query_local(search_query, include_premium, skip=0, limit=total)

        sources: List[SourcedRecord] = [LocalRecord(record) for record in records]
        sources.extend(await self._reconcile(candidates, search_query))

        merged = merge_records(sources)
        self._record_remote_outcome("merged")
        self.logger.info(
            "Merged local and remote results",
            query=search_query.text,
            local=len(records),
            merged=len(merged)
        )
        page_records = paginate(merged, search_query.page, search_query.limit)
        return self._result(page_records, len(merged), search_query, include_premium), "merged"

    def _is_sufficient(self, records: List[ServiceRecord], total: int) -> bool:
        return len(records) >= self.min_page_results or total >= self.min_total_results

    def _result(
        self,
        records: List[ServiceRecord],
        total: int,
        search_query: SearchQuery,
        include_premium: bool,
    ) -> SearchResultSet:
        # Anonymous pages are redacted before caching. Verified pages are
        # cached as is and redacted per caller after every read.
        if not include_premium:
            records = redact_records(records)
        return SearchResultSet(
            records=tuple(records),
            total=total,
            page=search_query.page,
            limit=search_query.limit,
        )

    async def _redact_for_caller(self, result: SearchResultSet, caller: Caller) -> SearchResultSet:
        """Hide premium contacts the caller has not paid for."""
        paid = caller.paid_service_ids
        try:
            user = await self._store_call(self.store.get_user(caller.user_id), "get_user")
            if user is not None:
                paid = paid | user.paid_service_ids
        except StoreUnavailable as exc:
            self.logger.warning("Paid services not loaded", user_id=caller.user_id, error=exc.message)

        audience = Caller(user_id=caller.user_id, verified=caller.verified, paid_service_ids=paid)
        return dataclasses.replace(result, records=tuple(redact_records(result.records, audience)))

    async def _query_local(
        self,
        search_query: SearchQuery,
        include_premium: bool,
        *,
        skip: int,
        limit: int,
    ) -> Tuple[List[ServiceRecord], int]:
        return await self._store_call(
            self.store.search_services(
                search_query.text,
                search_query.filters,
                include_premium=include_premium,
                skip=skip,
                limit=limit,
            ),
            "search_services",
        )

    async def _fetch_remote(self, text: str, caller: Optional[Caller]) -> List[RemoteCandidate]:
        try:
            response = await self.remote.search(text, caller.user_id if caller else None)
        except RemoteUnavailable as exc:
            self.logger.warning("Remote search unavailable, using local results", query=text, error=exc.message)
            self._record_remote_outcome("unavailable")
            return []
        except Exception as exc:
            self.logger.error("Remote search failed unexpectedly, using local results", query=text, error=str(exc))
            self._record_remote_outcome("unavailable")
            return []

        if not response.success or not response.records:
            self.logger.info("Remote search returned no results", query=text)
            self._record_remote_outcome("empty")
            return []

        return response.records

    async def _reconcile(self, candidates: List[RemoteCandidate], search_query: SearchQuery) -> List[RemoteRecord]:
        """Resolve every candidate to a stored record, inserting unknown ones.

        A candidate that fails to resolve is skipped.
        """
        resolved: List[RemoteRecord] = []
        for candidate in candidates:
            try:
                resolved.append(await self._resolve_candidate(candidate, search_query))
            except Exception as exc:
                self.logger.error(
                    "Failed to ingest remote result",
                    title=candidate.title,
                    source_url=candidate.source_url,
                    error=str(exc)
                )

        ingested = sum(1 for item in resolved if item.ingested)
        if ingested and self.metrics:
            try:
                self.metrics.increment_counter("remote_ingested_records_total", ingested)
            except Exception as exc:  # pragma: no cover - metrics failures never break searches
                self.logger.debug("Failed to record ingestion metric", error=str(exc))
        return resolved

    async def _resolve_candidate(self, candidate: RemoteCandidate, search_query: SearchQuery) -> RemoteRecord:
        category_id = await self._resolve_category(candidate.category, search_query.filters.get("category"))

        existing = None
        if candidate.source_url:
            existing = await self._store_call(self.store.find_by_source_url(candidate.source_url), "find_by_source_url")
        if existing is None:
            existing = await self._store_call(
                self.store.find_by_title_prefix(category_id, candidate.title[:TITLE_MATCH_PREFIX]),
                "find_by_title_prefix",
            )
        if existing is not None:
            return RemoteRecord(record=existing, candidate=candidate, ingested=False)

        now = utcnow()
        record = ServiceRecord(
            id="",
            title=candidate.title,
            description=candidate.description,
            category_id=category_id,
            price=candidate.price or DEFAULT_PRICE_TIER,
            location=candidate.location or LOCATION_UNSPECIFIED,
            rating=candidate.rating or 0.0,
            relevance=candidate.relevance or 0.0,
            keywords=frozenset(candidate.keywords),
            contact_info=candidate.contact_info or CONTACT_UNAVAILABLE,
            image_url=candidate.image_url,
            source_url=candidate.source_url,
            verified=False,
            premium_only=True,
            last_scraped=now,
            created_at=now,
            updated_at=now,
        )

        try:
            inserted = await self._store_call(self.store.insert_service(record), "insert_service")
        except DuplicateRecordError:
            # A concurrent request ingested the same source first
            existing = None
            if candidate.source_url:
                existing = await self._store_call(
                    self.store.find_by_source_url(candidate.source_url), "find_by_source_url"
                )
            if existing is None:
                raise
            return RemoteRecord(record=existing, candidate=candidate, ingested=False)

        self.logger.debug("Ingested remote result", service_id=inserted.id, title=inserted.title)
        return RemoteRecord(record=inserted, candidate=candidate, ingested=True)

    async def _resolve_category(self, name: Optional[str], fallback: Optional[str]) -> Optional[str]:
        if not name:
            return fallback

        category = await self._store_call(self.store.get_category(name), "get_category")
        if category is None:
            category = await self._store_call(self.store.find_category_by_name(name), "find_category_by_name")
        return category.id if category is not None else fallback

    async def _record_history(self, caller: Optional[Caller], text: str) -> None:
        if caller is None:
            return

        try:
            user = await self._store_call(self.store.get_user(caller.user_id), "get_user")
            if user is None:
                self.logger.debug("Search history skipped for unknown user", user_id=caller.user_id)
                return

            history = add_recent_search(user.recent_searches, text, limit=self.history_limit)
            await self._store_call(self.store.save_recent_searches(user.id, history), "save_recent_searches")
            self.invalidator.search_history_changed(user.id)
        except Exception as exc:
            self.logger.error("Failed to record search history", user_id=caller.user_id, error=str(exc))

    async def _store_call(self, operation: Awaitable[Any], name: str) -> Any:
        return await guarded(operation, name=name, timeout=self.store_timeout)

    @staticmethod
    def _require_caller(caller: Optional[Caller]) -> str:
        if caller is None or not caller.user_id:
            raise AuthenticationError()
        return caller.user_id

    def _record_search_metrics(self, source: str, duration: float) -> None:
        if not self.metrics:
            return

        try:
            self.metrics.increment_counter("search_requests_total", source=source)
            self.metrics.observe_histogram("search_duration_seconds", duration, source=source)
        except Exception as exc:  # pragma: no cover - metrics failures never break searches
            self.logger.debug("Failed to record search metrics", error=str(exc))

    def _record_remote_outcome(self, outcome: str) -> None:
        if not self.metrics:
            return

        try:
            self.metrics.increment_counter("remote_fallback_total", outcome=outcome)
        except Exception as exc:  # pragma: no cover - metrics failures never break searches
            self.logger.debug("Failed to record remote metric", error=str(exc))
