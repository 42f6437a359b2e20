"""
Search service: hybrid catalog search with an in-process cache.
"""

import asyncio
from contextlib import suppress
from typing import Any, Dict, Optional

from fastapi import Depends, Header, Query

from shared.base_service import BaseService
from shared.errors import AuthenticationError, AuthorizationError
from shared.logging import set_user_context

from .adapters.enrichment_client import RemoteEnrichmentClient
from .caching import keys
from .caching.cache_store import CacheStore
from .caching.invalidation import CacheInvalidator
from .domain.catalog import CatalogService
from .domain.models import Caller
from .domain.orchestrator import SearchOrchestrator
from .domain.payloads import (
    AccessGrantPayload,
    CategoryPayload,
    CategoryUpdatePayload,
    SearchRequest,
    ServicePayload,
    ServiceUpdatePayload,
)
from .store.base import CatalogStore
from .store.memory import InMemoryCatalogStore

TRUTHY = ("1", "true", "yes")


def caller_from_headers(user_id: Optional[str], verified: Optional[str]) -> Optional[Caller]:
    """Build the caller asserted by the upstream auth layer, if any."""
    if not user_id or not user_id.strip():
        return None
    return Caller(user_id=user_id.strip(), verified=(verified or "").strip().lower() in TRUTHY)


async def current_caller(
    x_user_id: Optional[str] = Header(None),
    x_user_verified: Optional[str] = Header(None),
) -> Optional[Caller]:
    caller = caller_from_headers(x_user_id, x_user_verified)
    if caller is not None:
        set_user_context(caller.user_id)
    return caller


class SearchService(BaseService):
    """Search service implementation."""

    def __init__(
        self,
        store: Optional[CatalogStore] = None,
        remote: Optional[RemoteEnrichmentClient] = None,
        **config_overrides: Any,
    ):
        super().__init__("search", 8020, **config_overrides)

        self.cache = CacheStore(
            namespace_ttls={
                keys.CATEGORIES_NAMESPACE: self.config.cache_ttl_categories,
                keys.SERVICES_NAMESPACE: self.config.cache_ttl_services,
                keys.SEARCH_NAMESPACE: self.config.cache_ttl_search,
                keys.USER_NAMESPACE: self.config.cache_ttl_user,
            },
            default_ttl=self.config.cache_ttl_default,
            metrics=self.metrics,
        )
        self.store = store if store is not None else InMemoryCatalogStore()
        self.remote = remote if remote is not None else RemoteEnrichmentClient.from_config(self.config)
        self.invalidator = CacheInvalidator(self.cache)

        self.orchestrator = SearchOrchestrator.from_config(
            self.config,
            self.store,
            self.cache,
            self.remote,
            invalidator=self.invalidator,
            metrics=self.metrics,
        )
        self.catalog = CatalogService.from_config(
            self.config,
            self.store,
            self.cache,
            self.remote,
            invalidator=self.invalidator,
        )

        self._purge_task: Optional[asyncio.Task] = None
        self._setup_search_routes()

    async def startup(self):
        self._purge_task = asyncio.create_task(self._purge_expired_entries())
        self.logger.info("Search service started", remote_url=self.remote.base_url)

    async def shutdown(self):
        if self._purge_task is not None:
            self._purge_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._purge_task
            self._purge_task = None

        self.cache.close()
        self.logger.info("Search service stopped")

    async def _purge_expired_entries(self):
        """Drop expired cache entries periodically so idle keys do not pile up."""
        while True:
            await asyncio.sleep(self.config.cache_purge_interval_seconds)
            removed = self.cache.purge_expired()
            if removed:
                self.logger.debug("Expired cache entries purged", removed=removed)

    def _setup_search_routes(self):
        """Set up search-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "search",
                "message": "Service Search - Search Service",
                "version": "1.0.0",
                "capabilities": ["hybrid_search", "caching", "enrichment"]
            }

        # Search

        @self.app.post("/api/search")
        async def search(request: SearchRequest, caller: Optional[Caller] = Depends(current_caller)):
            """Search local services, falling back to the remote service."""
            result = await self.orchestrator.search(
                request.query,
                category=request.category,
                location=request.location,
                price=request.price,
                page=request.page,
                limit=request.limit,
                caller=caller,
            )
            return result.to_dict()

        @self.app.get("/api/search/recent")
        async def recent_searches(caller: Optional[Caller] = Depends(current_caller)):
            entries = await self.orchestrator.recent_searches(caller)
            return {"data": [entry.to_dict() for entry in entries]}

        @self.app.delete("/api/search/recent")
        async def clear_recent_searches(caller: Optional[Caller] = Depends(current_caller)):
            await self.orchestrator.clear_recent_searches(caller)
            return {"message": "Search history cleared"}

        # Categories

        @self.app.get("/api/categories")
        async def list_categories():
            categories = await self.catalog.list_categories()
            return {"data": [category.to_dict() for category in categories]}

        @self.app.post("/api/categories", status_code=201)
        async def create_category(payload: CategoryPayload):
            category = await self.catalog.create_category(payload)
            return {"data": category.to_dict()}

        @self.app.get("/api/categories/{category_id}")
        async def get_category(category_id: str):
            category = await self.catalog.get_category(category_id)
            return {"data": category.to_dict()}

        @self.app.put("/api/categories/{category_id}")
        async def update_category(category_id: str, payload: CategoryUpdatePayload):
            category = await self.catalog.update_category(category_id, payload)
            return {"data": category.to_dict()}

        @self.app.delete("/api/categories/{category_id}")
        async def delete_category(category_id: str):
            await self.catalog.delete_category(category_id)
            return {"message": "Category deleted"}

        @self.app.get("/api/categories/{category_id}/services")
        async def list_category_services(
            category_id: str,
            page: int = Query(1, description="Page number"),
            limit: int = Query(10, description="Items per page"),
            sort: str = Query("rating", description="Sort field"),
            order: str = Query("desc", pattern="^(asc|desc)$", description="Sort order"),
            caller: Optional[Caller] = Depends(current_caller),
        ):
            result = await self.catalog.list_services_by_category(
                category_id,
                caller=caller,
                page=page,
                limit=limit,
                sort=sort,
                descending=order == "desc",
            )
            return result.to_dict()

        @self.app.post("/api/categories/{category_id}/scrape", status_code=202)
        async def scrape_category(category_id: str, force_update: bool = Query(False)):
            """Ask the remote service to refresh a category in the background."""
            return await self.catalog.scrape_category(category_id, force_update)

        @self.app.get("/api/tasks/{task_id}")
        async def task_status(task_id: str):
            return await self.catalog.task_status(task_id)

        # Services

        @self.app.get("/api/services/featured")
        async def featured_services(limit: int = Query(5, description="Number of services")):
            records = await self.catalog.featured_services(limit)
            return {"data": [record.to_dict() for record in records]}

        @self.app.post("/api/services", status_code=201)
        async def create_service(payload: ServicePayload):
            record = await self.catalog.create_service(payload)
            return {"data": record.to_dict()}

        @self.app.get("/api/services/{service_id}")
        async def get_service(service_id: str, caller: Optional[Caller] = Depends(current_caller)):
            record = await self.catalog.get_service(service_id, caller)
            return {"data": record.to_dict()}

        @self.app.put("/api/services/{service_id}")
        async def update_service(service_id: str, payload: ServiceUpdatePayload):
            record = await self.catalog.update_service(service_id, payload)
            return {"data": record.to_dict()}

        @self.app.delete("/api/services/{service_id}")
        async def delete_service(service_id: str):
            await self.catalog.delete_service(service_id)
            return {"message": "Service deleted"}

        @self.app.post("/api/services/{service_id}/enhance")
        async def enhance_service(service_id: str):
            record = await self.catalog.enhance_service(service_id)
            return {"data": record.to_dict()}

        # Payments

        @self.app.post("/api/payments/access")
        async def grant_access(payload: AccessGrantPayload, caller: Optional[Caller] = Depends(current_caller)):
            """Record access granted by the caller's own completed payment."""
            if caller is None:
                raise AuthenticationError()
            if caller.user_id != payload.user_id:
                raise AuthorizationError("Access can only be granted to the paying user")

            user = await self.catalog.grant_access(payload.user_id, payload.service_id)
            return {
                "user_id": user.id,
                "paid_service_ids": sorted(user.paid_service_ids)
            }

        # Cache

        @self.app.get("/api/cache/stats")
        async def cache_stats():
            return self.cache.stats()

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies."""
        remote_healthy = await self.remote.health_check()
        return {
            "remote_search": "ok" if remote_healthy else "degraded",
            "remote_circuit": self.remote.get_state()["state"],
            "cache": "ok"
        }


def create_app():
    """Create the search service application."""
    service = SearchService()
    return service.app


if __name__ == "__main__":
    service = SearchService()
    service.run()
