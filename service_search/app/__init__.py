"""
Search Service package.

Answers free-text searches over the professional services catalog and keeps
the catalog's hot reads cached. It provides:

- app.main: API surface for search, catalog reads/writes, health and metrics.
- app.domain: Search orchestration, catalog operations, ranking and redaction.
- app.caching: In-process TTL cache, key builders and invalidation hooks.
- app.adapters: Client for the remote enrichment/search service.
- app.store: Store capabilities and the in-memory backend.

Guidelines:
- Only validation and store failures reach callers; the remote service and
  the cache degrade silently.
- Premium contact details never leave the service unredacted unless the
  caller has paid for the record.
"""
