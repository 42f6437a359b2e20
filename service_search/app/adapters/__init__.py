"""
Adapters package for the search service.

Contains the HTTP client for the remote enrichment/search service. The
adapter encapsulates:

- Base URL and request shapes
- Timeout, retry policy and circuit breaker
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .enrichment_client import RemoteEnrichmentClient

__all__ = ["RemoteEnrichmentClient"]
