"""
Client for the remote enrichment/search service.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple, TYPE_CHECKING

import httpx
from pydantic import ValidationError as PydanticValidationError

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import RemoteUnavailable
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_call
from ..domain.models import RemoteCandidate, RemoteSearchResponse

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import BaseConfig


class RemoteEnrichmentClient:
    """Bounded-timeout, retrying wrapper around the remote search capability.

    Transport failures and timeouts are retried (3 attempts, waiting 2s then
    4s); an error status is never retried. Both end as RemoteUnavailable.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_base: float = 2.0,
        api_key: Optional[str] = None,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.logger = get_logger("search.remote_client")

        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["X-API-Key"] = api_key

        self.retry_config = RetryConfig(
            max_attempts=max_attempts,
            base_delay=1.0,
            max_delay=60.0,
            exponential_base=backoff_base,
            jitter=False
        )

        self.circuit_breaker = CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            expected_exception=httpx.TransportError,
            name="remote_enrichment"
        )

    @classmethod
    def from_config(cls, config: "BaseConfig") -> "RemoteEnrichmentClient":
        return cls(
            config.remote_search_url,
            timeout=config.remote_timeout_seconds,
            max_attempts=config.remote_max_attempts,
            backoff_base=config.remote_backoff_base,
            api_key=config.remote_api_key,
            failure_threshold=config.remote_failure_threshold,
            recovery_timeout=config.remote_recovery_timeout,
        )

    async def search(self, text: str, caller_id: Optional[str] = None) -> RemoteSearchResponse:
        """Run a live remote search for ``text``."""
        self.logger.info("Remote search requested", query=text)

        data = await self._call("POST", "/custom-search", json={"query": text, "user_id": caller_id})
        records = self._parse_candidates(data.get("results") or [])

        self.logger.info("Remote search completed", query=text, results=len(records))
        return RemoteSearchResponse(
            success=bool(data.get("success", True)),
            records=records,
            message=data.get("message")
        )

    async def enrich(self, record_id: str) -> Dict[str, Any]:
        """Ask the remote service to improve a record; returns the updated fields."""
        self.logger.info("Remote enrichment requested", service_id=record_id)

        data = await self._call("POST", "/enhance-service", json={"service_id": record_id})
        fields = data.get("service")
        if not isinstance(fields, dict):
            raise RemoteUnavailable(
                "Enrichment response carried no service fields",
                details={"service_id": record_id}
            )
        return fields

    async def scrape_category(self, category_id: str, force_update: bool = False) -> Dict[str, Any]:
        """Start a background scraping task for a category."""
        data = await self._call(
            "POST",
            "/scrape-category",
            json={"category_id": category_id, "force_update": force_update},
            expected_status=(202,),
        )
        self.logger.info("Scraping task started", category_id=category_id, task_id=data.get("task_id"))
        return {"task_id": data.get("task_id"), "message": data.get("message")}

    async def get_task_status(self, task_id: str) -> Dict[str, Any]:
        return await self._call("GET", f"/task/{task_id}")

    async def health_check(self) -> bool:
        """Single unretried probe of the remote health endpoint. Never raises."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=self.headers) as client:
                response = await client.request("GET", f"{self.base_url}/health")
            healthy = response.status_code == 200
        except Exception as exc:
            self.logger.warning("Remote health check failed", error=str(exc))
            return False

        if not healthy:
            self.logger.warning("Remote health check returned error status", status_code=response.status_code)
        return healthy

    def get_state(self) -> Dict[str, Any]:
        return self.circuit_breaker.get_state()

    async def _call(
        self,
        method: str,
        path: str,
        *,
        expected_status: Tuple[int, ...] = (200,),
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """One logical call: a single retry loop around breaker-guarded sends."""

        async def remote_request():
            return await self.circuit_breaker.call(self._send, method, path, expected_status, **kwargs)

        try:
            return await retry_call(
                remote_request,
                exceptions=(httpx.TransportError,),
                config=self.retry_config
            )
        except RetryError as exc:
            raise RemoteUnavailable(
                f"Remote call failed after {exc.attempts} attempts",
                details={"path": path, "error": str(exc.last_exception)}
            ) from exc
        except CircuitBreakerOpenException as exc:
            self.logger.warning("Remote call blocked by open circuit", path=path)
            raise RemoteUnavailable(str(exc), details={"path": path}) from exc

    async def _send(
        self,
        method: str,
        path: str,
        expected_status: Iterable[int],
        **kwargs: Any,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        async with httpx.AsyncClient(timeout=self.timeout, headers=self.headers) as client:
            response = await client.request(method, url, **kwargs)

        if response.status_code not in expected_status:
            self.logger.error(
                "Remote request failed",
                url=url,
                status_code=response.status_code,
                response=response.text
            )
            raise RemoteUnavailable(
                f"Unexpected status {response.status_code}",
                details={"path": path, "status_code": response.status_code}
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteUnavailable("Remote response is not JSON", details={"path": path}) from exc

        if not isinstance(data, dict):
            raise RemoteUnavailable("Remote response is not an object", details={"path": path})

        self.logger.debug("Remote response received", url=url, status_code=response.status_code)
        return data

    def _parse_candidates(self, items: Iterable[Any]) -> List[RemoteCandidate]:
        candidates = []
        for item in items:
            try:
                candidates.append(RemoteCandidate.model_validate(item))
            except PydanticValidationError as exc:
                self.logger.warning("Skipping malformed remote candidate", error=str(exc))
        return candidates
