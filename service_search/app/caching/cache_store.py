"""
In-process TTL cache shared by every component of a service instance.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, TYPE_CHECKING

from shared.errors import CacheFailure
from shared.logging import get_logger
from .keys import DEFAULT_NAMESPACE_TTLS, DEFAULT_TTL, namespace_of

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float


class CacheStore:
    """TTL key/value cache with namespace default lifetimes.

    Every public operation is atomic under one lock. Internal faults never
    escape: ``get`` reports a miss, ``set`` reports False and the counting
    operations report 0, so callers always fall through to the
    authoritative path.
    """

    def __init__(
        self,
        namespace_ttls: Optional[Mapping[str, int]] = None,
        default_ttl: int = DEFAULT_TTL,
        *,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.namespace_ttls = dict(DEFAULT_NAMESPACE_TTLS)
        if namespace_ttls:
            self.namespace_ttls.update(namespace_ttls)
        self.default_ttl = default_ttl
        self.logger = get_logger("search.cache")
        self.metrics = metrics

        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, CacheEntry] = {}
        self._stats = {"hits": 0, "misses": 0, "sets": 0}

    def get(self, key: str) -> Optional[Any]:
        """Return the live value for ``key`` or None."""
        try:
            value = self._read(key)
        except Exception as exc:
            self._report_failure("get", key, exc)
            value = None

        hit = value is not None
        with self._lock:
            self._stats["hits" if hit else "misses"] += 1

        if hit:
            self.logger.debug("Cache hit", key=key)
        else:
            self.logger.debug("Cache miss", key=key)
        self._record_metric(key, "hit" if hit else "miss")
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store ``value`` under ``key``. None values are refused."""
        if value is None:
            self.logger.warning("Refusing to cache empty value", key=key)
            return False

        cache_ttl = ttl or self.ttl_for_key(key)
        try:
            self._write(key, value, cache_ttl)
        except Exception as exc:
            self._report_failure("set", key, exc)
            return False

        self.logger.debug("Cache set", key=key, ttl=cache_ttl)
        self._record_metric(key, "set")
        return True

    def delete(self, key: str) -> int:
        """Remove ``key``; returns the number of entries removed (0 or 1)."""
        try:
            with self._lock:
                removed = 1 if self._entries.pop(key, None) is not None else 0
        except Exception as exc:
            self._report_failure("delete", key, exc)
            return 0

        if removed:
            self.logger.debug("Cache delete", key=key)
        return removed

    def invalidate_pattern(self, pattern: str) -> int:
        """Remove every key matching a prefix glob.

        Everything before the first ``*`` is a literal prefix, so
        ``services:category:42:*`` removes all keys starting with
        ``services:category:42:``. A pattern without ``*`` matches one key.
        """
        prefix, star, _ = pattern.partition("*")
        try:
            with self._lock:
                if star:
                    matching = [key for key in self._entries if key.startswith(prefix)]
                else:
                    matching = [pattern] if pattern in self._entries else []
                for key in matching:
                    del self._entries[key]
        except Exception as exc:
            self._report_failure("invalidate_pattern", pattern, exc)
            return 0

        if matching:
            self.logger.info("Invalidated cache pattern", pattern=pattern, keys_count=len(matching))
        return len(matching)

    def clear(self) -> bool:
        try:
            with self._lock:
                self._entries.clear()
        except Exception as exc:
            self._report_failure("clear", "*", exc)
            return False
        self.logger.info("Cache cleared")
        return True

    def close(self) -> None:
        """Teardown: drop every entry and reset the counters."""
        try:
            with self._lock:
                self._entries = {}
                self._stats = {"hits": 0, "misses": 0, "sets": 0}
        except Exception as exc:
            self._report_failure("close", "*", exc)
            return
        self.logger.info("Cache closed")

    def purge_expired(self) -> int:
        """Evict expired entries; returns how many were removed."""
        try:
            now = self._clock()
            with self._lock:
                expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
                for key in expired:
                    del self._entries[key]
        except Exception as exc:
            self._report_failure("purge_expired", "*", exc)
            return 0

        if expired:
            self.logger.debug("Purged expired cache entries", count=len(expired))
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        """Hit/miss counters and the derived hit rate (percent)."""
        with self._lock:
            stats = dict(self._stats)
            stats["keys"] = len(self._entries)

        lookups = stats["hits"] + stats["misses"]
        stats["hit_rate"] = round(stats["hits"] / lookups * 100) if lookups else 0
        return stats

    def ttl_for_key(self, key: str) -> int:
        """Default lifetime of ``key`` according to its namespace."""
        namespace = namespace_of(key)
        if namespace is None:
            return self.default_ttl
        return self.namespace_ttls.get(namespace, self.default_ttl)

    def _read(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= now:
                del self._entries[key]
                self.logger.debug("Cache entry expired", key=key)
                return None
            return entry.value

    def _write(self, key: str, value: Any, ttl: int) -> None:
        expires_at = self._clock() + ttl
        with self._lock:
            self._entries[key] = CacheEntry(key=key, value=value, expires_at=expires_at)
            self._stats["sets"] += 1

    def _report_failure(self, operation: str, key: str, exc: Exception) -> None:
        failure = CacheFailure(str(exc), {"operation": operation, "key": key})
        self.logger.error(
            "Cache operation failed",
            code=failure.code,
            operation=operation,
            key=key,
            error=failure.message
        )

    def _record_metric(self, key: str, result: str) -> None:
        if not self.metrics:
            return

        try:
            self.metrics.increment_counter(
                "cache_operations_total",
                namespace=namespace_of(key) or "other",
                result=result,
            )
        except Exception as exc:  # pragma: no cover - metrics failures never break caching
            self.logger.debug("Failed to record cache metric", error=str(exc))
