"""
Timeout and fault mapping for store operations.
"""

import asyncio
from typing import Any, Awaitable

from shared.errors import SearchServiceException, StoreUnavailable
from shared.logging import get_logger
from .base import DuplicateRecordError

logger = get_logger("search.store")


async def guarded(operation: Awaitable[Any], *, name: str, timeout: float) -> Any:
    """Await a store operation under ``timeout`` seconds.

    Timeouts and unexpected faults become StoreUnavailable. Service
    exceptions and uniqueness conflicts pass through unchanged.
    """
    try:
        return await asyncio.wait_for(operation, timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.error("Store operation timed out", operation=name, timeout=timeout)
        raise StoreUnavailable(
            "Store operation timed out",
            details={"operation": name, "timeout": timeout}
        ) from exc
    except (SearchServiceException, DuplicateRecordError):
        raise
    except Exception as exc:
        logger.error("Store operation failed", operation=name, error=str(exc))
        raise StoreUnavailable("Store operation failed", details={"operation": name}) from exc
